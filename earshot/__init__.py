"""Earshot: real-time speech segmentation and resilient AI dispatch."""

__version__ = "0.1.0"
