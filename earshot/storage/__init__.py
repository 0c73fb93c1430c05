"""Persistence module."""

from .usage_store import UsageStore

__all__ = ['UsageStore']
