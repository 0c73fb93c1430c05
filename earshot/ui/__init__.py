"""Terminal user interface."""

from .assistant_screen import AssistantScreen

__all__ = ['AssistantScreen']
