"""
grill - task switching for interactive LLM CLIs.

Wraps a conversational CLI (e.g. ``q chat``) in a pseudo-terminal and layers
slash commands on top of it for creating, listing and switching tasks without
restarting the child process.
"""

from .environment import Environment, TaskInfo
from .session import Session

__version__ = "0.1.0"

__all__ = ["Environment", "Session", "TaskInfo", "__version__"]
