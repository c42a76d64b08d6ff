"""Glimpse: ambient session memory for on-demand chat."""

__version__ = "0.1.0"

from glimpse.assistant import Assistant

__all__ = [
    "__version__",
    "Assistant",
]
