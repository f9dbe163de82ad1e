"""Infrastructure models package exports."""
from .base import Base, metadata
from .message import MessageModel

__all__ = [
    "Base",
    "metadata",
    "MessageModel",
]
