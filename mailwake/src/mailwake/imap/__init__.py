"""IMAP access: value types, search criteria, per-account clients, and the account manager."""

from .client import AccountClient
from .manager import AccountManager
from .models import Envelope, Folder, ListOptions, MarkAction, Message, MoveOptions, SearchOptions

__all__ = [
    "AccountClient",
    "AccountManager",
    "Envelope",
    "Folder",
    "ListOptions",
    "MarkAction",
    "Message",
    "MoveOptions",
    "SearchOptions",
]
