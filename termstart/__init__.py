"""
termstart - a terminal for your bookmarks

An embeddable command-line session engine for a personal collection of tagged
bookmarks kept in a remote store. Tags act as flat "directories".

Example Usage:
    >>> from termstart import Session, Terminal, MemoryAuth
    >>> terminal = Terminal(Session.create(auth=MemoryAuth(accounts={"me@x.io": "pw"})))
    >>> await terminal.execute("login me@x.io pw")
    >>> await terminal.execute("touch docs https://docs.python.org python")
    >>> (await terminal.execute("ls")).output
    'TAG_ITEM:python'
"""

__version__ = "0.1.0"
__author__ = "termstart Contributors"

# Configuration
from termstart.config import TermstartConfig, load_config

# Models
from termstart.models import Bookmark, Identity

# Collaborators
from termstart.auth import AuthError, AuthProvider, MemoryAuth, RestAuth
from termstart.store import BookmarkStore, StoreError, normalize_url

# Engine
from termstart.session import Session
from termstart.interpreter import CommandResult, Interpreter, OutcomeKind
from termstart.terminal import Terminal

__all__ = [
    # Config
    "TermstartConfig",
    "load_config",
    # Models
    "Bookmark",
    "Identity",
    # Collaborators
    "AuthError",
    "AuthProvider",
    "MemoryAuth",
    "RestAuth",
    "BookmarkStore",
    "StoreError",
    "normalize_url",
    # Engine
    "Session",
    "CommandResult",
    "Interpreter",
    "OutcomeKind",
    "Terminal",
]
