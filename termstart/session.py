"""
Session context shared by the interpreter's command handlers.

Everything a handler may read or mutate hangs off one ``Session``: the
collaborators (auth, store), the per-session state (cache slot, navigation
scope, history, completion index) and display flags. Nothing is module-global,
so several sessions can live side by side in one process.
"""
import logging
import webbrowser
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .auth import AuthProvider, MemoryAuth
from .cache import ResultCache
from .completion import CompletionIndex
from .config import TermstartConfig
from .history import History
from .models import Bookmark, Identity
from .navigation import Navigation
from .store import BookmarkStore, StoreError

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """State and collaborators for one terminal session."""
    config: TermstartConfig
    auth: AuthProvider
    store: BookmarkStore
    cache: ResultCache
    navigation: Navigation = field(default_factory=Navigation)
    history: History = field(default_factory=History)
    completions: CompletionIndex = field(default_factory=CompletionIndex)
    theme: str = "dark"
    open_url: Callable[[str], bool] = webbrowser.open

    @classmethod
    def create(cls, config: Optional[TermstartConfig] = None,
               auth: Optional[AuthProvider] = None,
               store: Optional[BookmarkStore] = None,
               cache: Optional[ResultCache] = None,
               **kwargs) -> "Session":
        """Build a session, filling in default collaborators from ``config``."""
        config = config or TermstartConfig()
        return cls(
            config=config,
            auth=auth if auth is not None else MemoryAuth(),
            store=store if store is not None else BookmarkStore(config),
            cache=cache if cache is not None else ResultCache(ttl=config.cache_ttl),
            theme=kwargs.pop('theme', config.theme),
            **kwargs,
        )

    def user(self) -> Optional[Identity]:
        return self.auth.current_user()

    @property
    def prompt(self) -> str:
        return f"{self.navigation.path} $"

    async def bookmarks(self, identity: Identity, force_refresh: bool = False) -> List[Bookmark]:
        """Full listing through the cache; refreshes the completion index."""
        generation = self.cache.generation
        snapshot = await self.cache.read(lambda: self.store.list(identity), force_refresh)
        if self.cache.generation == generation:
            self.completions.update_from(snapshot)
        return snapshot

    async def prime_completions(self):
        """
        Fill the completion index if someone is signed in.

        Completion is a convenience, so a failure here is logged and the
        session carries on with an empty index.
        """
        identity = self.user()
        if identity is None:
            return
        try:
            await self.bookmarks(identity)
        except StoreError as e:
            logger.warning(f"Could not prime completions: {e}")

    def toggle_theme(self) -> str:
        self.theme = 'light' if self.theme == 'dark' else 'dark'
        return self.theme

    def reset(self):
        """Forget per-user state after the signed-in identity changes."""
        self.cache.invalidate()
        self.navigation.reset()
        self.completions.clear()
