"""
Tag-scoped navigation.

The "current directory" is either the root or a single tag. Scopes are flat:
changing into a tag replaces the current scope instead of nesting inside it.
"""
import logging
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

# Arguments to ``cd`` that always mean "back to the root"
ROOT_ALIASES = ('', '/', '..', '~')


class Navigation:
    """Tracks the session's current tag scope."""

    def __init__(self):
        self.scope: Optional[str] = None

    @property
    def at_root(self) -> bool:
        return self.scope is None

    @property
    def path(self) -> str:
        """Path-like rendering of the scope, e.g. ``/`` or ``/work``."""
        return '/' if self.scope is None else f'/{self.scope}'

    @staticmethod
    def is_root_target(target: Optional[str]) -> bool:
        return target is None or target in ROOT_ALIASES

    @staticmethod
    def normalize_target(target: str) -> str:
        """Strip path decoration so ``/work/`` and ``work`` name the same tag."""
        return target.strip('/')

    def change(self, target: Optional[str], known_tags: Iterable[str]) -> bool:
        """
        Move to ``target``.

        Args:
            target: Tag name, or None / a root alias to return to the root
            known_tags: Tags the user currently has

        Returns:
            True if the scope changed to the target, False if the tag does not
            exist (scope is left as it was)
        """
        if self.is_root_target(target):
            self.reset()
            return True

        tag = self.normalize_target(target)
        if tag not in set(known_tags):
            logger.debug(f"Rejected cd to unknown tag '{tag}'")
            return False

        self.scope = tag
        return True

    def resolve(self, explicit: Optional[str] = None) -> Optional[str]:
        """
        Tag filter for an implicit listing.

        An explicit argument wins; otherwise the current scope applies.
        """
        if explicit is not None:
            return self.normalize_target(explicit) or None
        return self.scope

    def reset(self):
        self.scope = None
