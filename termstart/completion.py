"""
Tab completion for the terminal input buffer.

The first token completes against the verb table. Later tokens complete against
live state: tag names or bookmark names, depending on the verb. The live sets
are refreshed whenever a listing passes through the session, so they may lag
the server a little; completion is a convenience, not a source of truth.
"""
import logging
import shlex
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from .models import Bookmark, collect_tags

logger = logging.getLogger(__name__)

TAG_VERBS = ('cd', 'ls')
NAME_VERBS = ('cat', 'open', 'rm', 'edit')
TAG_ACTIONS = ('add', 'remove')


def split_words(head: str) -> List[str]:
    """
    Split the text before the cursor the way the interpreter splits a line.

    A quote left open while typing is treated as closed at the cursor.
    """
    for suffix in ("", '"', "'"):
        try:
            return shlex.split(head + suffix)
        except ValueError:
            continue
    return head.split()


def word_start(head: str) -> int:
    """Index where the word under the cursor begins; len(head) between words."""
    start = None
    quote = None
    for i, char in enumerate(head):
        if quote:
            if char == quote:
                quote = None
        elif char.isspace():
            start = None
        else:
            if start is None:
                start = i
            if char in "\"'":
                quote = char
    return len(head) if start is None else start


@dataclass
class CompletionIndex:
    """Live tag and bookmark-name sets used for completion."""
    tags: Set[str] = field(default_factory=set)
    names: Set[str] = field(default_factory=set)

    def update_from(self, bookmarks: Iterable[Bookmark]):
        bookmarks = list(bookmarks)
        self.tags = set(collect_tags(bookmarks))
        self.names = {b.name for b in bookmarks}

    def clear(self):
        self.tags = set()
        self.names = set()


@dataclass
class CompletionResult:
    """
    Outcome of one completion request.

    ``buffer`` and ``cursor`` describe the input after completion. When several
    candidates match, the buffer is unchanged and ``message`` holds the
    candidates for display.
    """
    buffer: str
    cursor: int
    candidates: List[str] = field(default_factory=list)
    message: Optional[str] = None

    @property
    def changed(self) -> bool:
        return len(self.candidates) == 1


class Completer:
    """Prefix completion against verbs and live entity names."""

    def __init__(self, verbs: Iterable[str], index: Optional[CompletionIndex] = None):
        self.verbs = sorted(set(verbs))
        self.index = index if index is not None else CompletionIndex()

    def candidates_for(self, tokens: List[str]) -> List[str]:
        """
        Candidate words for the last token.

        Args:
            tokens: Tokens before the cursor; the last one is being completed
        """
        if len(tokens) <= 1:
            pool: Iterable[str] = self.verbs
        else:
            pool = self._pool(tokens[0].lower(), len(tokens) - 1, tokens)
        prefix = tokens[-1] if tokens else ""
        return sorted(c for c in pool if c.startswith(prefix))

    def _pool(self, verb: str, position: int, tokens: List[str]) -> Iterable[str]:
        if verb in TAG_VERBS:
            return self.index.tags if position == 1 else ()
        if verb in NAME_VERBS:
            return self.index.names if position == 1 else ()
        if verb == 'tag':
            if position == 1:
                return self.index.names
            if position == 2:
                return TAG_ACTIONS
            if tokens[2].lower() in TAG_ACTIONS:
                return self.index.tags
        return ()

    def complete(self, buffer: str, cursor: Optional[int] = None) -> CompletionResult:
        """
        Complete the token ending at ``cursor``.

        Exactly one candidate replaces the token in place and moves the cursor
        to the end of the inserted text. Several candidates leave the buffer
        alone and report them. None is a no-op.
        """
        if cursor is None:
            cursor = len(buffer)
        head, tail = buffer[:cursor], buffer[cursor:]

        tokens = split_words(head)
        start = word_start(head)
        if start == len(head):
            tokens.append("")
        token = tokens[-1]

        candidates = self.candidates_for(tokens)
        if not candidates:
            return CompletionResult(buffer=buffer, cursor=cursor)

        if len(candidates) > 1:
            return CompletionResult(buffer=buffer, cursor=cursor, candidates=candidates,
                                    message="  ".join(candidates))

        completed = head[:start] + candidates[0]
        logger.debug(f"Completed '{token}' to '{candidates[0]}'")
        return CompletionResult(buffer=completed + tail, cursor=len(completed),
                                candidates=candidates)
