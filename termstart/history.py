"""
Terminal history and line recall.

Two logs are kept. ``entries`` is what the terminal displays: one entry per
submitted line, created pending the moment the line is submitted and filled in
when its output arrives. ``lines`` is the recall log walked by the arrow keys;
``clear`` empties the display but keeps the recall log, like a real terminal.
"""
import itertools
import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class HistoryEntry:
    """One submitted command and its (possibly still pending) output."""
    sequence_id: int
    command_line: str
    prompt: str = ""
    output: str = ""
    pending: bool = True

    @property
    def rendered(self) -> str:
        """The command line as it was echoed at the prompt."""
        return f"{self.prompt} {self.command_line}" if self.prompt else self.command_line

    def to_dict(self) -> dict:
        return {
            'sequence_id': self.sequence_id,
            'command_line': self.command_line,
            'prompt': self.prompt,
            'output': self.output,
            'pending': self.pending,
        }


class History:
    """Append-only command history with arrow-key recall."""

    def __init__(self):
        self.entries: List[HistoryEntry] = []
        self.lines: List[str] = []
        self._sequence = itertools.count(1)
        self._recall_index: Optional[int] = None

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def begin(self, command_line: str, prompt: str = "") -> HistoryEntry:
        """Record a submitted line as a pending entry and reset recall."""
        entry = HistoryEntry(sequence_id=next(self._sequence),
                             command_line=command_line, prompt=prompt)
        self.entries.append(entry)
        self.lines.append(command_line)
        self._recall_index = None
        return entry

    def find(self, sequence_id: int) -> Optional[HistoryEntry]:
        for entry in reversed(self.entries):
            if entry.sequence_id == sequence_id:
                return entry
        return None

    def complete(self, sequence_id: int, output: str) -> Optional[HistoryEntry]:
        """
        Fill in the output of a pending entry.

        Matching is by sequence id, so results may arrive in any order. If the
        entry was cleared away while its command ran, the output is dropped.
        """
        entry = self.find(sequence_id)
        if entry is None:
            logger.debug(f"Dropping output for cleared entry #{sequence_id}")
            return None
        entry.output = output
        entry.pending = False
        return entry

    @property
    def pending(self) -> List[HistoryEntry]:
        return [e for e in self.entries if e.pending]

    def clear(self):
        """Clear the displayed entries. The recall log is kept."""
        self.entries.clear()

    # Recall

    def recall_previous(self) -> Optional[str]:
        """
        Step back one line (ArrowUp).

        Returns:
            The recalled line, or None when there is nothing to recall
        """
        if not self.lines:
            return None
        if self._recall_index is None:
            self._recall_index = len(self.lines) - 1
        else:
            self._recall_index = max(0, self._recall_index - 1)
        return self.lines[self._recall_index]

    def recall_next(self) -> Optional[str]:
        """
        Step forward one line (ArrowDown).

        Returns:
            The recalled line, ``""`` after stepping past the newest line, or
            None when recall is not active
        """
        if self._recall_index is None:
            return None
        self._recall_index += 1
        if self._recall_index >= len(self.lines):
            self._recall_index = None
            return ""
        return self.lines[self._recall_index]
