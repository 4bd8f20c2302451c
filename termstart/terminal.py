"""
Embeddable terminal engine.

``Terminal`` is the surface a UI talks to. It owns no I/O: a host feeds it
submitted lines and key events and renders ``session.history``. Submitting a
line records a pending history entry at once; remote commands then run as
tasks and fill their entry in by sequence id when they finish, in whatever
order that happens.
"""
import asyncio
import logging
from typing import Awaitable, Optional, Set

from .completion import Completer, CompletionResult
from .history import HistoryEntry
from .interpreter import CommandResult, Interpreter
from .session import Session

logger = logging.getLogger(__name__)


class Terminal:
    """Command submission, recall and completion for one session."""

    def __init__(self, session: Optional[Session] = None):
        self.session = session or Session.create()
        self.interpreter = Interpreter(self.session)
        self.completer = Completer(self.interpreter.verbs, self.session.completions)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def history(self):
        return self.session.history

    @property
    def prompt(self) -> str:
        return self.session.prompt

    async def start(self):
        """Warm up the completion index for an already signed-in user."""
        await self.session.prime_completions()

    def submit(self, command_line: str) -> Optional[HistoryEntry]:
        """
        Submit a line without waiting for it.

        Must be called from a running event loop when the line may be a
        remote command.

        Returns:
            The new history entry (already complete for local commands), or
            None for a blank line
        """
        if not command_line.strip():
            return None

        entry = self.history.begin(command_line, self.prompt)
        outcome = self.interpreter.dispatch(command_line)

        if isinstance(outcome, CommandResult):
            self._finish(entry.sequence_id, outcome)
            return entry

        task = asyncio.ensure_future(self._settle(entry.sequence_id, outcome))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return entry

    async def execute(self, command_line: str) -> Optional[CommandResult]:
        """
        Submit a line and wait for its result.

        Returns:
            The command's result, or None for a blank line
        """
        if not command_line.strip():
            return None

        entry = self.history.begin(command_line, self.prompt)
        outcome = self.interpreter.dispatch(command_line)
        if isinstance(outcome, CommandResult):
            self._finish(entry.sequence_id, outcome)
            return outcome
        return await self._settle(entry.sequence_id, outcome)

    async def drain(self):
        """Wait for every in-flight command to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _settle(self, sequence_id: int,
                      pending: Awaitable[CommandResult]) -> CommandResult:
        try:
            result = await pending
        except Exception as e:
            # Keep the session alive whatever a handler does
            logger.exception(f"Command #{sequence_id} raised")
            result = CommandResult.error(f"Error: {e}")
        self._finish(sequence_id, result)
        return result

    def _finish(self, sequence_id: int, result: CommandResult):
        if result.clear:
            self.history.clear()
            return
        self.history.complete(sequence_id, result.output)

    # Key events

    def history_up(self) -> Optional[str]:
        """ArrowUp: the line to put in the input buffer, or None to leave it."""
        return self.history.recall_previous()

    def history_down(self) -> Optional[str]:
        """ArrowDown: the line to put in the input buffer, or None to leave it."""
        return self.history.recall_next()

    def complete(self, buffer: str, cursor: Optional[int] = None) -> CompletionResult:
        """Tab: complete the token before the cursor."""
        return self.completer.complete(buffer, cursor)

    async def close(self):
        await self.drain()
        for collaborator in (self.session.store, self.session.auth):
            close = getattr(collaborator, 'close', None)
            if close is not None:
                await close()
