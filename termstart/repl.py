"""
termstart hosts.

This module puts the terminal engine in front of a user:

- ``TerminalRepl``: an interactive prompt built on prompt_toolkit, with Tab,
  Up and Down routed to the engine's completion and recall
- ``TerminalHandler``: a message handler for embedding the engine behind a
  web socket
- ``main``: the ``termstart`` console script
"""
import argparse
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from prompt_toolkit import PromptSession
from prompt_toolkit.application import run_in_terminal
from prompt_toolkit.document import Document
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.styles import Style
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from . import __version__
from .auth import RestAuth
from .config import TermstartConfig, load_config
from .interpreter import BOOKMARK_ITEM, TAG_ITEM, TREE_BRANCH, TREE_LAST, CommandResult
from .session import Session
from .store import BookmarkStore
from .terminal import Terminal

logger = logging.getLogger(__name__)

TAG_GLYPH = "📁"
BOOKMARK_GLYPH = "🔖"

PALETTES = {
    'dark': {'tag': 'bold cyan', 'bookmark': 'green', 'tags': 'dim', 'error': 'red',
             'prompt': '#00aa00 bold'},
    'light': {'tag': 'bold blue', 'bookmark': 'dark_green', 'tags': 'grey50', 'error': 'dark_red',
              'prompt': '#005f00 bold'},
}


def render_line(line: str, theme: str = 'dark') -> Text:
    """
    Render one protocol line for the console.

    ``TAG_ITEM`` and ``BOOKMARK_ITEM`` records get a glyph and colors; anything
    else is shown as plain text.
    """
    palette = PALETTES.get(theme, PALETTES['dark'])

    if line.startswith(TAG_ITEM):
        return Text(f"{TAG_GLYPH} {line[len(TAG_ITEM):]}", style=palette['tag'])

    if line.startswith(BOOKMARK_ITEM):
        body = line[len(BOOKMARK_ITEM):]
        prefix = ""
        for branch in (TREE_BRANCH, TREE_LAST):
            if body.startswith(branch):
                prefix, body = branch, body[len(branch):]
                break

        name, sep, tags = body.partition(" [")
        text = Text(prefix)
        text.append(f"{BOOKMARK_GLYPH} {name}", style=palette['bookmark'])
        if sep:
            text.append(f" [{tags}", style=palette['tags'])
        return text

    return Text(line)


def render_result(result: CommandResult, theme: str = 'dark') -> List[Text]:
    """Console lines for a command result; failures are drawn in the error color."""
    if not result.output:
        return []
    if not result.success:
        palette = PALETTES.get(theme, PALETTES['dark'])
        return [Text(result.output, style=palette['error'])]
    return [render_line(line, theme) for line in result.output.split("\n")]


class TerminalRepl:
    """
    Interactive prompt for the terminal engine.
    """

    def __init__(self, terminal: Terminal, console: Optional[Console] = None):
        """
        Initialize the REPL.

        Args:
            terminal: Engine to drive
            console: Output console (default: a new rich Console)
        """
        self.terminal = terminal
        self.console = console or Console()
        self.prompt_session = None
        self._setup_prompt()

    def _setup_prompt(self):
        """Set up the prompt_toolkit session."""
        self.prompt_session = PromptSession(
            key_bindings=self._key_bindings(),
            style=self._style(),
        )

    def _style(self) -> Style:
        palette = PALETTES.get(self.terminal.session.theme, PALETTES['dark'])
        return Style.from_dict({'prompt': palette['prompt']})

    def _key_bindings(self) -> KeyBindings:
        bindings = KeyBindings()
        terminal = self.terminal

        @bindings.add('tab')
        def _(event):
            buffer = event.app.current_buffer
            result = terminal.complete(buffer.text, buffer.cursor_position)
            if result.changed:
                buffer.document = Document(result.buffer, result.cursor)
            elif result.message:
                run_in_terminal(lambda: self.console.print(result.message, style='dim'))

        @bindings.add('up')
        def _(event):
            line = terminal.history_up()
            if line is not None:
                event.app.current_buffer.document = Document(line, len(line))

        @bindings.add('down')
        def _(event):
            line = terminal.history_down()
            if line is not None:
                event.app.current_buffer.document = Document(line, len(line))

        return bindings

    def get_prompt(self) -> List[Tuple[str, str]]:
        """Generate the prompt for the current scope."""
        return [('class:prompt', f"{self.terminal.prompt} ")]

    def show(self, result: CommandResult):
        if result.clear:
            self.console.clear()
            return
        theme = self.terminal.session.theme
        for line in render_result(result, theme):
            self.console.print(line)

    async def run(self):
        """Run the interactive loop until EOF or ``exit``."""
        self.console.print(Panel.fit(
            f"[bold cyan]termstart v{__version__}[/bold cyan]\n"
            "Type 'help' for commands, 'exit' to quit",
            border_style="cyan"
        ))
        await self.terminal.start()

        while True:
            try:
                command_line = await self.prompt_session.prompt_async(self.get_prompt())
            except KeyboardInterrupt:
                self.console.print("[yellow]Use 'exit' to quit[/yellow]")
                continue
            except EOFError:
                break

            if command_line.strip().lower() in ('exit', 'quit'):
                break

            theme = self.terminal.session.theme
            result = await self.terminal.execute(command_line)
            if result is None:
                continue
            self.show(result)
            if self.terminal.session.theme != theme:
                self.prompt_session.style = self._style()

        self.console.print("[yellow]Goodbye![/yellow]")
        await self.terminal.close()


class TerminalHandler:
    """
    Handler for message-based terminal communication.

    Each message is a dict with a ``type`` and a ``data`` dict; each response
    carries ``type``, ``success`` and ``data``.
    """

    def __init__(self, terminal: Terminal):
        self.terminal = terminal

    async def handle_message(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """
        Handle one message.

        Supported types: ``execute``, ``complete``, ``recall``, ``history``
        and ``context``.
        """
        msg_type = message.get('type')
        data = message.get('data') or {}

        if msg_type == 'execute':
            result = await self.terminal.execute(data.get('command', ''))
            if result is None:
                result = CommandResult.ok()
            return {
                'type': 'result',
                'success': result.success,
                'data': {
                    'kind': result.kind.value,
                    'output': result.output,
                    'clear': result.clear,
                    'prompt': self.terminal.prompt,
                }
            }

        elif msg_type == 'complete':
            completion = self.terminal.complete(data.get('buffer', ''), data.get('cursor'))
            return {
                'type': 'completion',
                'success': True,
                'data': {
                    'buffer': completion.buffer,
                    'cursor': completion.cursor,
                    'candidates': completion.candidates,
                    'message': completion.message,
                }
            }

        elif msg_type == 'recall':
            direction = data.get('direction', 'up')
            if direction not in ('up', 'down'):
                return self._error(f"Unknown recall direction: {direction}")
            if direction == 'up':
                line = self.terminal.history_up()
            else:
                line = self.terminal.history_down()
            return {
                'type': 'recall',
                'success': True,
                'data': {'line': line}
            }

        elif msg_type == 'history':
            return {
                'type': 'history',
                'success': True,
                'data': {'entries': [e.to_dict() for e in self.terminal.history]}
            }

        elif msg_type == 'context':
            session = self.terminal.session
            identity = session.user()
            return {
                'type': 'context',
                'success': True,
                'data': {
                    'prompt': self.terminal.prompt,
                    'scope': session.navigation.scope,
                    'user': identity.email if identity else None,
                    'theme': session.theme,
                }
            }

        return self._error(f"Unknown message type: {msg_type}")

    @staticmethod
    def _error(message: str) -> Dict[str, Any]:
        return {
            'type': 'error',
            'success': False,
            'data': {'error': message}
        }


def build_terminal(config: TermstartConfig) -> Terminal:
    """Terminal wired to the REST store and auth service named in ``config``."""
    session = Session.create(
        config=config,
        auth=RestAuth(config),
        store=BookmarkStore(config),
    )
    return Terminal(session)


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="termstart - a terminal for your bookmarks",
        epilog="""
Configuration:
  Config file: ~/.config/termstart/config.toml
  Environment: TERMSTART_STORE_URL, TERMSTART_API_KEY, TERMSTART_LOG_LEVEL
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="Config file path")
    parser.add_argument("--store-url", help="Base URL of the bookmark service")
    parser.add_argument("--api-key", help="API key for the bookmark service")
    parser.add_argument("--log-level", help="Logging level (default: WARNING)")
    parser.add_argument("--version", action="version", version=f"termstart {__version__}")
    args = parser.parse_args(argv)

    config = load_config(
        Path(args.config) if args.config else None,
        store_url=args.store_url,
        api_key=args.api_key,
        log_level=args.log_level,
    )
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    repl = TerminalRepl(build_terminal(config))
    asyncio.run(repl.run())


if __name__ == "__main__":
    main()
