"""
termstart command interpreter.

Turns one input line into a ``CommandResult``. Dispatch is data driven: each
verb has a ``CommandSpec`` describing its arity, whether it needs a signed-in
user, and whether it runs locally or needs the network.

Preconditions (auth, arity, quoting) are always checked synchronously before
any network access. Local verbs return their result directly; remote verbs
return a coroutine whose only suspension points are store and auth calls.

Output uses a small line protocol so a presentation layer can draw icons:

    TAG_ITEM:<tag>
    BOOKMARK_ITEM:<prefix?><name>[ [<tag>, <tag>...]]
"""
import logging
import platform
import shlex
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Union

from . import __version__
from .auth import AuthError
from .models import Bookmark, Identity, collect_tags, filter_by_tag
from .navigation import Navigation
from .session import Session
from .store import (
    BookmarkValidationError,
    DataLayerError,
    NetworkError,
    NotAuthenticatedError,
    normalize_url,
    validate_name,
)

logger = logging.getLogger(__name__)

TAG_ITEM = "TAG_ITEM:"
BOOKMARK_ITEM = "BOOKMARK_ITEM:"
TREE_BRANCH = "├── "
TREE_LAST = "└── "
UNTAGGED_GROUP = "untagged"

UNKNOWN_COMMAND_MESSAGE = "Unknown command. Type 'help' for available commands."
UNAUTHENTICATED_MESSAGE = "You must be logged in to use this command."
FORBIDDEN_MESSAGE = "Permission denied: admin only."


class OutcomeKind(Enum):
    """What kind of result a command produced."""
    OK = "ok"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    USAGE_ERROR = "usage_error"
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    NETWORK_ERROR = "network_error"
    DATA_LAYER_ERROR = "data_layer_error"
    AUTH_ERROR = "auth_error"
    UNKNOWN_COMMAND = "unknown_command"
    INTERNAL_ERROR = "internal_error"


# NotFound is an ordinary answer, not a failure
NON_FAILURES = (OutcomeKind.OK, OutcomeKind.NOT_FOUND)


@dataclass
class CommandResult:
    """Result of executing one command line."""
    kind: OutcomeKind = OutcomeKind.OK
    output: str = ""
    clear: bool = False

    @property
    def success(self) -> bool:
        return self.kind in NON_FAILURES

    @classmethod
    def ok(cls, output: str = "") -> "CommandResult":
        return cls(OutcomeKind.OK, output)

    @classmethod
    def error(cls, output: str) -> "CommandResult":
        return cls(OutcomeKind.INTERNAL_ERROR, output)


Handler = Callable[..., Union[CommandResult, Awaitable[CommandResult]]]


@dataclass
class CommandSpec:
    """
    Dispatch table entry for one verb.

    Attributes:
        name: The verb
        handler: ``handler(args)`` for local verbs, ``async handler(args, identity)``
            for remote ones
        usage: Usage string shown on arity errors
        summary: One-line description for ``help``
        min_args/max_args: Accepted argument count (``max_args=None`` is unbounded)
        requires_auth: Fail with Unauthenticated when nobody is signed in
        admin_only: Additionally require an admin identity
        is_local: Runs synchronously with no network access
        audience: Who sees the verb in ``help``: any, guest, user or admin
        failure: Prefix for store/auth error messages
    """
    name: str
    handler: Handler
    usage: str
    summary: str
    min_args: int = 0
    max_args: Optional[int] = 0
    requires_auth: bool = False
    admin_only: bool = False
    is_local: bool = True
    audience: str = "any"
    failure: str = ""

    def accepts(self, count: int) -> bool:
        if count < self.min_args:
            return False
        return self.max_args is None or count <= self.max_args

    def visible_to(self, identity: Optional[Identity]) -> bool:
        if self.audience == "any":
            return True
        if self.audience == "guest":
            return identity is None
        if self.audience == "user":
            return identity is not None
        return identity is not None and identity.is_admin


def format_tags(tags: Iterable[str]) -> str:
    """`` [a, b]`` for a non-empty tag set, else an empty string."""
    tags = sorted(tags)
    return f" [{', '.join(tags)}]" if tags else ""


def bookmark_item(bookmark: Bookmark, prefix: str = "", with_tags: bool = True) -> str:
    tags = format_tags(bookmark.tags) if with_tags else ""
    return f"{BOOKMARK_ITEM}{prefix}{bookmark.name}{tags}"


def render_root_listing(bookmarks: List[Bookmark]) -> str:
    """
    Root view: every tag once, alphabetically, then the untagged bookmarks.

    A bookmark with at least one tag never appears in the untagged part.
    """
    lines = [f"{TAG_ITEM}{tag}" for tag in collect_tags(bookmarks)]
    lines.extend(bookmark_item(b) for b in bookmarks if b.is_untagged)
    return "\n".join(lines)


def render_tag_listing(bookmarks: List[Bookmark]) -> str:
    """Flat list of the bookmarks in one tag."""
    return "\n".join(bookmark_item(b) for b in bookmarks)


def render_tree(bookmarks: List[Bookmark]) -> str:
    """
    Every tag with its bookmarks drawn as branches, then an ``untagged`` group.

    A bookmark with several tags appears under each of them.
    """
    lines = []

    def branch(group: List[Bookmark]):
        group = sorted(group, key=lambda b: b.name)
        for i, bookmark in enumerate(group):
            prefix = TREE_LAST if i == len(group) - 1 else TREE_BRANCH
            lines.append(bookmark_item(bookmark, prefix, with_tags=False))

    for tag in collect_tags(bookmarks):
        lines.append(f"{TAG_ITEM}{tag}")
        branch(filter_by_tag(bookmarks, tag))

    untagged = [b for b in bookmarks if b.is_untagged]
    if untagged:
        lines.append(f"{TAG_ITEM}{UNTAGGED_GROUP}")
        branch(untagged)

    return "\n".join(lines)


class Interpreter:
    """
    Command dispatcher for one session.

    ``dispatch`` returns either a ``CommandResult`` (local verbs and every
    precondition failure) or a coroutine resolving to one (remote verbs).
    """

    def __init__(self, session: Session):
        self.session = session
        self.commands: Dict[str, CommandSpec] = {}

        # Local commands
        self._register("help", self.cmd_help, "help [command]", "Show this help message", max_args=1)
        self._register("clear", self.cmd_clear, "clear", "Clear the terminal")
        self._register("version", self.cmd_version, "version", "Show version information")
        self._register("theme", self.cmd_theme, "theme", "Toggle between light and dark theme")
        self._register("fetch", self.cmd_fetch, "fetch", "Display system information")
        self._register("whoami", self.cmd_whoami, "whoami", "Show current user information")
        self._register("pwd", self.cmd_pwd, "pwd", "Show the current tag scope")
        self._register("debug", self.cmd_debug, "debug", "Show session diagnostics",
                       requires_auth=True, admin_only=True, audience="admin")

        # Account commands, delegated to the auth collaborator
        self._register("register", self.cmd_register, "register <email> <password>",
                       "Create a new account", min_args=2, max_args=2, is_local=False,
                       audience="guest", failure="Registration failed")
        self._register("login", self.cmd_login, "login <email> <password>",
                       "Login to your account", min_args=2, max_args=2, is_local=False,
                       audience="guest", failure="Login failed")
        self._register("logout", self.cmd_logout, "logout", "Logout from your account",
                       is_local=False, audience="user", failure="Logout failed")

        # Bookmark commands
        self._remote("cd", self.cmd_cd, "cd [tag]", "Change into a tag (no argument: back to root)",
                     max_args=1, failure="Failed to change directory")
        self._remote("ls", self.cmd_ls, "ls [tag]", "List your bookmarks",
                     max_args=1, failure="Failed to list bookmarks")
        self._remote("cat", self.cmd_cat, "cat <bookmark_name>", "Show bookmark URL",
                     min_args=1, max_args=1, failure="Failed to get bookmark")
        self._remote("touch", self.cmd_touch, "touch <name> <url> [tags...]", "Create a bookmark",
                     min_args=2, max_args=None, failure="Failed to create bookmark")
        self._remote("open", self.cmd_open, "open <bookmark_name>", "Open bookmark in new tab",
                     min_args=1, max_args=1, failure="Failed to get bookmark")
        self._remote("rm", self.cmd_rm, "rm <bookmark_name>", "Remove a bookmark",
                     min_args=1, max_args=1, failure="Failed to delete bookmark")
        self._remote("tag", self.cmd_tag, "tag <bookmark_name> <add|remove> <tag1> [tag2...]",
                     "Add/remove tags", min_args=3, max_args=None, failure="Failed to update bookmark")
        self._remote("edit", self.cmd_edit, "edit <bookmark_name> url <new_url>",
                     "Change a bookmark's URL", min_args=3, max_args=3,
                     failure="Failed to update bookmark")
        self._remote("search", self.cmd_search, "search <query>", "Search bookmarks",
                     min_args=1, max_args=None, failure="Failed to search bookmarks")
        self._remote("tree", self.cmd_tree, "tree",
                     "Show a hierarchical view of bookmarks organized by tags",
                     failure="Failed to get bookmarks")

    def _register(self, name: str, handler: Handler, usage: str, summary: str, **kwargs):
        self.commands[name] = CommandSpec(name=name, handler=handler, usage=usage,
                                          summary=summary, **kwargs)

    def _remote(self, name: str, handler: Handler, usage: str, summary: str, **kwargs):
        self._register(name, handler, usage, summary, requires_auth=True, is_local=False,
                       audience="user", **kwargs)

    @property
    def verbs(self) -> List[str]:
        return sorted(self.commands)

    def dispatch(self, command_line: str) -> Union[CommandResult, Awaitable[CommandResult]]:
        """
        Interpret one command line.

        Args:
            command_line: Raw input

        Returns:
            A CommandResult, or a coroutine producing one for remote verbs
        """
        command_line = command_line.strip()
        if not command_line:
            return CommandResult.ok()

        try:
            parts = shlex.split(command_line)
        except ValueError:
            return CommandResult(OutcomeKind.USAGE_ERROR, "Unterminated quoted string")
        if not parts:
            return CommandResult.ok()

        verb = parts[0].lower()
        args = parts[1:]

        spec = self.commands.get(verb)
        if spec is None:
            logger.debug(f"Unknown verb '{verb}'")
            return CommandResult(OutcomeKind.UNKNOWN_COMMAND, UNKNOWN_COMMAND_MESSAGE)

        identity = self.session.user()
        if spec.requires_auth and identity is None:
            return CommandResult(OutcomeKind.UNAUTHENTICATED, UNAUTHENTICATED_MESSAGE)
        if spec.admin_only and not identity.is_admin:
            return CommandResult(OutcomeKind.FORBIDDEN, FORBIDDEN_MESSAGE)
        if not spec.accepts(len(args)):
            return CommandResult(OutcomeKind.USAGE_ERROR, f"Usage: {spec.usage}")

        logger.debug(f"Dispatching '{verb}' with {len(args)} argument(s)")
        if spec.is_local:
            return spec.handler(args)
        return self._run_remote(spec, args, identity)

    async def _run_remote(self, spec: CommandSpec, args: List[str],
                          identity: Optional[Identity]) -> CommandResult:
        """Await a remote handler and turn collaborator errors into results."""
        try:
            return await spec.handler(args, identity)
        except NotAuthenticatedError:
            return CommandResult(OutcomeKind.UNAUTHENTICATED, UNAUTHENTICATED_MESSAGE)
        except BookmarkValidationError as e:
            return CommandResult(OutcomeKind.VALIDATION_ERROR, f"{spec.failure}: {e}")
        except NetworkError as e:
            return CommandResult(OutcomeKind.NETWORK_ERROR, f"{spec.failure}: {e}")
        except DataLayerError as e:
            return CommandResult(OutcomeKind.DATA_LAYER_ERROR, f"{spec.failure}: {e}")
        except AuthError as e:
            return CommandResult(OutcomeKind.AUTH_ERROR, f"{spec.failure}: {e}")

    # Local commands

    def cmd_help(self, args: List[str]) -> CommandResult:
        """List the commands available to the current user, or one command's usage."""
        identity = self.session.user()

        if args:
            spec = self.commands.get(args[0].lower())
            if spec is None or not spec.visible_to(identity):
                return CommandResult(OutcomeKind.NOT_FOUND, f"No help for '{args[0]}'.")
            return CommandResult.ok(f"{spec.name} - {spec.summary}\nUsage: {spec.usage}")

        lines = ["Available commands:"]
        for spec in self.commands.values():
            if not spec.visible_to(identity):
                continue
            usage = f" (usage: {spec.usage})" if spec.usage != spec.name else ""
            lines.append(f"  {spec.name:<9}- {spec.summary}{usage}")
        return CommandResult.ok("\n".join(lines))

    def cmd_clear(self, args: List[str]) -> CommandResult:
        return CommandResult(OutcomeKind.OK, "", clear=True)

    def cmd_version(self, args: List[str]) -> CommandResult:
        return CommandResult.ok(f"termstart v{__version__}")

    def cmd_theme(self, args: List[str]) -> CommandResult:
        theme = self.session.toggle_theme()
        return CommandResult.ok(f"Switched to {theme} theme")

    def cmd_fetch(self, args: List[str]) -> CommandResult:
        identity = self.session.user()
        lines = [
            identity.email if identity else "guest",
            f"OS: {platform.system() or 'Unknown OS'}",
            f"Python: {platform.python_version()}",
            f"Theme: {self.session.theme.capitalize()}",
            f"Client: {self.session.config.user_agent}",
        ]
        return CommandResult.ok("\n".join(lines))

    def cmd_whoami(self, args: List[str]) -> CommandResult:
        identity = self.session.user()
        if identity is None:
            return CommandResult.ok("Not logged in")
        return CommandResult.ok(f"Logged in as: {identity.email}")

    def cmd_pwd(self, args: List[str]) -> CommandResult:
        return CommandResult.ok(self.session.navigation.path)

    def cmd_debug(self, args: List[str]) -> CommandResult:
        session = self.session
        age = session.cache.age()
        stats = session.cache.stats
        lines = [
            f"User: {session.user().email}",
            f"Scope: {session.navigation.path}",
            "Cache: empty" if age is None else f"Cache: {len(session.cache.entry.snapshot)} bookmarks, "
                                              f"{age:.0f}s old (ttl {session.cache.ttl}s)",
            f"Cache stats: {stats['hits']} hits, {stats['misses']} misses, "
            f"{stats['invalidations']} invalidations",
            f"History: {len(session.history)} entries, {len(session.history.pending)} pending",
            f"Completions: {len(session.completions.tags)} tags, {len(session.completions.names)} names",
        ]
        return CommandResult.ok("\n".join(lines))

    # Account commands

    async def cmd_register(self, args: List[str], identity: Optional[Identity]) -> CommandResult:
        if identity is not None:
            return CommandResult.ok("You are already logged in. Use 'logout' to sign out first.")
        user = await self.session.auth.sign_up(args[0], args[1])
        self.session.reset()
        await self.session.prime_completions()
        return CommandResult.ok(f"Successfully registered and logged in as: {user.email}")

    async def cmd_login(self, args: List[str], identity: Optional[Identity]) -> CommandResult:
        if identity is not None:
            return CommandResult.ok("You are already logged in. Use 'logout' to sign out first.")
        user = await self.session.auth.sign_in(args[0], args[1])
        self.session.reset()
        await self.session.prime_completions()
        return CommandResult.ok(f"Successfully logged in as: {user.email}")

    async def cmd_logout(self, args: List[str], identity: Optional[Identity]) -> CommandResult:
        if identity is None:
            return CommandResult.ok("You are not logged in.")
        await self.session.auth.sign_out()
        self.session.reset()
        return CommandResult.ok("Successfully logged out")

    # Bookmark commands

    async def cmd_cd(self, args: List[str], identity: Identity) -> CommandResult:
        navigation = self.session.navigation
        target = args[0] if args else None

        if Navigation.is_root_target(target):
            navigation.reset()
            return CommandResult.ok()

        bookmarks = await self.session.bookmarks(identity)
        if not navigation.change(target, collect_tags(bookmarks)):
            tag = Navigation.normalize_target(target)
            return CommandResult(OutcomeKind.NOT_FOUND, f"Tag '{tag}' not found.")
        return CommandResult.ok()

    async def cmd_ls(self, args: List[str], identity: Identity) -> CommandResult:
        tag = self.session.navigation.resolve(args[0] if args else None)
        bookmarks = await self.session.bookmarks(identity)

        if tag is not None:
            tagged = filter_by_tag(bookmarks, tag)
            if not tagged:
                return CommandResult(OutcomeKind.NOT_FOUND, f"No bookmarks found in tag '{tag}'")
            return CommandResult.ok(render_tag_listing(tagged))

        if not bookmarks:
            return CommandResult.ok("No bookmarks found.")
        return CommandResult.ok(render_root_listing(bookmarks))

    async def cmd_tree(self, args: List[str], identity: Identity) -> CommandResult:
        bookmarks = await self.session.bookmarks(identity)
        if not bookmarks:
            return CommandResult.ok("No bookmarks found.")
        return CommandResult.ok(render_tree(bookmarks))

    async def cmd_cat(self, args: List[str], identity: Identity) -> CommandResult:
        name = args[0]
        bookmark = await self.session.store.get_by_name(identity, name)
        if bookmark is None:
            return CommandResult(OutcomeKind.NOT_FOUND, f"Bookmark '{name}' not found.")

        output = f"URL: {bookmark.url}"
        if bookmark.tags:
            output += f"\nTags: {', '.join(bookmark.sorted_tags())}"
        return CommandResult.ok(output)

    async def cmd_open(self, args: List[str], identity: Identity) -> CommandResult:
        name = args[0]
        bookmark = await self.session.store.get_by_name(identity, name)
        if bookmark is None:
            return CommandResult(OutcomeKind.NOT_FOUND, f"Bookmark '{name}' not found.")

        if not self.session.open_url(bookmark.url):
            return CommandResult(OutcomeKind.DATA_LAYER_ERROR,
                                 f"Failed to open URL: no browser available for {bookmark.url}")
        return CommandResult.ok(f"Opening {bookmark.url} in new tab...")

    async def cmd_touch(self, args: List[str], identity: Identity) -> CommandResult:
        name, url, tags = args[0], args[1], args[2:]

        # Reject bad input before anything goes over the wire
        validate_name(name)
        normalize_url(url)

        bookmark = await self.session.store.create(identity, name, url, tags)
        self.session.cache.invalidate()
        self.session.completions.names.add(bookmark.name)
        self.session.completions.tags.update(bookmark.tags)

        output = f"Created bookmark '{bookmark.name}'"
        if bookmark.tags:
            output += f" with tags: {', '.join(bookmark.sorted_tags())}"
        return CommandResult.ok(output)

    async def cmd_rm(self, args: List[str], identity: Identity) -> CommandResult:
        name = args[0]
        deleted = await self.session.store.delete(identity, name)
        self.session.cache.invalidate()

        if not deleted:
            return CommandResult(OutcomeKind.NOT_FOUND, f"Bookmark '{name}' not found.")
        self.session.completions.names.discard(name)
        return CommandResult.ok(f"Deleted bookmark '{name}'")

    async def cmd_tag(self, args: List[str], identity: Identity) -> CommandResult:
        name, action, tags = args[0], args[1].lower(), args[2:]
        if action not in ('add', 'remove'):
            return CommandResult(OutcomeKind.USAGE_ERROR, "Invalid action. Use 'add' or 'remove'.")

        existing = await self.session.store.get_by_name(identity, name)
        if existing is None:
            return CommandResult(OutcomeKind.NOT_FOUND, f"Bookmark '{name}' not found.")

        if action == 'add':
            new_tags = sorted(existing.tags | set(tags))
        else:
            new_tags = sorted(existing.tags - set(tags))

        updated = await self.session.store.update(identity, name, tags=new_tags)
        self.session.cache.invalidate()
        if updated is None:
            return CommandResult(OutcomeKind.NOT_FOUND, f"Bookmark '{name}' not found.")

        self.session.completions.tags.update(updated.tags)
        output = f"Updated bookmark '{updated.name}'"
        if updated.tags:
            output += f" with tags: {', '.join(updated.sorted_tags())}"
        return CommandResult.ok(output)

    async def cmd_edit(self, args: List[str], identity: Identity) -> CommandResult:
        name, field_name, value = args
        if field_name.lower() != 'url':
            return CommandResult(OutcomeKind.USAGE_ERROR,
                                 f"Unknown field: {field_name}. Editable fields: url")
        normalize_url(value)

        updated = await self.session.store.update(identity, name, url=value)
        self.session.cache.invalidate()
        if updated is None:
            return CommandResult(OutcomeKind.NOT_FOUND, f"Bookmark '{name}' not found.")
        return CommandResult.ok(f"Updated bookmark '{updated.name}' url: {updated.url}")

    async def cmd_search(self, args: List[str], identity: Identity) -> CommandResult:
        query = " ".join(args)
        results = await self.session.store.search(identity, query)
        if not results:
            return CommandResult(OutcomeKind.NOT_FOUND, f"No bookmarks found matching '{query}'")
        return CommandResult.ok("\n".join(
            f"{b.name} - {b.url}{format_tags(b.tags)}" for b in results
        ))
