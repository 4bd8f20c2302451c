import pytest

from termstart.auth import MemoryAuth
from termstart.cache import ResultCache
from termstart.config import TermstartConfig
from termstart.models import Bookmark, Identity
from termstart.session import Session
from termstart.store import DuplicateNameError, normalize_url, validate_name
from termstart.terminal import Terminal


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeStore:
    """
    In-memory stand-in for BookmarkStore.

    Counts calls per method and can be told to fail with a NetworkError.
    """

    def __init__(self, bookmarks=None):
        self.rows = {b.name: b for b in (bookmarks or [])}
        self.calls = {'list': 0, 'get_by_name': 0, 'create': 0, 'update': 0,
                      'delete': 0, 'search': 0}
        self.fail_with = None

    def _call(self, method):
        self.calls[method] += 1
        if self.fail_with is not None:
            raise self.fail_with

    @property
    def total_calls(self):
        return sum(self.calls.values())

    async def list(self, identity, tag=None):
        self._call('list')
        rows = list(self.rows.values())
        if tag is not None:
            rows = [b for b in rows if tag in b.tags]
        return [Bookmark(b.name, b.url, set(b.tags)) for b in rows]

    async def get_by_name(self, identity, name):
        self._call('get_by_name')
        row = self.rows.get(name)
        return Bookmark(row.name, row.url, set(row.tags)) if row else None

    async def create(self, identity, name, url, tags=()):
        self._call('create')
        validate_name(name)
        url = normalize_url(url)
        if name in self.rows:
            raise DuplicateNameError(name)
        self.rows[name] = Bookmark(name, url, set(tags), owner_id=identity.id)
        return Bookmark(name, url, set(tags))

    async def update(self, identity, name, url=None, tags=None):
        self._call('update')
        row = self.rows.get(name)
        if row is None:
            return None
        if url is not None:
            row.url = normalize_url(url)
        if tags is not None:
            row.tags = set(tags)
        return Bookmark(row.name, row.url, set(row.tags))

    async def delete(self, identity, name):
        self._call('delete')
        return self.rows.pop(name, None) is not None

    async def search(self, identity, query):
        self._call('search')
        query = query.lower()
        return sorted(
            (b for b in self.rows.values()
             if query in b.name.lower() or query in b.url.lower()),
            key=lambda b: b.name,
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def identity():
    return Identity(id="user-1", email="ada@example.com", token="token-1")


@pytest.fixture
def sample_bookmarks():
    """Sample bookmarks: two tagged, one untagged."""
    return [
        Bookmark("python-docs", "https://docs.python.org", {"python", "docs"}),
        Bookmark("github", "https://github.com", {"dev"}),
        Bookmark("news", "https://news.ycombinator.com"),
    ]


@pytest.fixture
def store(sample_bookmarks):
    return FakeStore(sample_bookmarks)


@pytest.fixture
def auth(identity):
    """Auth provider with ada signed in; bob is an admin account."""
    provider = MemoryAuth(
        identity=identity,
        accounts={"ada@example.com": "secret", "bob@example.com": "hunter2"},
        admins=("bob@example.com",),
    )
    return provider


@pytest.fixture
def session(auth, store, clock):
    config = TermstartConfig()
    return Session.create(
        config=config,
        auth=auth,
        store=store,
        cache=ResultCache(ttl=config.cache_ttl, clock=clock),
        open_url=lambda url: True,
    )


@pytest.fixture
def guest_session(store, clock):
    return Session.create(
        auth=MemoryAuth(accounts={"ada@example.com": "secret"}),
        store=store,
        cache=ResultCache(clock=clock),
    )


@pytest.fixture
def terminal(session):
    return Terminal(session)


@pytest.fixture
def guest_terminal(guest_session):
    return Terminal(guest_session)
