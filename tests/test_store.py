"""Tests for the REST bookmark store client."""
import asyncio
import json
import pytest
import aiohttp
from unittest.mock import AsyncMock, MagicMock

from termstart.config import TermstartConfig
from termstart.models import Identity
from termstart.store import (
    BookmarkStore,
    BookmarkValidationError,
    DataLayerError,
    DuplicateNameError,
    NetworkError,
    NotAuthenticatedError,
    normalize_url,
    substring_pattern,
    validate_name,
)


def make_response(status=200, body=None):
    """Async context manager yielding a fake aiohttp response."""
    response = MagicMock()
    response.status = status
    text = body if isinstance(body, str) else ("" if body is None else json.dumps(body))
    response.text = AsyncMock(return_value=text)
    return AsyncMock(
        __aenter__=AsyncMock(return_value=response),
        __aexit__=AsyncMock(return_value=False),
    )


def make_session(*responses):
    session = MagicMock()
    session.request = MagicMock(side_effect=list(responses))
    return session


def row(name, url="https://example.com", tags=()):
    return {"id": 1, "user_id": "user-1", "name": name, "url": url, "tags": list(tags),
            "created_at": "2024-01-01T00:00:00+00:00", "updated_at": "2024-01-01T00:00:00+00:00"}


@pytest.fixture
def config():
    return TermstartConfig(store_url="https://db.example", api_key="anon-key")


class TestNormalizeUrl:
    """Tests for normalize_url."""

    def test_adds_https_scheme(self):
        assert normalize_url("example.com") == "https://example.com"

    def test_keeps_http(self):
        assert normalize_url("http://example.com/a?b=1") == "http://example.com/a?b=1"

    def test_strips_whitespace(self):
        assert normalize_url("  https://example.com  ") == "https://example.com"

    def test_rejects_other_schemes(self):
        with pytest.raises(BookmarkValidationError, match="Invalid URL"):
            normalize_url("ftp://example.com")

    def test_rejects_missing_host(self):
        with pytest.raises(BookmarkValidationError):
            normalize_url("https://")

    def test_rejects_space_in_host(self):
        with pytest.raises(BookmarkValidationError):
            normalize_url("not a url")


class TestValidateName:
    """Tests for validate_name."""

    @pytest.mark.parametrize("name", ["docs", "my-site", "a_b", "X1"])
    def test_valid_names(self, name):
        validate_name(name)

    @pytest.mark.parametrize("name", ["", "has space", "slash/name", "dot.name", "x" * 101])
    def test_invalid_names(self, name):
        with pytest.raises(BookmarkValidationError):
            validate_name(name)

    def test_max_length_accepted(self):
        validate_name("x" * 100)


class TestSubstringPattern:
    """Tests for substring_pattern."""

    @pytest.mark.parametrize("query, expected", [
        ("py", r'"*py*"'),
        ("a,(b)", r'"*a,(b)*"'),
        ('say "hi"', r'"*say \"hi\"*"'),
        ("50%", r'"*50\\%*"'),
        ("snake_case", r'"*snake\\_case*"'),
        (r"a\b", r'"*a\\\\b*"'),
    ])
    def test_quoting(self, query, expected):
        assert substring_pattern(query) == expected


class TestBookmarkStore:
    """Tests for BookmarkStore requests."""

    @pytest.mark.asyncio
    async def test_list_sends_auth_headers_and_owner_filter(self, config, identity):
        session = make_session(make_response(200, [row("a", tags=["x"]), row("b")]))
        store = BookmarkStore(config, session=session)

        bookmarks = await store.list(identity)

        assert [b.name for b in bookmarks] == ["a", "b"]
        assert bookmarks[0].tags == {"x"}
        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert method == "GET"
        assert url == "https://db.example/rest/v1/bookmarks"
        assert kwargs["params"]["user_id"] == "eq.user-1"
        assert kwargs["headers"]["apikey"] == "anon-key"
        assert kwargs["headers"]["Authorization"] == "Bearer token-1"

    @pytest.mark.asyncio
    async def test_list_with_tag_uses_contains_filter(self, config, identity):
        session = make_session(make_response(200, []))
        store = BookmarkStore(config, session=session)

        await store.list(identity, tag="work")

        assert session.request.call_args.kwargs["params"]["tags"] == "cs.{work}"

    @pytest.mark.asyncio
    async def test_missing_token_raises_before_request(self, config):
        session = make_session()
        store = BookmarkStore(config, session=session)

        with pytest.raises(NotAuthenticatedError):
            await store.list(Identity(id="u", email="x@example.com"))
        session.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_by_name_missing(self, config, identity):
        store = BookmarkStore(config, session=make_session(make_response(200, [])))
        assert await store.get_by_name(identity, "nope") is None

    @pytest.mark.asyncio
    async def test_create_posts_normalized_row(self, config, identity):
        session = make_session(
            make_response(200, []),
            make_response(201, [row("docs", "https://docs.python.org", ["b", "a"])]),
        )
        store = BookmarkStore(config, session=session)

        bookmark = await store.create(identity, "docs", "docs.python.org", ["b", "a", "b"])

        assert bookmark.name == "docs"
        method, _ = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert method == "POST"
        assert kwargs["json"]["url"] == "https://docs.python.org"
        assert kwargs["json"]["tags"] == ["a", "b"]
        assert kwargs["json"]["user_id"] == "user-1"
        assert kwargs["headers"]["Prefer"] == "return=representation"

    @pytest.mark.asyncio
    async def test_create_rejects_duplicate(self, config, identity):
        session = make_session(make_response(200, [row("docs")]))
        store = BookmarkStore(config, session=session)

        with pytest.raises(DuplicateNameError, match="already exists"):
            await store.create(identity, "docs", "https://docs.python.org")
        assert session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_create_validates_before_sending(self, config, identity):
        session = make_session()
        store = BookmarkStore(config, session=session)

        with pytest.raises(BookmarkValidationError):
            await store.create(identity, "bad name", "https://example.com")
        with pytest.raises(BookmarkValidationError):
            await store.create(identity, "good", "mailto://x")
        session.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_sends_only_supplied_fields(self, config, identity):
        session = make_session(make_response(200, [row("docs", tags=["x"])]))
        store = BookmarkStore(config, session=session)

        updated = await store.update(identity, "docs", tags=["x"])

        payload = session.request.call_args.kwargs["json"]
        assert updated.tags == {"x"}
        assert payload["tags"] == ["x"]
        assert "url" not in payload
        assert "updated_at" in payload
        assert session.request.call_args.args[0] == "PATCH"

    @pytest.mark.asyncio
    async def test_update_missing_returns_none(self, config, identity):
        store = BookmarkStore(config, session=make_session(make_response(200, [])))
        assert await store.update(identity, "nope", url="https://a.io") is None

    @pytest.mark.asyncio
    async def test_delete_reports_whether_row_existed(self, config, identity):
        store = BookmarkStore(config, session=make_session(
            make_response(200, [row("docs")]),
            make_response(200, []),
        ))
        assert await store.delete(identity, "docs") is True
        assert await store.delete(identity, "docs") is False

    @pytest.mark.asyncio
    async def test_search_uses_ilike_on_name_and_url(self, config, identity):
        session = make_session(make_response(200, [row("py")]))
        store = BookmarkStore(config, session=session)

        results = await store.search(identity, "py")

        assert [b.name for b in results] == ["py"]
        params = session.request.call_args.kwargs["params"]
        assert params["or"] == '(name.ilike."*py*",url.ilike."*py*")'

    @pytest.mark.asyncio
    async def test_search_quotes_reserved_characters(self, config, identity):
        session = make_session(make_response(200, []))
        store = BookmarkStore(config, session=session)

        await store.search(identity, "a,b")

        params = session.request.call_args.kwargs["params"]
        assert params["or"] == '(name.ilike."*a,b*",url.ilike."*a,b*")'


class TestBookmarkStoreErrors:
    """Tests for error mapping."""

    @pytest.mark.asyncio
    async def test_http_error_becomes_data_layer_error(self, config, identity):
        store = BookmarkStore(config, session=make_session(make_response(500, "boom")))

        with pytest.raises(DataLayerError, match="Database error: boom"):
            await store.list(identity)

    @pytest.mark.asyncio
    async def test_client_error_becomes_network_error(self, config, identity):
        session = MagicMock()
        session.request = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        store = BookmarkStore(config, session=session)

        with pytest.raises(NetworkError, match="Network error: refused"):
            await store.list(identity)

    @pytest.mark.asyncio
    async def test_timeout_becomes_network_error(self, config, identity):
        session = MagicMock()
        session.request = MagicMock(side_effect=asyncio.TimeoutError())
        store = BookmarkStore(config, session=session)

        with pytest.raises(NetworkError, match="TimeoutError"):
            await store.list(identity)

    @pytest.mark.asyncio
    async def test_invalid_json_becomes_data_layer_error(self, config, identity):
        store = BookmarkStore(config, session=make_session(make_response(200, "{not json")))

        with pytest.raises(DataLayerError):
            await store.list(identity)

    @pytest.mark.asyncio
    async def test_malformed_row_becomes_data_layer_error(self, config, identity):
        store = BookmarkStore(config, session=make_session(make_response(200, [{"id": 1}])))

        with pytest.raises(DataLayerError, match="Malformed"):
            await store.list(identity)

    @pytest.mark.asyncio
    async def test_close_leaves_injected_session_open(self, config):
        session = MagicMock()
        session.close = AsyncMock()
        store = BookmarkStore(config, session=session)

        await store.close()
        session.close.assert_not_called()
