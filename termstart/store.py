"""
Client for the remote bookmark store.

The store speaks a PostgREST-style REST dialect: rows live under
``/rest/v1/bookmarks`` and are filtered with query parameters such as
``user_id=eq.<id>``. Every call carries the project API key and the signed-in
user's bearer token, and is scoped to that user's rows.

Names and URLs are validated locally before anything is sent.
"""
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import aiohttp

from .config import TermstartConfig
from .models import Bookmark, Identity

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100


class StoreError(Exception):
    """Base class for bookmark store failures."""


class NotAuthenticatedError(StoreError):
    def __init__(self):
        super().__init__("Not authenticated")


class BookmarkValidationError(StoreError):
    """Malformed name or URL, raised before any write is attempted."""

    def __init__(self, message: str):
        super().__init__(f"Validation error: {message}")


class DuplicateNameError(BookmarkValidationError):
    def __init__(self, name: str):
        StoreError.__init__(self, f"Bookmark with name '{name}' already exists")


class NetworkError(StoreError):
    def __init__(self, message: str):
        super().__init__(f"Network error: {message}")


class DataLayerError(StoreError):
    def __init__(self, message: str):
        super().__init__(f"Database error: {message}")


def normalize_url(url: str) -> str:
    """
    Normalize a user-supplied URL.

    A missing scheme defaults to https. The result must be an absolute
    http(s) URL with a host.

    Raises:
        BookmarkValidationError: If the URL cannot be made valid
    """
    url = url.strip()
    if "://" not in url:
        url = f"https://{url}"

    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.hostname or ' ' in parsed.netloc:
        raise BookmarkValidationError(f"Invalid URL: {url}")
    return url


def validate_name(name: str) -> None:
    """
    Check that a bookmark name is a usable identifier.

    Raises:
        BookmarkValidationError: If the name is empty, too long or has
            characters other than alphanumerics, hyphens and underscores
    """
    if not name:
        raise BookmarkValidationError("Bookmark name cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise BookmarkValidationError("Bookmark name is too long")
    if not all(c.isalnum() or c in '-_' for c in name):
        raise BookmarkValidationError(
            "Bookmark name can only contain alphanumeric characters, hyphens, and underscores"
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def substring_pattern(query: str) -> str:
    """
    Quoted ilike pattern matching `query` anywhere in a column.

    LIKE metacharacters are escaped so they match literally, and the value is
    double-quoted so commas and parentheses cannot split the filter. A `*`
    is still read by the server as a wildcard.
    """
    for char in ("\\", "%", "_"):
        query = query.replace(char, "\\" + char)
    query = query.replace("\\", "\\\\").replace('"', '\\"')
    return f'"*{query}*"'


class BookmarkStore:
    """
    Async REST client for one user's bookmarks.

    The aiohttp session is created lazily on first use so the store can be
    constructed outside a running event loop. Pass ``session`` to share or
    substitute one.
    """

    def __init__(self, config: TermstartConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self._session = session
        self._owns_session = session is None
        self.timeout = aiohttp.ClientTimeout(total=config.timeout)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.config.user_agent},
                timeout=self.timeout,
            )
        return self._session

    async def close(self):
        """Close the HTTP session if this store created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    def _headers(self, identity: Identity, representation: bool = False) -> Dict[str, str]:
        if identity is None or not identity.token:
            raise NotAuthenticatedError()
        headers = {
            "apikey": self.config.api_key,
            "Authorization": f"Bearer {identity.token}",
            "Content-Type": "application/json",
        }
        if representation:
            headers["Prefer"] = "return=representation"
        return headers

    async def _request(self, method: str, identity: Identity,
                       params: Optional[Dict[str, str]] = None,
                       payload: Optional[Dict[str, Any]] = None,
                       representation: bool = False) -> Any:
        """
        Perform one call against the bookmarks resource.

        Returns:
            Decoded JSON body, or None for an empty body

        Raises:
            NetworkError: Transport failure or timeout
            DataLayerError: Non-2xx response or undecodable body
        """
        headers = self._headers(identity, representation)
        url = self.config.rest_url("bookmarks")
        logger.debug(f"{method} {url} params={params}")

        try:
            async with self._get_session().request(
                method, url, params=params, json=payload, headers=headers
            ) as response:
                text = await response.text()
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"{method} {url} failed: {e!r}")
            raise NetworkError(str(e) or e.__class__.__name__) from e

        if status >= 400:
            logger.error(f"{method} {url} returned {status}: {text}")
            raise DataLayerError(text or f"HTTP {status}")

        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError as e:
            raise DataLayerError(str(e)) from e

    @staticmethod
    def _rows(body: Any) -> List[Bookmark]:
        if body is None:
            return []
        if not isinstance(body, list):
            raise DataLayerError("Unexpected response shape")
        try:
            return [Bookmark.from_dict(row) for row in body]
        except (KeyError, TypeError) as e:
            raise DataLayerError(f"Malformed bookmark row: {e}") from e

    async def list(self, identity: Identity, tag: Optional[str] = None) -> List[Bookmark]:
        """All of the user's bookmarks, optionally only those carrying ``tag``."""
        params = {"user_id": f"eq.{identity.id}", "order": "created_at.asc"}
        if tag is not None:
            params["tags"] = f"cs.{{{tag}}}"
        return self._rows(await self._request("GET", identity, params=params))

    async def get_by_name(self, identity: Identity, name: str) -> Optional[Bookmark]:
        params = {"user_id": f"eq.{identity.id}", "name": f"eq.{name}"}
        rows = self._rows(await self._request("GET", identity, params=params))
        return rows[0] if rows else None

    async def create(self, identity: Identity, name: str, url: str,
                     tags: Optional[Iterable[str]] = None) -> Bookmark:
        """
        Create a bookmark.

        Raises:
            BookmarkValidationError: Bad name or URL (nothing is sent)
            DuplicateNameError: The name is already taken
        """
        validate_name(name)
        normalized = normalize_url(url)

        if await self.get_by_name(identity, name) is not None:
            raise DuplicateNameError(name)

        now = _now()
        payload = {
            "user_id": identity.id,
            "name": name,
            "url": normalized,
            "tags": sorted(set(tags or [])),
            "created_at": now,
            "updated_at": now,
        }
        rows = self._rows(await self._request("POST", identity, payload=payload, representation=True))
        if not rows:
            raise DataLayerError("No bookmark returned from database")
        return rows[0]

    async def update(self, identity: Identity, name: str, url: Optional[str] = None,
                     tags: Optional[Iterable[str]] = None) -> Optional[Bookmark]:
        """
        Partially update a bookmark; only the supplied fields change.

        Returns:
            The updated bookmark, or None if no bookmark has that name
        """
        payload: Dict[str, Any] = {}
        if url is not None:
            payload["url"] = normalize_url(url)
        if tags is not None:
            payload["tags"] = sorted(set(tags))
        payload["updated_at"] = _now()

        params = {"user_id": f"eq.{identity.id}", "name": f"eq.{name}"}
        rows = self._rows(await self._request(
            "PATCH", identity, params=params, payload=payload, representation=True
        ))
        return rows[0] if rows else None

    async def delete(self, identity: Identity, name: str) -> bool:
        """Delete a bookmark; returns False if nothing had that name."""
        params = {"user_id": f"eq.{identity.id}", "name": f"eq.{name}"}
        rows = self._rows(await self._request("DELETE", identity, params=params, representation=True))
        return bool(rows)

    async def search(self, identity: Identity, query: str) -> List[Bookmark]:
        """Case-insensitive substring match on name or URL."""
        pattern = substring_pattern(query)
        params = {
            "user_id": f"eq.{identity.id}",
            "or": f"(name.ilike.{pattern},url.ilike.{pattern})",
            "order": "name.asc",
        }
        return self._rows(await self._request("GET", identity, params=params))
