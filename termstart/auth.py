"""
Authentication collaborators.

The interpreter only needs two things from auth: a synchronous
``current_user()`` that gates the protected verbs, and async sign-in, sign-up
and sign-out. ``RestAuth`` talks to a GoTrue-style auth service and keeps the
signed-in identity in a local JSON session file; ``MemoryAuth`` keeps
everything in process and is meant for embedding and tests.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

import aiohttp

from .config import TermstartConfig
from .models import Identity

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Sign-in, sign-up or sign-out failed."""


class AuthProvider(ABC):
    """Interface the session engine uses to learn who is signed in."""

    @abstractmethod
    def current_user(self) -> Optional[Identity]:
        """The signed-in identity, or None. Must not block on the network."""

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> Identity:
        pass

    @abstractmethod
    async def sign_up(self, email: str, password: str) -> Identity:
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        pass


class MemoryAuth(AuthProvider):
    """
    In-process auth provider.

    Accounts are a plain ``email -> password`` mapping. Useful when the host
    application already authenticated the user and just hands over an identity.
    """

    def __init__(self, identity: Optional[Identity] = None,
                 accounts: Optional[Dict[str, str]] = None, admins=()):
        self.identity = identity
        self.accounts = dict(accounts or {})
        self.admins = set(admins)

    def current_user(self) -> Optional[Identity]:
        return self.identity

    def _identity_for(self, email: str) -> Identity:
        return Identity(id=f"user-{email}", email=email, token=f"token-{email}",
                        is_admin=email in self.admins)

    async def sign_in(self, email: str, password: str) -> Identity:
        if self.accounts.get(email) != password:
            raise AuthError("Invalid login credentials")
        self.identity = self._identity_for(email)
        return self.identity

    async def sign_up(self, email: str, password: str) -> Identity:
        if email in self.accounts:
            raise AuthError("User already registered")
        self.accounts[email] = password
        self.identity = self._identity_for(email)
        return self.identity

    async def sign_out(self) -> None:
        self.identity = None


class SessionFile:
    """JSON file holding the signed-in identity between runs."""

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> Optional[Identity]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r') as f:
                return Identity.from_dict(json.load(f))
        except (ValueError, KeyError) as e:
            logger.warning(f"Ignoring unreadable session file {self.path}: {e}")
            return None

    def save(self, identity: Identity):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(identity.to_dict(), f)

    def clear(self):
        if self.path.exists():
            self.path.unlink()


class RestAuth(AuthProvider):
    """Auth provider backed by a GoTrue-style REST service."""

    def __init__(self, config: TermstartConfig, session: Optional[aiohttp.ClientSession] = None,
                 session_file: Optional[SessionFile] = None):
        self.config = config
        self._session = session
        self._owns_session = session is None
        self.session_file = session_file or SessionFile(config.session_file)
        self._identity = self.session_file.load()

    def current_user(self) -> Optional[Identity]:
        return self._identity

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.config.user_agent},
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            )
        return self._session

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def _post(self, endpoint: str, payload: Optional[Dict[str, Any]] = None,
                    token: Optional[str] = None) -> Dict[str, Any]:
        headers = {"apikey": self.config.api_key, "Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        url = self.config.auth_url(endpoint)

        try:
            async with self._get_session().post(url, json=payload or {}, headers=headers) as response:
                text = await response.text()
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Auth request to {url} failed: {e!r}")
            raise AuthError(f"Network error: {e}") from e

        try:
            body = json.loads(text) if text else {}
        except ValueError:
            body = {}

        if status >= 400:
            message = (body.get('error_description') or body.get('msg')
                       or body.get('message') or text or f"HTTP {status}")
            raise AuthError(message)
        return body

    def _remember(self, body: Dict[str, Any]) -> Identity:
        user = body.get('user') or {}
        token = body.get('access_token')
        if not user.get('id') or not token:
            raise AuthError("No session returned; confirm your email and log in")

        role = (user.get('app_metadata') or {}).get('role')
        identity = Identity(id=user['id'], email=user.get('email', ''), token=token,
                            is_admin=role == 'admin')
        self._identity = identity
        self.session_file.save(identity)
        logger.info(f"Signed in as {identity.email}")
        return identity

    async def sign_in(self, email: str, password: str) -> Identity:
        body = await self._post("token?grant_type=password",
                                {"email": email, "password": password})
        return self._remember(body)

    async def sign_up(self, email: str, password: str) -> Identity:
        body = await self._post("signup", {"email": email, "password": password})
        return self._remember(body)

    async def sign_out(self) -> None:
        identity = self._identity
        try:
            if identity is not None:
                await self._post("logout", token=identity.token)
        except AuthError as e:
            # The local session is dropped whether or not the server agreed
            logger.warning(f"Remote sign-out failed: {e}")
        finally:
            self._identity = None
            self.session_file.clear()
