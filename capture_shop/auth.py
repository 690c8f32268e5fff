"""Email/password authentication and the session that mirrors it."""

from __future__ import annotations
import asyncio
import logging
import secrets
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

import bcrypt
from pydantic import BaseModel

from .database import CollectionGateway
from .errors import AlreadyExists, DuplicateKey, InvalidCredentials, NotFound, RemoteError, ShopError

logger = logging.getLogger(__name__)

IDENTITIES = "identities"
USERS = "users"

AuthListener = Callable[[Optional["Identity"]], Awaitable[None]]


class Identity(BaseModel):
    uid: str
    email: str


class IdentityProvider:
    """Issues identities and reports every sign-in/sign-out to its listeners."""

    def __init__(self, gateway: CollectionGateway, bcrypt_rounds: int = 12) -> None:
        self.gateway = gateway
        self.bcrypt_rounds = bcrypt_rounds
        self.current: Optional[Identity] = None
        self._listeners: list[AuthListener] = []

    async def on_auth_state_changed(self, listener: AuthListener) -> Callable[[], None]:
        """Subscribe to auth state. The current state is reported once right away."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        await listener(self.current)
        return unsubscribe

    async def _notify(self) -> None:
        for listener in list(self._listeners):
            await listener(self.current)

    async def reload(self) -> None:
        """Report the current state again, e.g. after its profile changed."""
        await self._notify()

    async def _find(self, email: str) -> Optional[dict[str, Any]]:
        try:
            return await self.gateway.get(IDENTITIES, email)
        except NotFound:
            return None

    async def create_user(self, email: str, password: str) -> Identity:
        uid = uuid4().hex
        salt = bcrypt.gensalt(self.bcrypt_rounds)
        password_hash = (await asyncio.to_thread(bcrypt.hashpw, password.encode(), salt)).decode()
        # Identities are keyed by email so the insert itself claims the address
        try:
            await self.gateway.insert(IDENTITIES, email, {"uid": uid, "email": email, "password_hash": password_hash})
        except DuplicateKey:
            raise AlreadyExists(f"An account already exists for {email}") from None
        self.current = Identity(uid=uid, email=email)
        await self._notify()
        return self.current

    async def sign_in(self, email: str, password: str) -> Identity:
        doc = await self._find(email)
        if doc is None or not await asyncio.to_thread(
            bcrypt.checkpw, password.encode(), doc["password_hash"].encode()
        ):
            raise InvalidCredentials("Invalid email or password")
        self.current = Identity(uid=doc["uid"], email=doc["email"])
        await self._notify()
        return self.current

    async def sign_out(self) -> None:
        self.current = None
        await self._notify()


class SessionState(str, Enum):
    UNKNOWN = "unknown"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


class Session:
    """The signed-in user merged with their profile record.

    Stays ``UNKNOWN`` until the provider's first report; after that it is
    either ``AUTHENTICATED`` with ``user`` set or ``ANONYMOUS``.
    """

    def __init__(self, gateway: CollectionGateway) -> None:
        self.gateway = gateway
        self.state = SessionState.UNKNOWN
        self.user: Optional[dict[str, Any]] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def is_loading(self) -> bool:
        return self.state is SessionState.UNKNOWN

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    async def bind(self, provider: IdentityProvider) -> None:
        if self._unsubscribe is not None:
            raise RuntimeError("Session is already bound")
        self._unsubscribe = await provider.on_auth_state_changed(self._on_auth_state_changed)

    def unbind(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_auth_state_changed(self, identity: Optional[Identity]) -> None:
        if identity is None:
            self.user = None
            self.state = SessionState.ANONYMOUS
            return
        user = identity.model_dump()
        try:
            profile = await self.gateway.get(USERS, identity.uid)
            profile.pop("id", None)
            user = {**user, **profile}
        except NotFound:
            pass
        except RemoteError as e:
            logger.error(f"Error fetching user data: {e}")
        self.user = user
        self.state = SessionState.AUTHENTICATED


class AuthService:
    def __init__(self, provider: IdentityProvider, gateway: CollectionGateway) -> None:
        self.provider = provider
        self.gateway = gateway

    async def sign_up(self, email: str, password: str) -> Identity:
        try:
            identity = await self.provider.create_user(email, password)
            await self.gateway.set(USERS, identity.uid, {"email": identity.email})
        except ShopError as e:
            logger.error(f"Error signing up: {e}")
            raise
        await self.provider.reload()
        return identity

    async def sign_in(self, email: str, password: str) -> Identity:
        try:
            return await self.provider.sign_in(email, password)
        except ShopError as e:
            logger.error(f"Error signing in: {e}")
            raise

    async def sign_out(self) -> None:
        await self.provider.sign_out()


class SessionRegistry:
    """Bearer token -> (provider, session) for HTTP clients. In memory only.

    Sessions idle for longer than ``ttl`` seconds are dropped the next time a
    session is opened.
    """

    def __init__(self, ttl: float = 86400.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self.clock = clock
        self._entries: dict[str, tuple[IdentityProvider, Session]] = {}
        self._last_seen: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def purge_expired(self) -> int:
        cutoff = self.clock() - self.ttl
        expired = [token for token, seen in self._last_seen.items() if seen < cutoff]
        for token in expired:
            self.close(token)
        if expired:
            logger.info(f"Dropped {len(expired)} idle session(s)")
        return len(expired)

    async def open(self, gateway: CollectionGateway, bcrypt_rounds: int = 12) -> tuple[str, IdentityProvider, Session]:
        self.purge_expired()
        token = secrets.token_urlsafe(32)
        provider = IdentityProvider(gateway, bcrypt_rounds=bcrypt_rounds)
        session = Session(gateway)
        await session.bind(provider)
        self._entries[token] = (provider, session)
        self._last_seen[token] = self.clock()
        return token, provider, session

    def get(self, token: str) -> tuple[IdentityProvider, Session]:
        entry = self._entries.get(token)
        if entry is None or self._last_seen[token] < self.clock() - self.ttl:
            self.close(token)
            raise InvalidCredentials("Unknown or expired session")
        self._last_seen[token] = self.clock()
        return entry

    def close(self, token: str) -> None:
        self._last_seen.pop(token, None)
        entry = self._entries.pop(token, None)
        if entry is not None:
            entry[1].unbind()
