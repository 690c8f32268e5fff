"""Identity provider and session tests."""

import asyncio
import threading

import bcrypt
import pytest

from capture_shop.auth import AuthService, IdentityProvider, Session, SessionRegistry, SessionState
from capture_shop.errors import AlreadyExists, InvalidCredentials
from conftest import FakeGateway


async def bound(gateway: FakeGateway) -> tuple[IdentityProvider, Session, AuthService]:
    provider = IdentityProvider(gateway, bcrypt_rounds=4)
    session = Session(gateway)
    await session.bind(provider)
    return provider, session, AuthService(provider, gateway)


class TestSessionLifecycle:
    def test_unknown_until_first_report(self, gateway: FakeGateway) -> None:
        session = Session(gateway)
        assert session.state is SessionState.UNKNOWN
        assert session.is_loading

    def test_anonymous_after_binding(self, gateway: FakeGateway) -> None:
        _, session, _ = asyncio.run(bound(gateway))
        assert session.state is SessionState.ANONYMOUS
        assert session.user is None

    def test_bind_twice(self, gateway: FakeGateway) -> None:
        async def scenario() -> None:
            provider, session, _ = await bound(gateway)
            await session.bind(provider)

        with pytest.raises(RuntimeError):
            asyncio.run(scenario())


class TestSignUp:
    def test_creates_identity_and_profile(self, gateway: FakeGateway) -> None:
        async def scenario():
            provider, session, auth = await bound(gateway)
            identity = await auth.sign_up("ann@example.com", "secret123")
            return identity, session

        identity, session = asyncio.run(scenario())
        assert session.is_authenticated
        assert session.user["uid"] == identity.uid
        assert session.user["email"] == "ann@example.com"
        assert "created_at" in session.user
        assert gateway.collections["users"][identity.uid]["email"] == "ann@example.com"
        assert "password_hash" not in session.user

    def test_duplicate_email(self, gateway: FakeGateway) -> None:
        async def scenario() -> None:
            _, _, auth = await bound(gateway)
            await auth.sign_up("ann@example.com", "secret123")
            await auth.sign_up("ann@example.com", "other-pass")

        with pytest.raises(AlreadyExists):
            asyncio.run(scenario())


class TestSignIn:
    def test_sign_in_and_out(self, gateway: FakeGateway) -> None:
        async def scenario() -> list[SessionState]:
            _, _, auth = await bound(gateway)
            await auth.sign_up("ann@example.com", "secret123")

            _, session, auth = await bound(gateway)
            states = [session.state]
            await auth.sign_in("ann@example.com", "secret123")
            states.append(session.state)
            await auth.sign_out()
            states.append(session.state)
            return states

        assert asyncio.run(scenario()) == [
            SessionState.ANONYMOUS,
            SessionState.AUTHENTICATED,
            SessionState.ANONYMOUS,
        ]

    @pytest.mark.parametrize("email,password", [("ann@example.com", "wrong-pass"), ("bob@example.com", "secret123")])
    def test_invalid_credentials(self, gateway: FakeGateway, email: str, password: str) -> None:
        async def scenario() -> None:
            _, _, auth = await bound(gateway)
            await auth.sign_up("ann@example.com", "secret123")
            await auth.sign_in(email, password)

        with pytest.raises(InvalidCredentials):
            asyncio.run(scenario())

    def test_missing_profile_uses_bare_identity(self, gateway: FakeGateway) -> None:
        async def scenario() -> Session:
            provider, session, _ = await bound(gateway)
            await provider.create_user("ann@example.com", "secret123")
            return session

        session = asyncio.run(scenario())
        assert session.user == {"uid": session.user["uid"], "email": "ann@example.com"}


class TestSubscriptions:
    def test_unbound_session_stops_updating(self, gateway: FakeGateway) -> None:
        async def scenario() -> Session:
            provider, session, auth = await bound(gateway)
            session.unbind()
            await auth.sign_up("ann@example.com", "secret123")
            return session

        assert asyncio.run(scenario()).state is SessionState.ANONYMOUS

    def test_registry(self, gateway: FakeGateway) -> None:
        registry = SessionRegistry()
        token, provider, session = asyncio.run(registry.open(gateway, bcrypt_rounds=4))
        assert registry.get(token) == (provider, session)
        registry.close(token)
        with pytest.raises(InvalidCredentials):
            registry.get(token)

    def test_registry_drops_idle_sessions(self, gateway: FakeGateway) -> None:
        now = [0.0]
        registry = SessionRegistry(ttl=60, clock=lambda: now[0])
        stale, _, stale_session = asyncio.run(registry.open(gateway, bcrypt_rounds=4))
        now[0] = 30
        live, _, _ = asyncio.run(registry.open(gateway, bcrypt_rounds=4))
        now[0] = 80
        registry.get(live)
        assert registry.purge_expired() == 1
        assert len(registry) == 1
        with pytest.raises(InvalidCredentials):
            registry.get(stale)
        assert stale_session._unsubscribe is None

    def test_expired_token_is_rejected_on_use(self, gateway: FakeGateway) -> None:
        now = [0.0]
        registry = SessionRegistry(ttl=60, clock=lambda: now[0])
        token, _, _ = asyncio.run(registry.open(gateway, bcrypt_rounds=4))
        now[0] = 61
        with pytest.raises(InvalidCredentials):
            registry.get(token)
        assert len(registry) == 0


class TestIdentityStore:
    def test_identity_is_keyed_by_email(self, gateway: FakeGateway) -> None:
        async def scenario():
            provider, _, _ = await bound(gateway)
            return await provider.create_user("ann@example.com", "secret123")

        identity = asyncio.run(scenario())
        stored = gateway.collections["identities"]["ann@example.com"]
        assert stored["uid"] == identity.uid
        assert stored["password_hash"] != "secret123"

    def test_concurrent_sign_ups_claim_email_once(self, gateway: FakeGateway) -> None:
        async def scenario() -> list:
            first, _, _ = await bound(gateway)
            second, _, _ = await bound(gateway)
            return await asyncio.gather(
                first.create_user("ann@example.com", "secret123"),
                second.create_user("ann@example.com", "other-pass"),
                return_exceptions=True,
            )

        results = asyncio.run(scenario())
        assert sum(isinstance(r, AlreadyExists) for r in results) == 1
        assert list(gateway.collections["identities"]) == ["ann@example.com"]

    def test_hashing_runs_off_the_event_loop(self, gateway: FakeGateway, monkeypatch: pytest.MonkeyPatch) -> None:
        threads: list[int] = []
        real_hashpw, real_checkpw = bcrypt.hashpw, bcrypt.checkpw

        def hashpw(password: bytes, salt: bytes) -> bytes:
            threads.append(threading.get_ident())
            return real_hashpw(password, salt)

        def checkpw(password: bytes, hashed: bytes) -> bool:
            threads.append(threading.get_ident())
            return real_checkpw(password, hashed)

        monkeypatch.setattr(bcrypt, "hashpw", hashpw)
        monkeypatch.setattr(bcrypt, "checkpw", checkpw)

        async def scenario() -> int:
            provider, _, _ = await bound(gateway)
            await provider.create_user("ann@example.com", "secret123")
            await provider.sign_in("ann@example.com", "secret123")
            return threading.get_ident()

        loop_thread = asyncio.run(scenario())
        assert len(threads) == 2
        assert loop_thread not in threads
