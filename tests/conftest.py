"""Shared fixtures: an in-memory self-hosted backend driven by a fake clock."""

from datetime import datetime, timedelta, timezone

import pytest

from duet.clients.local import LocalGateway
from duet.db.models import Base
from duet.db.session import make_engine, make_session_factory
from duet.services.identity import ActivityStore, SessionManager
from duet.services.library import LibraryStore

PASSWORD = "secret1"


class FakeClock:
    """Starts at the real current time so issued tokens stay valid."""

    def __init__(self) -> None:
        self.current = datetime.now(timezone.utc).replace(microsecond=0)

    def now(self) -> datetime:
        return self.current

    def ms(self) -> int:
        return int(self.current.timestamp() * 1000)

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / "state"


@pytest.fixture
def make_gateway(session_factory, tmp_path, state_dir, clock):
    """Builds gateways sharing one database, storage dir and session file."""

    def _make() -> LocalGateway:
        return LocalGateway(
            session_factory,
            tmp_path / "storage",
            "http://testserver",
            jwt_secret="test-secret",
            jwt_issuer="https://auth.test",
            jwt_audience="duet.test",
            jwt_ttl_minutes=60 * 24 * 30,
            session_path=state_dir / "session.json",
            clock=clock.now,
        )

    return _make


@pytest.fixture
def gateway(make_gateway):
    return make_gateway()


@pytest.fixture
def activity(state_dir):
    return ActivityStore(state_dir / "last_active")


@pytest.fixture
def manager(gateway, activity, clock):
    return SessionManager(gateway, activity, clock=clock.ms)


@pytest.fixture
def library(gateway, manager, clock):
    return LibraryStore(gateway, manager, clock_ms=clock.ms)


@pytest.fixture
async def pair(manager):
    """Sam registers first, then Alex; Alex stays signed in with Sam as partner."""
    assert (await manager.sign_up("sam@example.com", PASSWORD, "Sam")).ok
    assert (await manager.sign_up("alex@example.com", PASSWORD, "Alex")).ok
    return manager.profile, manager.partner


@pytest.fixture
def add_song(gateway, clock):
    async def _add(title, uploaded_by, **extra):
        # distinct created_at so newest-first ordering is stable
        clock.advance(seconds=1)
        return await gateway.insert(
            "songs",
            {"title": title, "audio_url": f"http://testserver/storage/audio/{title}.mp3",
             "uploaded_by": uploaded_by, **extra},
        )

    return _add
