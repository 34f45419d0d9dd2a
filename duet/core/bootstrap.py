from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

from duet.clients.gateway import BackendGateway
from duet.core.config import Settings
from duet.services.identity import ActivityStore, SessionManager
from duet.services.library import LibraryStore
from duet.services.playback import PlayerController
from duet.services.weekly import WeeklyAggregator

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class Container:
    """Everything one running app instance owns; built at startup, handed to routes."""
    settings: Settings
    gateway: BackendGateway
    session: SessionManager
    library: LibraryStore
    weekly: WeeklyAggregator
    player: PlayerController


def make_gateway(settings: Settings) -> BackendGateway:
    if settings.backend == "supabase":
        from duet.clients.supabase import SupabaseGateway
        return SupabaseGateway.from_settings(settings)
    if settings.backend == "local":
        from duet.clients.local import LocalGateway
        from duet.db.models import Base
        from duet.db.session import make_engine, make_session_factory

        engine = make_engine(settings.database_url)
        # alembic owns real deployments; this only covers a fresh sqlite file
        if engine.dialect.name == "sqlite":
            Base.metadata.create_all(engine)
        return LocalGateway.from_settings(settings, make_session_factory(engine))
    raise RuntimeError(f"Unknown BACKEND {settings.backend!r}; expected 'local' or 'supabase'")


def build_container(settings: Settings, gateway: Optional[BackendGateway] = None) -> Container:
    gateway = gateway or make_gateway(settings)
    activity = ActivityStore(Path(settings.state_dir).expanduser() / "last_active")
    session = SessionManager(gateway, activity, idle_timeout_ms=settings.idle_timeout_days * DAY_MS)
    library = LibraryStore(gateway, session)
    weekly = WeeklyAggregator(
        gateway,
        window=timedelta(days=settings.weekly_window_days),
        limit=settings.weekly_top_limit,
    )
    return Container(
        settings=settings,
        gateway=gateway,
        session=session,
        library=library,
        weekly=weekly,
        player=PlayerController(library),
    )


async def start(container: Container) -> None:
    """Idle-timeout check first, then the first library load if someone is signed in."""
    identity = await container.session.start()
    if identity is not None and identity.profile is not None:
        await container.library.load()
    logger.info(
        "%s started (%s backend, %s)",
        container.settings.service_name,
        container.settings.backend,
        f"signed in as {identity.user.email}" if identity else "signed out",
    )


async def shutdown(container: Container) -> None:
    await container.session.close()
    await container.gateway.aclose()
