"""
Session/Identity Manager.

Owns the authenticated session, resolves it to the two-person
profile/partner pairing, and enforces the idle sign-out policy: a session
left untouched for longer than ``idle_timeout_ms`` is terminated at the next
application start, even if its stored credentials are still valid.

One instance per running app; consumers receive it explicitly.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple
from uuid import UUID

from duet.clients.gateway import BackendGateway
from duet.core.errors import AuthError, DataError, DuetError
from duet.db.schemas import AuthSession, Identity, Profile

logger = logging.getLogger(__name__)

WEEK_MS = 7 * 24 * 60 * 60 * 1000
# profile + partner; anything beyond is a misconfigured instance
MAX_PROFILES = 2


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class AuthResult:
    error: Optional[AuthError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ActivityStore:
    """Last-activity timestamp (epoch ms) in a single local file."""

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()

    def read(self) -> int:
        try:
            return int(self.path.read_text(encoding="utf-8").strip() or 0)
        except FileNotFoundError:
            return 0
        except (OSError, ValueError) as e:
            logger.warning("unreadable activity file %s: %s", self.path, e)
            return 0

    def stamp(self, now_ms: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(now_ms), encoding="utf-8")

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


def resolve_pair(profiles: Sequence[Profile], user_id: UUID) -> Tuple[Optional[Profile], Optional[Profile]]:
    """Partition profiles into (mine, partner). Partner is the first non-matching row."""
    if len(profiles) > MAX_PROFILES:
        logger.warning(
            "found %d profiles, expected at most %d; partner is picked arbitrarily",
            len(profiles), MAX_PROFILES,
        )
    mine = next((p for p in profiles if p.user_id == user_id), None)
    partner = next((p for p in profiles if p.user_id != user_id), None)
    return mine, partner


class SessionManager:
    def __init__(
        self,
        gateway: BackendGateway,
        activity: ActivityStore,
        *,
        idle_timeout_ms: int = WEEK_MS,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.gateway = gateway
        self.activity = activity
        self.idle_timeout_ms = idle_timeout_ms
        self._now_ms = clock or _now_ms
        self.session: Optional[AuthSession] = None
        self.identity: Optional[Identity] = None
        self.loading = True
        # bumped on every identity change; readers compare it to drop stale fetches
        self.generation = 0
        self._unsubscribe = gateway.on_session_change(self._on_session_change)

    # --- state -------------------------------------------------------------

    @property
    def profile(self) -> Optional[Profile]:
        return self.identity.profile if self.identity else None

    @property
    def partner(self) -> Optional[Profile]:
        return self.identity.partner if self.identity else None

    @property
    def authenticated(self) -> bool:
        return self.session is not None

    def _on_session_change(self, session: Optional[AuthSession]) -> None:
        previous = self.session
        self.session = session
        if session is None:
            self._clear_identity()
            return
        self.touch()
        if previous is None or previous.user.id != session.user.id:
            self._clear_identity()

    def _clear_identity(self) -> None:
        if self.identity is not None:
            self.generation += 1
        self.identity = None

    def touch(self) -> None:
        """Record activity; called on every authenticated interaction."""
        if self.session is not None:
            self.activity.stamp(self._now_ms())

    def idle_expired(self) -> bool:
        last = self.activity.read()
        return bool(last) and self._now_ms() - last > self.idle_timeout_ms

    # --- lifecycle ---------------------------------------------------------

    async def start(self) -> Optional[Identity]:
        """Honor a stored session unless it has been idle past the timeout."""
        session = await self.gateway.current_session()
        if session is not None and self.idle_expired():
            logger.info("session for %s idle for over %d ms; signing out", session.user.email, self.idle_timeout_ms)
            await self.sign_out()
            self.loading = False
            return None

        self.session = session
        if session is not None:
            self.touch()
            await self.refresh_profiles()
        self.loading = False
        return self.identity

    async def close(self) -> None:
        self._unsubscribe()

    # --- identity ----------------------------------------------------------

    async def current_identity(self, refresh: bool = False) -> Optional[Identity]:
        if self.session is None:
            return None
        if refresh or self.identity is None:
            await self.refresh_profiles()
        return self.identity

    async def refresh_profiles(self) -> None:
        session = self.session
        if session is None:
            return
        try:
            rows = await self.gateway.select("profiles")
        except DataError as e:
            logger.warning("could not load profiles: %s", e.message)
            if self.identity is None:
                self.identity = Identity(user=session.user)
            return

        if self.session is not session:
            # signed out or switched user while the fetch was in flight
            logger.debug("dropping profiles fetched for a superseded session")
            return

        profiles: List[Profile] = [Profile.model_validate(r) for r in rows]
        profile, partner = resolve_pair(profiles, session.user.id)
        identity = Identity(user=session.user, profile=profile, partner=partner)
        if identity != self.identity:
            self.generation += 1
            self.identity = identity

    # --- auth --------------------------------------------------------------

    async def sign_up(self, email: str, password: str, display_name: str) -> AuthResult:
        try:
            session = await self.gateway.sign_up(email, password, display_name)
        except DuetError as e:
            return AuthResult(error=e if isinstance(e, AuthError) else AuthError(e.message, status=e.status))
        if session is not None:
            await self.refresh_profiles()
        return AuthResult()

    async def sign_in(self, email: str, password: str) -> AuthResult:
        try:
            await self.gateway.sign_in(email, password)
        except DuetError as e:
            return AuthResult(error=e if isinstance(e, AuthError) else AuthError(e.message, status=e.status))
        await self.refresh_profiles()
        return AuthResult()

    async def sign_out(self) -> None:
        try:
            await self.gateway.sign_out()
        except DuetError as e:
            logger.warning("sign-out failed at the backend: %s", e.message)
        finally:
            self.session = None
            self._clear_identity()
            self.activity.clear()
