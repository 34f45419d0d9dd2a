"""
Backend Gateway contract.

The services only ever talk to the backend through this interface: auth,
four relational tables and two storage buckets. Two adapters implement it:
``duet.clients.supabase`` (hosted BaaS over HTTP) and ``duet.clients.local``
(SQLAlchemy + a storage directory).
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from duet.db.schemas import AuthSession

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
# (column, op, value); op is "eq" or "gte"
Filter = Tuple[str, str, Any]
# (column, descending)
Order = Tuple[str, bool]
SessionListener = Callable[[Optional[AuthSession]], None]

TABLES = ("profiles", "songs", "plays", "favorites")
AUDIO_BUCKET = "audio"
COVERS_BUCKET = "covers"
BUCKETS = (AUDIO_BUCKET, COVERS_BUCKET)
FILTER_OPS = ("eq", "gte")


def eq(column: str, value: Any) -> Filter:
    return (column, "eq", value)


def gte(column: str, value: Any) -> Filter:
    return (column, "gte", value)


class BackendGateway(Protocol):
    # --- auth ---
    async def sign_up(self, email: str, password: str, display_name: str) -> Optional[AuthSession]: ...
    async def sign_in(self, email: str, password: str) -> AuthSession: ...
    async def sign_out(self) -> None: ...
    async def current_session(self) -> Optional[AuthSession]: ...
    def on_session_change(self, callback: SessionListener) -> Callable[[], None]: ...

    # --- relational ---
    async def select(self, table: str, filters: Sequence[Filter] = (), order: Optional[Order] = None) -> List[Row]: ...
    async def insert(self, table: str, row: Row) -> Row: ...
    async def delete(self, table: str, filters: Sequence[Filter]) -> None: ...

    # --- storage ---
    async def upload(self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None) -> None: ...
    def public_url(self, bucket: str, path: str) -> str: ...

    async def aclose(self) -> None: ...


class SessionEvents:
    """Listener bookkeeping shared by the gateway adapters."""

    def __init__(self) -> None:
        self._listeners: List[SessionListener] = []

    def on_session_change(self, callback: SessionListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        if callback not in self._listeners:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, session: Optional[AuthSession]) -> None:
        for callback in list(self._listeners):
            try:
                callback(session)
            except Exception:
                logger.exception("session listener %r failed", callback)


class SessionFile:
    """Persisted auth session, the way a browser BaaS client keeps it in local storage."""

    def __init__(self, path: Optional[Path]):
        self.path = Path(path).expanduser() if path else None

    def read(self) -> Optional[AuthSession]:
        if not self.path or not self.path.exists():
            return None
        try:
            return AuthSession.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
        except (OSError, ValueError) as e:
            logger.warning("ignoring unreadable session file %s: %s", self.path, e)
            return None

    def write(self, session: AuthSession) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(session.model_dump_json(), encoding="utf-8")

    def clear(self) -> None:
        if self.path and self.path.exists():
            self.path.unlink()


def check_table(table: str) -> None:
    if table not in TABLES:
        raise ValueError(f"unknown table: {table}")


def check_bucket(bucket: str) -> None:
    if bucket not in BUCKETS:
        raise ValueError(f"unknown bucket: {bucket}")


def storage_path(profile_id: Any, filename: str, timestamp_ms: int) -> str:
    """{uploaderProfileId}/{uploadTimestamp}-{originalFilename}"""
    return f"{profile_id}/{timestamp_ms}-{Path(filename).name}"
