# Supabase-compatible Backend Gateway (GoTrue auth, PostgREST, Storage) over httpx
from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

from duet.clients.gateway import (
    FILTER_OPS,
    Filter,
    Order,
    Row,
    SessionEvents,
    SessionFile,
    check_bucket,
    check_table,
)
from duet.core.errors import AuthError, DataError, DuetError, StorageError
from duet.db.schemas import AuthSession, AuthUser

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class SupabaseNotConfigured(RuntimeError):
    pass


def _error_message(r: httpx.Response) -> str:
    try:
        data = r.json()
    except ValueError:
        return r.text or f"HTTP {r.status_code}"
    if isinstance(data, dict):
        # GoTrue uses msg / error_description, PostgREST and Storage use message
        for key in ("msg", "error_description", "message", "error"):
            if data.get(key):
                return str(data[key])
    return f"HTTP {r.status_code}"


def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _session_from(data: Dict[str, Any]) -> Optional[AuthSession]:
    token = data.get("access_token")
    user = data.get("user") or {}
    if not token or not user.get("id"):
        return None
    expires_at = data.get("expires_at")
    if expires_at is None and data.get("expires_in"):
        expires_at = int(time.time()) + int(data["expires_in"])
    return AuthSession(
        access_token=token,
        user=AuthUser(id=user["id"], email=user.get("email") or ""),
        expires_at=expires_at,
    )


class SupabaseGateway(SessionEvents):
    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session_path: Optional[Path] = None,
    ):
        super().__init__()
        if not url or not anon_key:
            raise SupabaseNotConfigured("Set SUPABASE_URL and SUPABASE_ANON_KEY")
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self._session_file = SessionFile(session_path)
        self._session: Optional[AuthSession] = None

    @classmethod
    def from_settings(cls, settings) -> "SupabaseGateway":
        return cls(
            settings.supabase_url,
            settings.supabase_anon_key,
            timeout=settings.http_timeout_sec,
            session_path=Path(settings.state_dir).expanduser() / "session.json",
        )

    # --- plumbing ----------------------------------------------------------

    def _headers(self, **extra: str) -> Dict[str, str]:
        token = self._session.access_token if self._session else self.anon_key
        return {"apikey": self.anon_key, "Authorization": f"Bearer {token}", **extra}

    async def _request(
        self,
        method: str,
        path: str,
        error: type[DuetError],
        *,
        params: Optional[List[Tuple[str, str]]] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                r = await client.request(
                    method,
                    f"{self.url}{path}",
                    params=params,
                    json=json,
                    content=content,
                    headers=headers or self._headers(),
                )
            except httpx.HTTPError as e:
                raise error(f"{method} {path} failed: {e}") from e
        if r.status_code >= 400:
            raise error(_error_message(r), status=r.status_code)
        return r

    def _establish(self, session: AuthSession) -> AuthSession:
        self._session = session
        self._session_file.write(session)
        self._emit(session)
        return session

    # --- auth --------------------------------------------------------------

    async def sign_up(self, email: str, password: str, display_name: str) -> Optional[AuthSession]:
        """
        POST /auth/v1/signup; the profile row is created server-side from
        the display_name user metadata. Returns None when the project
        requires email confirmation (no session is issued yet).
        """
        r = await self._request(
            "POST",
            "/auth/v1/signup",
            AuthError,
            json={"email": email, "password": password, "data": {"display_name": display_name}},
        )
        session = _session_from(r.json())
        if session:
            return self._establish(session)
        return None

    async def sign_in(self, email: str, password: str) -> AuthSession:
        r = await self._request(
            "POST",
            "/auth/v1/token",
            AuthError,
            params=[("grant_type", "password")],
            json={"email": email, "password": password},
        )
        session = _session_from(r.json())
        if not session:
            raise AuthError("auth server returned no session")
        return self._establish(session)

    async def sign_out(self) -> None:
        try:
            if self._session:
                await self._request("POST", "/auth/v1/logout", AuthError)
        except AuthError as e:
            # token may already be revoked server-side; local sign-out still happens
            logger.warning("remote sign-out failed: %s", e.message)
        finally:
            self._session = None
            self._session_file.clear()
            self._emit(None)

    async def current_session(self) -> Optional[AuthSession]:
        session = self._session or self._session_file.read()
        if session is None:
            return None
        if session.expires_at is not None and session.expires_at <= int(time.time()):
            logger.info("stored session expired")
            self._session = None
            return None
        self._session = session
        return session

    # --- relational --------------------------------------------------------

    @staticmethod
    def _filter_params(filters: Sequence[Filter]) -> List[Tuple[str, str]]:
        params = []
        for column, op, value in filters:
            if op not in FILTER_OPS:
                raise DataError(f"unsupported filter op: {op}")
            params.append((column, f"{op}.{_jsonable(value)}"))
        return params

    async def select(self, table: str, filters: Sequence[Filter] = (), order: Optional[Order] = None) -> List[Row]:
        check_table(table)
        params = [("select", "*"), *self._filter_params(filters)]
        if order:
            params.append(("order", f"{order[0]}.{'desc' if order[1] else 'asc'}"))
        r = await self._request("GET", f"/rest/v1/{table}", DataError, params=params)
        data = r.json()
        return data if isinstance(data, list) else []

    async def insert(self, table: str, row: Row) -> Row:
        check_table(table)
        r = await self._request(
            "POST",
            f"/rest/v1/{table}",
            DataError,
            json={k: _jsonable(v) for k, v in row.items()},
            headers=self._headers(Prefer="return=representation"),
        )
        data = r.json()
        if isinstance(data, list):
            return data[0] if data else {}
        return data or {}

    async def delete(self, table: str, filters: Sequence[Filter]) -> None:
        check_table(table)
        if not filters:
            raise DataError("refusing to delete without a filter")
        await self._request("DELETE", f"/rest/v1/{table}", DataError, params=self._filter_params(filters))

    # --- storage -----------------------------------------------------------

    async def upload(self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        check_bucket(bucket)
        await self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{quote(path)}",
            StorageError,
            content=data,
            headers=self._headers(**{
                "Content-Type": content_type or "application/octet-stream",
                "x-upsert": "false",
            }),
        )

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{bucket}/{quote(path)}"

    async def aclose(self) -> None:
        return None
