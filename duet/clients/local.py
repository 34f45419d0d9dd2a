"""
Self-hosted Backend Gateway.

Implements the gateway contract on top of the SQLAlchemy models: argon2
password hashes, HS256 access tokens, and a storage directory holding one
sub-directory per bucket. Public URLs point at the app's ``/storage`` route.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, TypeVar
from urllib.parse import quote

import jwt
import sqlalchemy as sa
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from duet.clients.gateway import (
    Filter,
    Order,
    Row,
    SessionEvents,
    SessionFile,
    check_bucket,
    check_table,
)
from duet.core.errors import AuthError, DataError, StorageError
from duet.db import models as m
from duet.db.schemas import AuthSession, AuthUser

logger = logging.getLogger(__name__)

T = TypeVar("T")

ph = PasswordHasher()

# Same wording the hosted BaaS uses, so friendly_auth_message() works for both
INVALID_LOGIN = "Invalid login credentials"
ALREADY_REGISTERED = "User already registered"


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coerce(column: sa.Column, value: Any) -> Any:
    if value is None:
        return None
    try:
        if isinstance(column.type, sa.Uuid) and not isinstance(value, uuid.UUID):
            return uuid.UUID(str(value))
        if isinstance(column.type, sa.DateTime):
            if isinstance(value, str):
                value = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return _utc(value)
    except (TypeError, ValueError) as e:
        raise DataError(f"invalid value for {column.name}: {value!r}") from e
    return value


def _to_row(obj: Any) -> Row:
    row: Row = {}
    for col in obj.__table__.columns:
        value = getattr(obj, col.name)
        if isinstance(value, datetime):
            value = _utc(value)
        row[col.name] = value
    return row


class LocalGateway(SessionEvents):
    def __init__(
        self,
        session_factory: sessionmaker,
        storage_dir: str | Path,
        public_base_url: str,
        *,
        jwt_secret: str,
        jwt_issuer: str,
        jwt_audience: str,
        jwt_ttl_minutes: int = 60,
        session_path: Optional[Path] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__()
        self._db = session_factory
        self.storage_dir = Path(storage_dir).expanduser()
        self.public_base_url = public_base_url.rstrip("/")
        self._jwt_secret = jwt_secret
        self._jwt_issuer = jwt_issuer
        self._jwt_audience = jwt_audience
        self._jwt_ttl_minutes = jwt_ttl_minutes
        self._session_file = SessionFile(session_path)
        self._now = clock or (lambda: datetime.now(timezone.utc))
        self._session: Optional[AuthSession] = None
        # sqlite connections are shared, so worker threads take turns
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, session_factory: sessionmaker, **kwargs) -> "LocalGateway":
        return cls(
            session_factory,
            settings.storage_dir,
            settings.public_base_url,
            jwt_secret=settings.jwt_secret,
            jwt_issuer=settings.jwt_issuer,
            jwt_audience=settings.jwt_audience,
            jwt_ttl_minutes=settings.jwt_ttl_minutes,
            session_path=Path(settings.state_dir).expanduser() / "session.json",
            **kwargs,
        )

    # --- tokens ------------------------------------------------------------

    def _create_session(self, user: m.User) -> AuthSession:
        now = int(self._now().timestamp())
        exp = now + self._jwt_ttl_minutes * 60
        payload = {
            "iss": self._jwt_issuer,
            "aud": self._jwt_audience,
            "iat": now,
            "exp": exp,
            "sub": str(user.id),
            "email": user.email,
        }
        token = jwt.encode(payload, self._jwt_secret, algorithm="HS256")
        return AuthSession(access_token=token, user=AuthUser(id=user.id, email=user.email), expires_at=exp)

    def _decode(self, token: str) -> Optional[dict]:
        try:
            return jwt.decode(
                token,
                self._jwt_secret,
                algorithms=["HS256"],
                audience=self._jwt_audience,
                issuer=self._jwt_issuer,
                leeway=60,
            )
        except jwt.PyJWTError as e:
            logger.info("stored session rejected: %s", e)
            return None

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        """Database and file work runs in a worker thread, one call at a time."""

        def locked() -> T:
            with self._lock:
                return fn(*args)

        return await asyncio.to_thread(locked)

    async def _establish(self, session: AuthSession) -> AuthSession:
        self._session = session
        await self._run(self._session_file.write, session)
        self._emit(session)
        return session

    # --- auth --------------------------------------------------------------

    async def sign_up(self, email: str, password: str, display_name: str) -> Optional[AuthSession]:
        email = email.lower().strip()
        user = await self._run(self._register, email, password, display_name)
        logger.info("registered %s", email)
        return await self._establish(self._create_session(user))

    def _register(self, email: str, password: str, display_name: str) -> m.User:
        with self._db() as db:
            if db.query(m.User).filter(m.User.email == email).first():
                raise AuthError(ALREADY_REGISTERED, status=422)
            now = self._now()
            user = m.User(id=uuid.uuid4(), email=email, password_hash=ph.hash(password), created_at=now)
            profile = m.Profile(id=uuid.uuid4(), user_id=user.id, display_name=display_name, created_at=now)
            db.add(user)
            db.flush()
            db.add(profile)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                # two sign-ups raced past the existence check
                raise AuthError(ALREADY_REGISTERED, status=422)
            return user

    async def sign_in(self, email: str, password: str) -> AuthSession:
        user = await self._run(self._authenticate, email.lower().strip(), password)
        return await self._establish(self._create_session(user))

    def _authenticate(self, email: str, password: str) -> m.User:
        with self._db() as db:
            user = db.query(m.User).filter(m.User.email == email).first()
            if not user or not self._verify(password, user.password_hash):
                raise AuthError(INVALID_LOGIN, status=400)
            if ph.check_needs_rehash(user.password_hash):
                user.password_hash = ph.hash(password)
                db.commit()
            return user

    @staticmethod
    def _verify(password: str, password_hash: str) -> bool:
        try:
            return ph.verify(password_hash, password)
        except (VerificationError, InvalidHashError):
            return False

    async def sign_out(self) -> None:
        self._session = None
        await self._run(self._session_file.clear)
        self._emit(None)

    async def current_session(self) -> Optional[AuthSession]:
        session = self._session or await self._run(self._session_file.read)
        if session is None:
            return None
        if self._decode(session.access_token) is None:
            self._session = None
            return None
        self._session = session
        return session

    # --- relational --------------------------------------------------------

    @staticmethod
    def _column(model: Any, column: str) -> sa.Column:
        try:
            return model.__table__.c[column]
        except KeyError:
            raise DataError(f"unknown column {model.__tablename__}.{column}")

    def _where(self, model: Any, filters: Sequence[Filter]) -> List[Any]:
        clauses = []
        for column, op, value in filters:
            col = self._column(model, column)
            value = _coerce(col, value)
            if op == "eq":
                clauses.append(col == value)
            elif op == "gte":
                clauses.append(col >= value)
            else:
                raise DataError(f"unsupported filter op: {op}")
        return clauses

    async def select(self, table: str, filters: Sequence[Filter] = (), order: Optional[Order] = None) -> List[Row]:
        check_table(table)
        model = m.TABLES[table]
        stmt = sa.select(model).where(*self._where(model, filters))
        if order:
            col = self._column(model, order[0])
            stmt = stmt.order_by(col.desc() if order[1] else col.asc())
        return await self._run(self._fetch, stmt)

    def _fetch(self, stmt: sa.Select) -> List[Row]:
        try:
            with self._db() as db:
                return [_to_row(obj) for obj in db.scalars(stmt).all()]
        except SQLAlchemyError as e:
            raise DataError(str(e)) from e

    async def insert(self, table: str, row: Row) -> Row:
        check_table(table)
        model = m.TABLES[table]
        values = {k: _coerce(self._column(model, k), v) for k, v in row.items()}
        values.setdefault("id", uuid.uuid4())
        for ts in ("created_at", "played_at"):
            if ts in model.__table__.c and values.get(ts) is None:
                values[ts] = self._now()
        return await self._run(self._add, model, values)

    def _add(self, model: Any, values: Row) -> Row:
        with self._db() as db:
            obj = model(**values)
            db.add(obj)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise DataError(str(e.orig), status=409) from e
            except SQLAlchemyError as e:
                db.rollback()
                raise DataError(str(e)) from e
            return _to_row(obj)

    async def delete(self, table: str, filters: Sequence[Filter]) -> None:
        check_table(table)
        if not filters:
            raise DataError("refusing to delete without a filter")
        model = m.TABLES[table]
        await self._run(self._remove, sa.delete(model).where(*self._where(model, filters)))

    def _remove(self, stmt: sa.Delete) -> None:
        with self._db() as db:
            try:
                db.execute(stmt)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise DataError(str(e)) from e

    # --- storage -----------------------------------------------------------

    def object_path(self, bucket: str, path: str) -> Path:
        check_bucket(bucket)
        root = (self.storage_dir / bucket).resolve()
        target = (root / path).resolve()
        if root not in target.parents:
            raise StorageError(f"invalid object path: {path}", status=400)
        return target

    async def upload(self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        target = self.object_path(bucket, path)
        await self._run(self._write_object, target, data)
        logger.debug("stored %s/%s (%d bytes, %s)", bucket, path, len(data), content_type)

    @staticmethod
    def _write_object(target: Path, data: bytes) -> None:
        if target.exists():
            raise StorageError("The resource already exists", status=409)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(str(e)) from e

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/storage/{bucket}/{quote(path)}"

    async def aclose(self) -> None:
        return None
