"""
Library Store.

Holds the shared song list with per-song stats derived in memory from the
songs, plays, favorites and profiles collections. Play recording, favorite
toggling and deletion update local state optimistically; failed writes are
logged and kept in ``failed_writes`` until the next full load replaces local
state with server truth.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple
from uuid import UUID

from duet.clients.gateway import AUDIO_BUCKET, COVERS_BUCKET, BackendGateway, eq, storage_path
from duet.core.errors import DataError, DuetError, StorageError
from duet.db.schemas import Favorite, LibraryTab, Play, Profile, Song, SongWithStats
from duet.services.identity import SessionManager

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED = "Not authenticated"


@dataclass
class UploadFile:
    filename: str
    data: bytes
    content_type: Optional[str] = None


@dataclass
class UploadResult:
    success: bool
    error: Optional[str] = None


@dataclass
class WriteFailure:
    operation: str
    song_id: UUID
    error: str


def build_song_stats(
    songs: Sequence[Song],
    plays: Sequence[Play],
    favorites: Sequence[Favorite],
    profiles: Sequence[Profile],
    profile: Profile,
    partner: Optional[Profile],
) -> List[SongWithStats]:
    """Join the four collections; song order is preserved."""
    counts: Counter[Tuple[UUID, UUID]] = Counter((p.song_id, p.played_by) for p in plays)
    my_favorites: Set[UUID] = {f.song_id for f in favorites if f.user_id == profile.id}
    profiles_by_id: Dict[UUID, Profile] = {p.id: p for p in profiles}

    out: List[SongWithStats] = []
    for song in songs:
        my_plays = counts[(song.id, profile.id)]
        partner_plays = counts[(song.id, partner.id)] if partner else 0
        out.append(SongWithStats(
            **song.model_dump(),
            my_plays=my_plays,
            partner_plays=partner_plays,
            total_plays=my_plays + partner_plays,
            is_favorite=song.id in my_favorites,
            uploader=profiles_by_id.get(song.uploaded_by),
        ))
    return out


def filter_songs(
    songs: Sequence[SongWithStats],
    tab: LibraryTab,
    profile: Optional[Profile],
    partner: Optional[Profile],
) -> List[SongWithStats]:
    if tab == "favorites":
        return [s for s in songs if s.is_favorite]
    if tab == "mine":
        return [s for s in songs if profile is not None and s.uploaded_by == profile.id]
    if tab == "theirs":
        return [s for s in songs if partner is not None and s.uploaded_by == partner.id]
    return list(songs)


class LibraryStore:
    def __init__(
        self,
        gateway: BackendGateway,
        session: SessionManager,
        *,
        clock_ms: Optional[Callable[[], int]] = None,
    ):
        self.gateway = gateway
        self.session = session
        self._now_ms = clock_ms or (lambda: int(time.time() * 1000))
        self.songs: List[SongWithStats] = []
        self.loading = True
        self.failed_writes: List[WriteFailure] = []
        self._load_seq = 0

    def reset(self) -> None:
        self.songs = []
        self.failed_writes.clear()
        self.loading = True

    # --- reads -------------------------------------------------------------

    def get(self, song_id: UUID) -> Optional[SongWithStats]:
        return next((s for s in self.songs if s.id == song_id), None)

    def filter(self, tab: LibraryTab) -> List[SongWithStats]:
        return filter_songs(self.songs, tab, self.session.profile, self.session.partner)

    async def load(self) -> List[SongWithStats]:
        profile = self.session.profile
        if profile is None:
            return self.songs
        partner = self.session.partner
        generation = self.session.generation
        self._load_seq += 1
        seq = self._load_seq

        song_rows, play_rows, fav_rows, profile_rows = await asyncio.gather(
            self.gateway.select("songs", order=("created_at", True)),
            self.gateway.select("plays"),
            self.gateway.select("favorites"),
            self.gateway.select("profiles"),
        )

        if generation != self.session.generation or seq != self._load_seq:
            logger.debug("discarding superseded library load #%d", seq)
            return self.songs

        self.songs = build_song_stats(
            [Song.model_validate(r) for r in song_rows],
            [Play.model_validate(r) for r in play_rows],
            [Favorite.model_validate(r) for r in fav_rows],
            [Profile.model_validate(r) for r in profile_rows],
            profile,
            partner,
        )
        self.failed_writes.clear()
        self.loading = False
        return self.songs

    # --- optimistic writes -------------------------------------------------

    def _write_failed(self, operation: str, song_id: UUID, error: DuetError) -> None:
        logger.warning("%s for song %s failed: %s", operation, song_id, error.message)
        self.failed_writes.append(WriteFailure(operation, song_id, error.message))

    async def record_play(self, song_id: UUID) -> None:
        profile = self.session.profile
        if profile is None:
            return
        try:
            await self.gateway.insert("plays", {"song_id": song_id, "played_by": profile.id})
        except DataError as e:
            self._write_failed("record_play", song_id, e)

        self.songs = [
            s.model_copy(update={"my_plays": s.my_plays + 1, "total_plays": s.total_plays + 1})
            if s.id == song_id else s
            for s in self.songs
        ]

    async def toggle_favorite(self, song_id: UUID) -> Optional[bool]:
        """Returns the new local favorite flag, or None when the song is unknown."""
        profile = self.session.profile
        song = self.get(song_id)
        if profile is None or song is None:
            return None
        try:
            if song.is_favorite:
                await self.gateway.delete("favorites", [eq("song_id", song_id), eq("user_id", profile.id)])
            else:
                await self.gateway.insert("favorites", {"song_id": song_id, "user_id": profile.id})
        except DataError as e:
            self._write_failed("toggle_favorite", song_id, e)

        self.songs = [
            s.model_copy(update={"is_favorite": not s.is_favorite}) if s.id == song_id else s
            for s in self.songs
        ]
        return not song.is_favorite

    async def delete(self, song_id: UUID) -> bool:
        """Only the uploader may delete; returns False when refused."""
        profile = self.session.profile
        song = self.get(song_id)
        if profile is None or song is None or song.uploaded_by != profile.id:
            return False
        try:
            await self.gateway.delete("songs", [eq("id", song_id)])
        except DataError as e:
            self._write_failed("delete", song_id, e)
        self.songs = [s for s in self.songs if s.id != song_id]
        return True

    # --- upload ------------------------------------------------------------

    async def _store(self, bucket: str, profile: Profile, file: UploadFile) -> str:
        path = storage_path(profile.id, file.filename, self._now_ms())
        await self.gateway.upload(bucket, path, file.data, file.content_type)
        return self.gateway.public_url(bucket, path)

    async def upload(self, title: str, audio: UploadFile, cover: Optional[UploadFile] = None) -> UploadResult:
        profile = self.session.profile
        if profile is None:
            return UploadResult(success=False, error=NOT_AUTHENTICATED)

        try:
            audio_url = await self._store(AUDIO_BUCKET, profile, audio)

            cover_url = None
            if cover is not None:
                try:
                    cover_url = await self._store(COVERS_BUCKET, profile, cover)
                except StorageError as e:
                    logger.warning("cover upload failed, continuing without cover: %s", e.message)

            await self.gateway.insert("songs", {
                "title": title,
                "audio_url": audio_url,
                "cover_url": cover_url,
                "uploaded_by": profile.id,
            })
        except DuetError as e:
            logger.warning("upload of %r failed: %s", title, e.message)
            return UploadResult(success=False, error=e.message)

        try:
            await self.load()
        except DataError as e:
            logger.warning("reload after upload failed: %s", e.message)
        return UploadResult(success=True)
