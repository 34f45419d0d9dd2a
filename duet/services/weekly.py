from __future__ import annotations

import asyncio
import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence
from uuid import UUID

from duet.clients.gateway import BackendGateway, gte
from duet.db.schemas import Favorite, Play, Profile, Song, WeeklyStats, WeeklyTopSong

logger = logging.getLogger(__name__)

WINDOW = timedelta(days=7)
TOP_LIMIT = 5


def rank_top_songs(
    plays: Sequence[Play],
    played_by: UUID,
    songs_by_id: Dict[UUID, Song],
    profiles_by_id: Dict[UUID, Profile],
    limit: int = TOP_LIMIT,
) -> List[WeeklyTopSong]:
    """
    Most-played songs for one person: count desc, ties by song id asc.
    The limit is applied before songs are resolved, so plays of deleted
    songs can leave fewer than ``limit`` entries.
    """
    counts = Counter(p.song_id for p in plays if p.played_by == played_by)
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], str(kv[0])))[:limit]

    out: List[WeeklyTopSong] = []
    for song_id, n in ranked:
        song = songs_by_id.get(song_id)
        if song is None:
            logger.debug("dropping %d plays of missing song %s", n, song_id)
            continue
        out.append(WeeklyTopSong(song=song, plays=n, uploader=profiles_by_id.get(song.uploaded_by)))
    return out


def shared_favorites(
    favorites: Sequence[Favorite],
    songs: Sequence[Song],
    profile: Profile,
    partner: Optional[Profile],
) -> List[Song]:
    if partner is None:
        return []
    mine = {f.song_id for f in favorites if f.user_id == profile.id}
    theirs = {f.song_id for f in favorites if f.user_id == partner.id}
    both = mine & theirs
    return [s for s in songs if s.id in both]


class WeeklyAggregator:
    def __init__(
        self,
        gateway: BackendGateway,
        *,
        window: timedelta = WINDOW,
        limit: int = TOP_LIMIT,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.gateway = gateway
        self.window = window
        self.limit = limit
        self._now = clock or (lambda: datetime.now(timezone.utc))

    async def compute(self, profile: Profile, partner: Optional[Profile] = None) -> WeeklyStats:
        since = self._now() - self.window
        play_rows, song_rows, profile_rows, fav_rows = await asyncio.gather(
            self.gateway.select("plays", [gte("played_at", since)]),
            self.gateway.select("songs", order=("created_at", True)),
            self.gateway.select("profiles"),
            self.gateway.select("favorites"),
        )
        plays = [Play.model_validate(r) for r in play_rows]
        songs = [Song.model_validate(r) for r in song_rows]
        favorites = [Favorite.model_validate(r) for r in fav_rows]
        songs_by_id = {s.id: s for s in songs}
        profiles_by_id = {p.id: p for p in (Profile.model_validate(r) for r in profile_rows)}

        return WeeklyStats(
            my_top_songs=rank_top_songs(plays, profile.id, songs_by_id, profiles_by_id, self.limit),
            partner_top_songs=(
                rank_top_songs(plays, partner.id, songs_by_id, profiles_by_id, self.limit) if partner else []
            ),
            shared_favorites=shared_favorites(favorites, songs, profile, partner),
        )
