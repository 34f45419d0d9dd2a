"""
Playback Session: a single audio transport plus the sequencing around it.

The session owns the transport exclusively, so only one song plays at a time;
loading a new source interrupts whatever was playing. Natural end-of-media
notifies ``on_play_complete`` and then ``on_advance``, in that order.
"""
from __future__ import annotations

import inspect
import logging
import math
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence, Union
from uuid import UUID

from duet.db.schemas import LibraryTab, PlayerState, SongWithStats
from duet.services.library import LibraryStore

logger = logging.getLogger(__name__)

Callback = Callable[..., Union[None, Awaitable[None]]]


class State(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"


class TransportError(RuntimeError):
    pass


class Transport(Protocol):
    position: float
    duration: float
    volume: float
    muted: bool

    def load(self, url: str) -> None: ...
    def play(self) -> None: ...
    def pause(self) -> None: ...
    def seek(self, position: float) -> None: ...


class HeadlessTransport:
    """
    In-memory transport. The browser's audio element does the actual decoding
    and reports progress back; this object mirrors what it was told.
    """

    def __init__(self) -> None:
        self.src: Optional[str] = None
        self.position = 0.0
        self.duration = math.nan
        self.volume = 1.0
        self.muted = False
        self.paused = True

    def load(self, url: str) -> None:
        self.src = url
        self.position = 0.0
        self.duration = math.nan
        self.paused = True

    def play(self) -> None:
        if self.src is None:
            raise TransportError("no source loaded")
        self.paused = False

    def pause(self) -> None:
        self.paused = True

    def seek(self, position: float) -> None:
        upper = self.duration if math.isfinite(self.duration) else max(position, 0.0)
        self.position = min(max(position, 0.0), upper)


def format_time(seconds: Optional[float]) -> str:
    """65 -> '1:05'; NaN/None/inf -> '0:00'"""
    if seconds is None or not math.isfinite(seconds):
        return "0:00"
    seconds = max(seconds, 0.0)
    return f"{int(seconds // 60)}:{int(seconds % 60):02d}"


def _index_of(songs: Sequence[SongWithStats], current: SongWithStats) -> int:
    return next((i for i, s in enumerate(songs) if s.id == current.id), -1)


def next_song(songs: Sequence[SongWithStats], current: Optional[SongWithStats]) -> Optional[SongWithStats]:
    if not songs or current is None:
        return None
    i = _index_of(songs, current)
    return songs[(i + 1) % len(songs)]


def previous_song(songs: Sequence[SongWithStats], current: Optional[SongWithStats]) -> Optional[SongWithStats]:
    if not songs or current is None:
        return None
    i = _index_of(songs, current)
    if i < 0:
        # current song is not in this view
        return None
    return songs[(i - 1 + len(songs)) % len(songs)]


async def _fire(callback: Optional[Callback], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class PlaybackSession:
    def __init__(
        self,
        transport: Transport,
        *,
        on_play_complete: Optional[Callback] = None,
        on_advance: Optional[Callback] = None,
    ):
        self.transport = transport
        self.on_play_complete = on_play_complete
        self.on_advance = on_advance
        self.state = State.IDLE
        self.song: Optional[SongWithStats] = None
        self.current_time = 0.0
        self.duration = 0.0
        self.volume = transport.volume
        self.muted = transport.muted

    @property
    def is_playing(self) -> bool:
        return self.state == State.PLAYING

    # --- transport control -------------------------------------------------

    def load(self, song: SongWithStats) -> None:
        self.song = song
        self.current_time = 0.0
        self.duration = 0.0
        self.state = State.LOADING
        self.transport.load(song.audio_url)
        try:
            self.transport.play()
        except TransportError as e:
            logger.warning("transport refused to start %s: %s", song.id, e)
            self.state = State.PAUSED
            return
        self.state = State.PLAYING

    def toggle_play_pause(self) -> None:
        if self.state == State.PLAYING:
            self.transport.pause()
            self.state = State.PAUSED
        elif self.state in (State.PAUSED, State.LOADING):
            try:
                self.transport.play()
            except TransportError as e:
                logger.warning("transport refused to resume %s: %s", self.song.id if self.song else None, e)
                self.state = State.PAUSED
                return
            self.state = State.PLAYING

    def seek(self, time_seconds: float) -> None:
        if self.state not in (State.PLAYING, State.PAUSED):
            return
        self.transport.seek(time_seconds)
        self.current_time = self.transport.position

    def set_volume(self, level: float) -> None:
        level = min(max(level, 0.0), 1.0)
        self.transport.volume = level
        self.volume = level
        self.muted = level == 0
        self.transport.muted = self.muted

    def toggle_mute(self) -> None:
        self.muted = not self.muted
        self.transport.muted = self.muted

    def unload(self) -> None:
        if self.state != State.IDLE:
            self.transport.pause()
        self.song = None
        self.current_time = 0.0
        self.duration = 0.0
        self.state = State.IDLE

    # --- transport reports -------------------------------------------------

    def update_time(self, time_seconds: float) -> None:
        if self.song is None:
            return
        self.transport.position = time_seconds
        self.current_time = time_seconds

    def update_duration(self, duration: float) -> None:
        if self.song is None:
            return
        self.transport.duration = duration
        self.duration = duration

    async def handle_ended(self) -> None:
        """Natural end of media: play_complete(song), then advance()."""
        song = self.song
        if song is None:
            return
        self.state = State.PAUSED
        await _fire(self.on_play_complete, song)
        await _fire(self.on_advance)

    def snapshot(self, tab: LibraryTab = "all") -> PlayerState:
        return PlayerState(
            state=self.state.value,
            song=self.song,
            tab=tab,
            is_playing=self.is_playing,
            current_time=self.current_time,
            duration=self.duration if math.isfinite(self.duration) else 0.0,
            current_time_label=format_time(self.current_time),
            duration_label=format_time(self.duration),
            volume=self.volume,
            muted=self.muted,
        )


class PlayerController:
    """
    Host side of the player: picks songs from the library's filtered view,
    records plays and advances on natural completion.
    """

    def __init__(self, library: LibraryStore, transport: Optional[Transport] = None):
        self.library = library
        self.tab: LibraryTab = "all"
        self.session = PlaybackSession(
            transport or HeadlessTransport(),
            on_play_complete=self._record,
            on_advance=self.next,
        )

    def queue(self) -> List[SongWithStats]:
        return self.library.filter(self.tab)

    def play(self, song_id: UUID, tab: Optional[LibraryTab] = None) -> Optional[SongWithStats]:
        if tab is not None:
            self.tab = tab
        song = self.library.get(song_id)
        if song is None:
            return None
        self.session.load(song)
        return song

    def next(self) -> Optional[SongWithStats]:
        song = next_song(self.queue(), self.session.song)
        if song is not None:
            self.session.load(song)
        return song

    def previous(self) -> Optional[SongWithStats]:
        song = previous_song(self.queue(), self.session.song)
        if song is not None:
            self.session.load(song)
        return song

    async def _record(self, song: SongWithStats) -> None:
        await self.library.record_play(song.id)

    def state(self) -> PlayerState:
        return self.session.snapshot(self.tab)

    def reset(self) -> None:
        self.tab = "all"
        self.session.unload()
