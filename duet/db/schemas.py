from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

LibraryTab = Literal["all", "favorites", "mine", "theirs"]
PlayerStateName = Literal["idle", "loading", "playing", "paused"]


# --- Gateway rows ------------------------------------------------------------

class Profile(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID
    user_id: UUID
    display_name: str
    avatar_url: Optional[str] = None
    created_at: datetime


class Song(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID
    title: str
    audio_url: str
    cover_url: Optional[str] = None
    uploaded_by: UUID
    created_at: datetime


class Play(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID
    song_id: UUID
    played_by: UUID
    played_at: datetime


class Favorite(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID
    song_id: UUID
    user_id: UUID
    created_at: datetime


# --- Derived -----------------------------------------------------------------

class SongWithStats(Song):
    my_plays: int = 0
    partner_plays: int = 0
    total_plays: int = 0
    is_favorite: bool = False
    uploader: Optional[Profile] = None


class WeeklyTopSong(BaseModel):
    song: Song
    plays: int
    uploader: Optional[Profile] = None


class WeeklyStats(BaseModel):
    my_top_songs: List[WeeklyTopSong] = []
    partner_top_songs: List[WeeklyTopSong] = []
    shared_favorites: List[Song] = []


# --- Auth --------------------------------------------------------------------

class AuthUser(BaseModel):
    id: UUID
    email: str


class AuthSession(BaseModel):
    access_token: str
    user: AuthUser
    expires_at: Optional[int] = None  # epoch seconds


class Identity(BaseModel):
    user: AuthUser
    profile: Optional[Profile] = None
    partner: Optional[Profile] = None


# --- Forms (checked before any network call) ---------------------------------

class SignInForm(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)


class SignUpForm(SignInForm):
    display_name: str = Field(min_length=1)


class UploadForm(BaseModel):
    title: str = Field(min_length=1)
    audio_filename: str = Field(min_length=1)


# --- HTTP bodies -------------------------------------------------------------

class CredentialsIn(BaseModel):
    email: str = ""
    password: str = ""
    display_name: Optional[str] = None


class PlayIn(BaseModel):
    song_id: UUID
    tab: LibraryTab = "all"


class SeekIn(BaseModel):
    time: float


class VolumeIn(BaseModel):
    level: float


class DurationIn(BaseModel):
    duration: float


class PlayerState(BaseModel):
    state: PlayerStateName
    song: Optional[SongWithStats] = None
    tab: LibraryTab = "all"
    is_playing: bool = False
    current_time: float = 0.0
    duration: float = 0.0
    current_time_label: str = "0:00"
    duration_label: str = "0:00"
    volume: float = 1.0
    muted: bool = False


class SessionOut(BaseModel):
    authenticated: bool
    # bearer token for every authenticated request; None until a session exists
    access_token: Optional[str] = None
    identity: Optional[Identity] = None
