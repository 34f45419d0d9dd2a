from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from duet.api.deps import get_container, require_profile
from duet.core.bootstrap import Container
from duet.core.errors import ValidationError
from duet.core.validation import validate_upload
from duet.services.library import UploadFile as Blob
import duet.db.schemas as s

router = APIRouter(prefix="/songs", tags=["songs"])


# --- helpers -----------------------------------------------------------------

def _get_song_or_404(container: Container, song_id: uuid.UUID) -> s.SongWithStats:
    song = container.library.get(song_id)
    if not song:
        raise HTTPException(status_code=404, detail="song_not_found")
    return song


async def _blob(upload: Optional[UploadFile]) -> Optional[Blob]:
    if upload is None or not upload.filename:
        return None
    return Blob(filename=upload.filename, data=await upload.read(), content_type=upload.content_type)


# --- routes ------------------------------------------------------------------

@router.get("", response_model=List[s.SongWithStats])
async def list_songs(
    tab: s.LibraryTab = Query("all"),
    container: Container = Depends(get_container),
    _identity: s.Identity = Depends(require_profile),
):
    """Library songs with stats, filtered by Dashboard tab (all, favorites, mine, theirs)."""
    if container.library.loading:
        await container.library.load()
    return container.library.filter(tab)


@router.post("/reload", response_model=List[s.SongWithStats])
async def reload_songs(
    container: Container = Depends(get_container),
    _identity: s.Identity = Depends(require_profile),
):
    return await container.library.load()


@router.post("", response_model=s.SongWithStats, status_code=201)
async def upload_song(
    title: Optional[str] = Form(None),
    audio: Optional[UploadFile] = File(None),
    cover: Optional[UploadFile] = File(None),
    container: Container = Depends(get_container),
    identity: s.Identity = Depends(require_profile),
):
    """Upload audio (+ optional cover). Title falls back to the audio filename."""
    try:
        form = validate_upload(title, audio.filename if audio else None)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail={"errors": e.errors})

    result = await container.library.upload(form.title, await _blob(audio), await _blob(cover))
    if not result.success:
        raise HTTPException(status_code=502, detail={"error": "upload_failed", "message": result.error})

    # newest first, so the first match is the row just inserted
    song = next(
        (x for x in container.library.songs if x.title == form.title and x.uploaded_by == identity.profile.id),
        None,
    )
    if song is None:
        raise HTTPException(status_code=502, detail={"error": "upload_not_visible"})
    return song


@router.delete("/{song_id:uuid}", status_code=204)
async def delete_song(
    song_id: uuid.UUID,
    container: Container = Depends(get_container),
    _identity: s.Identity = Depends(require_profile),
):
    _get_song_or_404(container, song_id)
    if not await container.library.delete(song_id):
        raise HTTPException(status_code=403, detail="not_uploader")
    return


@router.post("/{song_id:uuid}/plays", response_model=s.SongWithStats)
async def record_play(
    song_id: uuid.UUID,
    container: Container = Depends(get_container),
    _identity: s.Identity = Depends(require_profile),
):
    _get_song_or_404(container, song_id)
    await container.library.record_play(song_id)
    return _get_song_or_404(container, song_id)


@router.post("/{song_id:uuid}/favorite", response_model=s.SongWithStats)
async def toggle_favorite(
    song_id: uuid.UUID,
    container: Container = Depends(get_container),
    _identity: s.Identity = Depends(require_profile),
):
    _get_song_or_404(container, song_id)
    await container.library.toggle_favorite(song_id)
    return _get_song_or_404(container, song_id)
