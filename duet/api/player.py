from fastapi import APIRouter, Depends, HTTPException

from duet.api.deps import get_container, require_profile
from duet.core.bootstrap import Container
from duet.services.playback import PlayerController
import duet.db.schemas as s

router = APIRouter(prefix="/player", tags=["player"])


# --- deps --------------------------------------------------------------------

def get_player(
    container: Container = Depends(get_container),
    _identity: s.Identity = Depends(require_profile),
) -> PlayerController:
    return container.player


# --- commands ----------------------------------------------------------------

@router.get("", response_model=s.PlayerState)
async def get_state(player: PlayerController = Depends(get_player)):
    return player.state()


@router.post("/play", response_model=s.PlayerState)
async def play(body: s.PlayIn, player: PlayerController = Depends(get_player)):
    if player.play(body.song_id, body.tab) is None:
        raise HTTPException(status_code=404, detail="song_not_found")
    return player.state()


@router.post("/toggle", response_model=s.PlayerState)
async def toggle(player: PlayerController = Depends(get_player)):
    player.session.toggle_play_pause()
    return player.state()


@router.post("/seek", response_model=s.PlayerState)
async def seek(body: s.SeekIn, player: PlayerController = Depends(get_player)):
    player.session.seek(body.time)
    return player.state()


@router.post("/volume", response_model=s.PlayerState)
async def volume(body: s.VolumeIn, player: PlayerController = Depends(get_player)):
    player.session.set_volume(body.level)
    return player.state()


@router.post("/mute", response_model=s.PlayerState)
async def mute(player: PlayerController = Depends(get_player)):
    player.session.toggle_mute()
    return player.state()


@router.post("/next", response_model=s.PlayerState)
async def next_track(player: PlayerController = Depends(get_player)):
    player.next()
    return player.state()


@router.post("/previous", response_model=s.PlayerState)
async def previous_track(player: PlayerController = Depends(get_player)):
    player.previous()
    return player.state()


# --- transport reports (from the audio element) ------------------------------

@router.post("/progress", response_model=s.PlayerState)
async def progress(body: s.SeekIn, player: PlayerController = Depends(get_player)):
    player.session.update_time(body.time)
    return player.state()


@router.post("/metadata", response_model=s.PlayerState)
async def metadata(body: s.DurationIn, player: PlayerController = Depends(get_player)):
    player.session.update_duration(body.duration)
    return player.state()


@router.post("/ended", response_model=s.PlayerState)
async def ended(player: PlayerController = Depends(get_player)):
    """Natural completion: records the play, then moves to the next song in the tab."""
    await player.session.handle_ended()
    return player.state()
