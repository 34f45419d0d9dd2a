from fastapi import APIRouter, Depends, HTTPException, status

from duet.api.deps import get_container, require_identity
from duet.core.bootstrap import Container
from duet.core.errors import (
    ALREADY_REGISTERED_MESSAGE,
    INVALID_LOGIN_MESSAGE,
    AuthError,
    ValidationError,
    friendly_auth_message,
)
from duet.core.validation import validate_sign_in, validate_sign_up
import duet.db.schemas as s

router = APIRouter(prefix="/auth", tags=["auth"])


# --- helpers -----------------------------------------------------------------

def _auth_failed(error: AuthError) -> HTTPException:
    message = friendly_auth_message(error)
    if message == INVALID_LOGIN_MESSAGE:
        code = status.HTTP_401_UNAUTHORIZED
    elif message == ALREADY_REGISTERED_MESSAGE:
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=message)


def _invalid(e: ValidationError) -> HTTPException:
    return HTTPException(status_code=422, detail={"errors": e.errors})


async def _session_out(container: Container) -> s.SessionOut:
    identity = await container.session.current_identity()
    if identity is not None and identity.profile is not None:
        await container.library.load()
    session = container.session.session
    return s.SessionOut(
        authenticated=identity is not None,
        access_token=session.access_token if session is not None else None,
        identity=identity,
    )


# --- routes ------------------------------------------------------------------

@router.post("/signup", response_model=s.SessionOut, status_code=201)
async def signup(payload: s.CredentialsIn, container: Container = Depends(get_container)):
    try:
        form = validate_sign_up(payload.email, payload.password, payload.display_name)
    except ValidationError as e:
        raise _invalid(e)

    result = await container.session.sign_up(form.email, form.password, form.display_name)
    if not result.ok:
        raise _auth_failed(result.error)
    # no session yet when the backend wants the email confirmed first
    return await _session_out(container)


@router.post("/login", response_model=s.SessionOut)
async def login(payload: s.CredentialsIn, container: Container = Depends(get_container)):
    try:
        form = validate_sign_in(payload.email, payload.password)
    except ValidationError as e:
        raise _invalid(e)

    result = await container.session.sign_in(form.email, form.password)
    if not result.ok:
        raise _auth_failed(result.error)
    return await _session_out(container)


@router.post("/logout", status_code=204)
async def logout(
    container: Container = Depends(get_container),
    _identity: s.Identity = Depends(require_identity),
):
    await container.session.sign_out()
    container.library.reset()
    container.player.reset()
    return


@router.get("/me", response_model=s.Identity)
async def me(identity: s.Identity = Depends(require_identity)):
    return identity


@router.post("/activity", status_code=204)
async def activity(_identity: s.Identity = Depends(require_identity)):
    # require_identity already stamped the activity timestamp
    return
