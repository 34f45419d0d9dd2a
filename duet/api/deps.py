import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from duet.core.bootstrap import Container
from duet.db.schemas import Identity


def get_container(request: Request) -> Container:
    return request.app.state.container


bearer = HTTPBearer(auto_error=False)


async def require_identity(
    credentials: HTTPAuthorizationCredentials = Depends(bearer),
    container: Container = Depends(get_container),
) -> Identity:
    """
    Authenticated routes: the bearer token must be the one issued for the
    active session. The gateway checks expiry (and the signature, when it
    issued the token itself). Activity is stamped on success.
    """
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing_token")

    active = await container.gateway.current_session()
    if active is None or container.session.session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not_authenticated")
    if not hmac.compare_digest(credentials.credentials.encode(), active.access_token.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")

    identity = await container.session.current_identity()
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not_authenticated")
    container.session.touch()
    return identity


async def require_profile(identity: Identity = Depends(require_identity)) -> Identity:
    if identity.profile is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="profile_missing")
    return identity
