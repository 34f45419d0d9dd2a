from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from duet.api.deps import get_container
from duet.clients.local import LocalGateway
from duet.core.bootstrap import Container
from duet.core.errors import StorageError

router = APIRouter()


@router.get("/healthz")
async def healthz(container: Container = Depends(get_container)):
    return {"status": "ok", "service": container.settings.service_name, "backend": container.settings.backend}


@router.get("/storage/{bucket}/{path:path}")
def get_object(bucket: str, path: str, container: Container = Depends(get_container)):
    """Serves uploaded blobs for the self-hosted backend."""
    gateway = container.gateway
    if not isinstance(gateway, LocalGateway):
        raise HTTPException(status_code=404, detail="not_found")
    try:
        target = gateway.object_path(bucket, path)
    except (StorageError, ValueError):
        raise HTTPException(status_code=404, detail="not_found")
    if not target.is_file():
        raise HTTPException(status_code=404, detail="not_found")
    return FileResponse(target)
