from fastapi import APIRouter
from fastapi.responses import JSONResponse

from core.deps import StorageDep
from core.errors import BackendUnavailableError

router = APIRouter(tags=["health"])

@router.get("/health")
def health():
    # Keep this super simple and always unauthenticated
    return {"ok": True}

@router.get("/health/storage")
def health_storage(storage: StorageDep):
    """
    Verifies the configured storage backend answers:
      - S3: HeadBucket
      - SeaweedFS: master /cluster/status
    """
    backend = type(storage).__name__
    try:
        storage.ping()
    except BackendUnavailableError as e:
        return JSONResponse(
            status_code=503,
            content={"ok": False, "storageReachable": False, "backend": backend, "error": str(e)},
        )

    return {"ok": True, "storageReachable": True, "backend": backend}
