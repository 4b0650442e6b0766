"""Storage provisioning status and manual re-provisioning."""

from fastapi import APIRouter, Depends

from genbi.dependencies import get_object_store, get_provisioner
from genbi.services.storage_provisioner import StorageProvisioner

router = APIRouter()


@router.get("/status")
async def storage_status(
    provisioner: StorageProvisioner = Depends(get_provisioner),
    store=Depends(get_object_store),
):
    return {
        "backend": store.backend_name,
        "buckets": provisioner.report(),
    }


@router.post("/ensure")
async def ensure_storage(provisioner: StorageProvisioner = Depends(get_provisioner)):
    """Re-run bucket provisioning regardless of earlier results."""
    ready = await provisioner.ensure_buckets(force=True)
    return {"ready": ready, "buckets": provisioner.report()}
