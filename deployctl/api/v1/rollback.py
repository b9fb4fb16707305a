from fastapi import APIRouter, Depends

from deployctl.dependencies import get_pipeline, require_rollback
from deployctl.domain.entities.deployment import DeploymentRecord
from deployctl.schemas.rollback import RollbackRequest

router = APIRouter(tags=["rollback"])


@router.post(
    "/rollback",
    response_model=DeploymentRecord,
    dependencies=[Depends(require_rollback)],
)
async def rollback(
    request: RollbackRequest = RollbackRequest(),
    pipeline=Depends(get_pipeline),
):
    """Redeploy the last known-good artifact - requires 'rollback' permission."""
    return await pipeline.rollback_manager.rollback_to_last_good(request.reason)
