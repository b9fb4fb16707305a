from fastapi import APIRouter, Depends, HTTPException, Query

from deployctl.dependencies import get_pipeline, require_read_deployments
from deployctl.domain.entities.deployment import DeploymentRecord
from deployctl.schemas.status import ControllerStatus, DeploymentHistoryResponse

router = APIRouter(tags=["status"], dependencies=[Depends(require_read_deployments)])


@router.get("/status", response_model=ControllerStatus)
async def controller_status(pipeline=Depends(get_pipeline)):
    return pipeline.status()


@router.get("/deployments", response_model=DeploymentHistoryResponse)
async def deployment_history(
    limit: int = Query(20, ge=1, le=500),
    pipeline=Depends(get_pipeline),
):
    """Deployment records, most recent first."""
    records = pipeline.orchestrator.history.list(limit)
    return DeploymentHistoryResponse(count=len(records), deployments=records)


@router.get("/deployments/{deployment_id}", response_model=DeploymentRecord)
async def get_deployment(deployment_id: str, pipeline=Depends(get_pipeline)):
    record = pipeline.orchestrator.history.get(deployment_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Deployment {deployment_id} not found")
    return record
