from fastapi import APIRouter, BackgroundTasks, Depends, status

from deployctl.dependencies import get_pipeline, require_deploy
from deployctl.domain.entities.deployment import DeploymentTrigger
from deployctl.schemas.deploy import AbortResponse, DeployAccepted, DeployRequest

router = APIRouter(tags=["deployments"])


@router.post(
    "/deploy",
    response_model=DeployAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_deploy)],
)
async def trigger_deploy(
    background_tasks: BackgroundTasks,
    request: DeployRequest = DeployRequest(),
    pipeline=Depends(get_pipeline),
):
    """Build and deploy the branch head (or a given commit) - requires 'deploy' permission."""
    revision = await pipeline.trigger_manual(request.commit_sha)
    background_tasks.add_task(pipeline.handle_revision, revision, DeploymentTrigger.MANUAL)
    return DeployAccepted(
        commit_sha=revision.commit_sha,
        branch=revision.branch,
        message=f"Build of {revision.short_sha} scheduled",
    )


@router.post(
    "/deploy/abort",
    response_model=AbortResponse,
    dependencies=[Depends(require_deploy)],
)
async def abort_deploy(pipeline=Depends(get_pipeline)):
    """Abort the in-flight deployment; the live stack keeps serving."""
    aborted = pipeline.orchestrator.abort()
    return AbortResponse(
        aborted=aborted,
        message="Abort signalled" if aborted else "No deployment in progress",
    )
