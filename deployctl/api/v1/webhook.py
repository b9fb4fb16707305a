import hashlib
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError

from deployctl.config import settings
from deployctl.dependencies import get_pipeline
from deployctl.domain.entities.deployment import DeploymentTrigger
from deployctl.schemas.webhook import PushEvent, WebhookAck

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """Check GitHub's ``X-Hub-Signature-256`` header (``sha256=<hexdigest>``)."""
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature[len("sha256="):])


@router.post("/github", response_model=WebhookAck, status_code=status.HTTP_202_ACCEPTED)
async def github_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_github_event: str = Header("push"),
    x_hub_signature_256: Optional[str] = Header(None),
    pipeline=Depends(get_pipeline),
):
    """Receive GitHub push events for the tracked branch."""
    body = await request.body()

    if settings.WEBHOOK_SECRET and not verify_signature(settings.WEBHOOK_SECRET, body, x_hub_signature_256):
        logger.warning("❌ Rejected webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    if x_github_event == "ping":
        return WebhookAck(accepted=True, message="pong")
    if x_github_event != "push":
        return WebhookAck(accepted=False, message=f"Ignoring {x_github_event} event")

    try:
        event = PushEvent.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors(include_url=False, include_context=False))

    revision = await pipeline.watcher.observe_push(event)
    if revision is None:
        return WebhookAck(accepted=False, message="Nothing new to deploy", commit_sha=event.after)

    background_tasks.add_task(pipeline.handle_revision, revision, DeploymentTrigger.PUSH)
    logger.info(f"📬 Push {revision.short_sha} on {revision.branch} accepted")
    return WebhookAck(accepted=True, message="Build scheduled", commit_sha=revision.commit_sha)
