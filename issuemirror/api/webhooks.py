"""GitHub webhook endpoint"""
import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from issuemirror.models.base import get_db
from issuemirror.security import WebhookSignatureValidator
from issuemirror.services.embeddings import IssueEmbeddingGenerator, OllamaEmbeddingService
from issuemirror.services.github_client import GitHubClient
from issuemirror.services.notifier import IssueUpdateNotifier, NullIssueUpdateNotifier
from issuemirror.webhooks import WebhookRouter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def get_signature_validator() -> WebhookSignatureValidator:
    return WebhookSignatureValidator()


def get_embedding_generator():
    """Embedding generator with a GitHub client for comment lookups"""
    client = GitHubClient.from_settings()
    embedding_service = OllamaEmbeddingService()
    try:
        yield IssueEmbeddingGenerator(embedding_service, client)
    finally:
        embedding_service.close()
        client.close()


def get_notifier() -> IssueUpdateNotifier:
    return NullIssueUpdateNotifier()


@router.post("/github")
async def receive_github_webhook(
    request: Request,
    x_github_event: str = Header(None),
    x_hub_signature_256: str = Header(None),
    x_github_delivery: str = Header(None),
    db: Session = Depends(get_db),
    validator: WebhookSignatureValidator = Depends(get_signature_validator),
    embedding_generator: IssueEmbeddingGenerator = Depends(get_embedding_generator),
    notifier: IssueUpdateNotifier = Depends(get_notifier),
):
    """Receive a GitHub webhook delivery"""
    body = await request.body()

    if not validator.validate(body, x_hub_signature_256):
        logger.warning(f"Rejected webhook delivery {x_github_delivery}: invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid JSON: {e}")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload: expected a JSON object")

    webhook_router = WebhookRouter(db, embedding_generator, notifier)
    try:
        result = await run_in_threadpool(webhook_router.dispatch, x_github_event, payload)
    except ValidationError as e:
        logger.warning(f"Malformed {x_github_event} payload (delivery {x_github_delivery}): {e}")
        raise HTTPException(status_code=400, detail=f"Invalid payload: {e.error_count()} errors")

    status_code = 200 if result.success else 400
    return JSONResponse(status_code=status_code, content=result.model_dump())
