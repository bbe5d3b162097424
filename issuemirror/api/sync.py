"""Sync management endpoints"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from issuemirror.models import Issue, Repository
from issuemirror.models.base import get_db
from issuemirror.services.embeddings import IssueEmbeddingGenerator, OllamaEmbeddingService
from issuemirror.services.github_client import GitHubClient
from issuemirror.services.sync_service import SyncService, parse_repository_name

router = APIRouter(prefix="/api/sync", tags=["sync"])


class SyncTriggerRequest(BaseModel):
    repositories: Optional[List[str]] = None
    since: Optional[datetime] = None
    smart: bool = False


class RepositoryStatusResponse(BaseModel):
    id: int
    full_name: str
    html_url: str
    last_synced_at: Optional[datetime] = None
    issue_count: int
    deleted_count: int


def get_github_client():
    client = GitHubClient.from_settings()
    try:
        yield client
    finally:
        client.close()


def get_sync_service(
    db: Session = Depends(get_db), client: GitHubClient = Depends(get_github_client)
):
    embedding_service = OllamaEmbeddingService()
    try:
        yield SyncService(db, client, IssueEmbeddingGenerator(embedding_service, client))
    finally:
        embedding_service.close()


@router.post("/trigger")
def trigger_sync(
    request: SyncTriggerRequest,
    sync_service: SyncService = Depends(get_sync_service),
):
    """Run a sync of the given (or all configured) repositories"""
    try:
        if request.repositories:
            stats = sync_service.sync_repositories(
                request.repositories, since=request.since, smart=request.smart
            )
        else:
            stats = sync_service.sync_all_repositories(since=request.since, smart=request.smart)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"status": "success" if stats.success else "failed", "stats": stats.to_dict()}


@router.get("/analyze")
def analyze_repository(
    repository: str,
    since: Optional[datetime] = None,
    smart: bool = False,
    sync_service: SyncService = Depends(get_sync_service),
):
    """Dry run: what a sync of the repository would change"""
    try:
        owner, name = parse_repository_name(repository)
        return sync_service.analyze_repository(owner, name, since=since, smart=smart)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/status", response_model=List[RepositoryStatusResponse])
def sync_status(db: Session = Depends(get_db)):
    """Mirrored repositories with their watermark and issue counts"""
    issue_counts = dict(
        db.execute(
            select(Issue.repository_id, func.count(Issue.id))
            .where(Issue.is_deleted == False)  # noqa: E712
            .group_by(Issue.repository_id)
        ).all()
    )
    deleted_counts = dict(
        db.execute(
            select(Issue.repository_id, func.count(Issue.id))
            .where(Issue.is_deleted == True)  # noqa: E712
            .group_by(Issue.repository_id)
        ).all()
    )

    repositories = db.scalars(select(Repository).order_by(Repository.full_name)).all()
    return [
        RepositoryStatusResponse(
            id=repository.id,
            full_name=repository.full_name,
            html_url=repository.html_url,
            last_synced_at=repository.last_synced_at,
            issue_count=issue_counts.get(repository.id, 0),
            deleted_count=deleted_counts.get(repository.id, 0),
        )
        for repository in repositories
    ]
