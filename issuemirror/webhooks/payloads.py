"""GitHub webhook payload models"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class WebhookLabel(BaseModel):
    name: str
    color: Optional[str] = None


class WebhookRepository(BaseModel):
    id: int
    full_name: str
    html_url: str = ""


class WebhookIssue(BaseModel):
    number: int
    title: str = ""
    body: Optional[str] = None
    state: str = "open"
    html_url: str = ""
    updated_at: datetime
    comments: int = 0
    labels: List[WebhookLabel] = []
    # Present only when the "issue" is a pull request.
    pull_request: Optional[Dict[str, Any]] = None

    @property
    def is_pull_request(self) -> bool:
        return self.pull_request is not None

    @property
    def is_open(self) -> bool:
        return self.state.lower() == "open"

    @property
    def label_names(self) -> List[str]:
        return [label.name for label in self.labels]


class WebhookComment(BaseModel):
    id: int
    body: Optional[str] = None


class ChangedValue(BaseModel):
    previous: Optional[str] = Field(default=None, alias="from")


class LabelChanges(BaseModel):
    name: Optional[ChangedValue] = None
    color: Optional[ChangedValue] = None


class IssuesEventPayload(BaseModel):
    action: str
    issue: WebhookIssue
    repository: WebhookRepository


class IssueCommentEventPayload(BaseModel):
    action: str
    issue: WebhookIssue
    repository: WebhookRepository
    comment: Optional[WebhookComment] = None


class LabelEventPayload(BaseModel):
    action: str
    label: WebhookLabel
    repository: WebhookRepository
    changes: Optional[LabelChanges] = None

    @property
    def previous_name(self) -> Optional[str]:
        if self.changes and self.changes.name:
            return self.changes.name.previous
        return None


class RepositoryEventPayload(BaseModel):
    action: str
    repository: WebhookRepository


class WebhookResult(BaseModel):
    """Outcome of processing one webhook delivery"""

    success: bool
    message: str
    issue_number: Optional[int] = None
    issue_title: Optional[str] = None
    repository_full_name: Optional[str] = None
    embedding_generated: bool = False

    @classmethod
    def ok(cls, message: str, **kwargs) -> "WebhookResult":
        return cls(success=True, message=message, **kwargs)

    @classmethod
    def fail(cls, message: str, **kwargs) -> "WebhookResult":
        return cls(success=False, message=message, **kwargs)
