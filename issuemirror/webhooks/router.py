"""Dispatch of webhook deliveries to event handlers"""

import logging
from typing import Any, Dict, Optional, Type

from sqlalchemy.orm import Session

from issuemirror.services.embeddings import IssueEmbeddingGenerator
from issuemirror.services.notifier import IssueUpdateNotifier
from issuemirror.webhooks.handlers import (
    IssueCommentEventHandler,
    IssueEventHandler,
    LabelEventHandler,
    RepositoryEventHandler,
    WebhookEventHandler,
)
from issuemirror.webhooks.payloads import WebhookResult

logger = logging.getLogger(__name__)

# X-GitHub-Event header value -> handler
EVENT_HANDLERS: Dict[str, Type[WebhookEventHandler]] = {
    "issues": IssueEventHandler,
    "issue_comment": IssueCommentEventHandler,
    "repository": RepositoryEventHandler,
    "label": LabelEventHandler,
}


class WebhookRouter:
    """Routes a delivery to the handler for its event category"""

    def __init__(
        self,
        db: Session,
        embedding_generator: Optional[IssueEmbeddingGenerator] = None,
        notifier: Optional[IssueUpdateNotifier] = None,
    ):
        self.handlers: Dict[str, WebhookEventHandler] = {
            event_name: handler_cls(db, embedding_generator, notifier)
            for event_name, handler_cls in EVENT_HANDLERS.items()
        }

    def dispatch(self, event_name: Optional[str], payload: Dict[str, Any]) -> WebhookResult:
        """Raises pydantic.ValidationError for malformed payloads."""
        if event_name == "ping":
            return WebhookResult.ok("Pong")

        handler = self.handlers.get(event_name or "")
        if handler is None:
            logger.info(f"Ignoring webhook event '{event_name}'")
            return WebhookResult.ok("Ignored event")

        result = handler.handle(payload)
        log = logger.info if result.success else logger.warning
        log(
            f"Webhook {event_name}/{payload.get('action')} for "
            f"{result.repository_full_name or '?'}: {result.message}"
        )
        return result
