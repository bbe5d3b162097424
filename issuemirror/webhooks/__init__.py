"""GitHub webhook ingestion"""

from issuemirror.webhooks.payloads import WebhookResult
from issuemirror.webhooks.router import WebhookRouter

__all__ = ["WebhookResult", "WebhookRouter"]
