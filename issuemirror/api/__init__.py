"""API routes"""

from issuemirror.api import sync, webhooks

__all__ = ["sync", "webhooks"]
