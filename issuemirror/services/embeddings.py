"""Embedding text building and generation"""

import hashlib
import logging
from typing import List, Optional, Sequence

import httpx

from issuemirror.config import settings
from issuemirror.services.cancellation import SyncCancelled
from issuemirror.services.github_client import GitHubClient, GitHubClientError

logger = logging.getLogger(__name__)


def compute_content_hash(title: Optional[str], body: Optional[str]) -> str:
    """Hash of the issue content an embedding is derived from."""
    raw = f"{title or ''}\x00{body or ''}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def build_embedding_text(
    title: Optional[str],
    body: Optional[str] = None,
    label_names: Optional[Sequence[str]] = None,
    comments: Optional[Sequence[str]] = None,
    max_length: Optional[int] = None,
) -> str:
    """Join title, body, labels and comments into the text sent to the embedding model."""
    parts: List[str] = []
    if title and title.strip():
        parts.append(title.strip())
    if body and body.strip():
        parts.append(body.strip())
    if label_names:
        parts.append("Labels: " + ", ".join(label_names))

    comment_bodies = [c.strip() for c in comments or [] if c and c.strip()]
    if comment_bodies:
        parts.append("Comments:")
        parts.extend(f"---\n{c}" for c in comment_bodies)

    text = "\n\n".join(parts)
    limit = max_length if max_length is not None else settings.max_embedding_text_length
    if len(text) > limit:
        text = text[:limit]
    return text


class EmbeddingService:
    """Turns text into a vector. Returns None when no vector could be produced."""

    def generate(self, text: str) -> Optional[List[float]]:
        raise NotImplementedError


class OllamaEmbeddingService(EmbeddingService):
    """Embedding provider backed by an Ollama `/api/embeddings` endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or settings.embedding_url).rstrip("/")
        self.model = model or settings.embedding_model
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(60.0, connect=3.0),
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def generate(self, text: str) -> Optional[List[float]]:
        if not text or not text.strip():
            return None

        try:
            response = self._http.post(
                "/api/embeddings", json={"model": self.model, "prompt": text}
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to connect to embedding service at {self.base_url}: {e}")
            return None

        if not response.is_success:
            logger.warning(f"Embedding service returned HTTP {response.status_code}")
            return None

        try:
            payload = response.json()
        except ValueError as e:
            logger.warning(f"Embedding service returned invalid JSON: {e}")
            return None

        embedding = payload.get("embedding") if isinstance(payload, dict) else None
        if not embedding:
            logger.warning("Embedding response did not contain an embedding")
            return None
        return [float(v) for v in embedding]


class IssueEmbeddingGenerator:
    """Builds an issue's embedding text (with its comments) and generates the vector."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        github_client: Optional[GitHubClient] = None,
    ):
        self.embedding_service = embedding_service
        self.github_client = github_client

    def _fetch_comments(self, owner: str, name: str, number: int) -> List[str]:
        if self.github_client is None:
            return []
        try:
            return self.github_client.fetch_issue_comments(owner, name, number)
        except GitHubClientError as e:
            # Embed without comments rather than failing the issue.
            logger.warning(f"Failed to fetch comments for {owner}/{name}#{number}: {e}")
            return []

    def generate(
        self,
        owner: str,
        name: str,
        number: int,
        title: Optional[str],
        body: Optional[str],
        label_names: Optional[Sequence[str]] = None,
        include_comments: bool = True,
    ) -> Optional[List[float]]:
        comments = self._fetch_comments(owner, name, number) if include_comments else []
        text = build_embedding_text(title, body, label_names, comments)
        try:
            embedding = self.embedding_service.generate(text)
        except SyncCancelled:
            raise
        except Exception as e:
            logger.error(f"Embedding service failed for {owner}/{name}#{number}: {e}")
            return None
        if embedding is None:
            logger.warning(f"Embedding generation failed for {owner}/{name}#{number}")
        return embedding
