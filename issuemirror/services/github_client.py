"""GitHub REST API client"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from issuemirror.config import settings
from issuemirror.services.cancellation import raise_if_cancelled

logger = logging.getLogger(__name__)


class GitHubClientError(Exception):
    """Raised when a GitHub API request fails (non-2xx status or transport error)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def normalize_utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to UTC tz-naive (safe for comparisons and the DB)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_github_datetime(value: str) -> datetime:
    """Parse GitHub ISO8601 timestamps into UTC tz-naive datetimes."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return normalize_utc_naive(dt)


def format_github_datetime(dt: datetime) -> str:
    """Format a datetime the way the `since` query parameter expects it."""
    return normalize_utc_naive(dt).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class RemoteLabel:
    name: str
    color: str = "ededed"


@dataclass(frozen=True)
class RemoteIssue:
    number: int
    title: str
    body: Optional[str]
    state: str
    html_url: str
    updated_at: datetime
    parent_issue_url: Optional[str] = None
    labels: tuple = ()  # tuple[RemoteLabel, ...]
    is_pull_request: bool = False
    comments: int = 0

    @property
    def is_open(self) -> bool:
        return self.state.lower() == "open"

    @property
    def label_names(self) -> List[str]:
        return [label.name for label in self.labels]


@dataclass(frozen=True)
class RemoteEvent:
    github_event_id: int
    issue_number: int
    event_type: str
    created_at: datetime


@dataclass(frozen=True)
class RemoteRepository:
    github_id: int
    full_name: str
    html_url: str


def _parse_label(data: Dict[str, Any]) -> Optional[RemoteLabel]:
    name = data.get("name")
    if not name:
        return None
    return RemoteLabel(name=name, color=data.get("color") or "ededed")


def _parse_issue(data: Dict[str, Any]) -> RemoteIssue:
    body = data.get("body")
    labels = []
    for raw in data.get("labels") or []:
        label = _parse_label(raw) if isinstance(raw, dict) else RemoteLabel(name=str(raw))
        if label is not None:
            labels.append(label)
    return RemoteIssue(
        number=int(data["number"]),
        title=data.get("title") or "",
        body=body if isinstance(body, str) else None,
        state=data.get("state") or "open",
        html_url=data.get("html_url") or "",
        updated_at=parse_github_datetime(data["updated_at"]),
        parent_issue_url=data.get("parent_issue_url") or None,
        labels=tuple(labels),
        is_pull_request="pull_request" in data,
        comments=int(data.get("comments") or 0),
    )


def _parse_repository(data: Dict[str, Any]) -> RemoteRepository:
    return RemoteRepository(
        github_id=int(data["id"]),
        full_name=data["full_name"],
        html_url=data.get("html_url") or "",
    )


class GitHubClient:
    """Paginated fetchers against the GitHub REST API.

    Stateless with respect to local storage. Every non-success response is a
    hard failure for the current fetch; nothing is retried here.
    """

    API_VERSION = "2022-11-28"

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        page_size: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize GitHub client"""
        self.base_url = (base_url or settings.github_api_url).rstrip("/") + "/"
        self.page_size = page_size or settings.github_api_page_size
        # Number of HTTP requests issued; used for sync statistics.
        self.request_count = 0

        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": self.API_VERSION,
            "User-Agent": "issuemirror-sync/1.0",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._http = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(30.0, connect=5.0),
            transport=transport,
        )

    @classmethod
    def from_settings(cls) -> "GitHubClient":
        return cls(token=settings.github_token)

    def close(self) -> None:
        self._http.close()

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a path and decode the JSON body, raising on any non-2xx status."""
        self.request_count += 1
        try:
            response = self._http.get(path, params=params)
        except httpx.HTTPError as e:
            raise GitHubClientError(f"GET {path} failed: {e}") from e
        if not response.is_success:
            raise GitHubClientError(
                f"GET {path} failed: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response.json()

    def _paginate(
        self,
        path: str,
        params: Dict[str, Any],
        parse: Callable[[Dict[str, Any]], Any],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Any]:
        """Fetch pages sequentially until an empty or short page is returned."""
        items: List[Any] = []
        page = 1
        while True:
            raise_if_cancelled(cancel_event)
            logger.debug(f"Fetching {path} page {page}")
            raw_page = self._get_json(path, {**params, "per_page": self.page_size, "page": page})
            if not raw_page:
                break
            for raw in raw_page:
                item = parse(raw)
                if item is not None:
                    items.append(item)
            if len(raw_page) < self.page_size:
                break
            page += 1
        return items

    def fetch_issues(
        self,
        owner: str,
        name: str,
        since: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[RemoteIssue]:
        """Fetch all issues (and pull requests) of a repository, optionally updated since a cutoff."""
        mode = f"incremental since {since.isoformat()}" if since else "full"
        logger.info(f"Fetching issues for {owner}/{name} ({mode})")

        params: Dict[str, Any] = {"state": "all"}
        if since is not None:
            params["since"] = format_github_datetime(since)

        issues = self._paginate(f"repos/{owner}/{name}/issues", params, _parse_issue, cancel_event)
        if since is not None:
            # `since` is inclusive: keep issues updated at or after the cutoff.
            cutoff = normalize_utc_naive(since)
            issues = [i for i in issues if i.updated_at >= cutoff]

        logger.info(
            f"Found {len(issues)} {'changed' if since else 'total'} issues for {owner}/{name}"
        )
        return issues

    def fetch_issue_comments(
        self,
        owner: str,
        name: str,
        number: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[str]:
        """Fetch comment bodies for an issue in chronological order."""

        def _body(raw: Dict[str, Any]) -> Optional[str]:
            body = raw.get("body")
            if isinstance(body, str) and body.strip():
                return body
            return None

        comments = self._paginate(
            f"repos/{owner}/{name}/issues/{int(number)}/comments", {}, _body, cancel_event
        )
        logger.debug(f"Fetched {len(comments)} comments for issue #{number}")
        return comments

    def fetch_labels(
        self,
        owner: str,
        name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[RemoteLabel]:
        """Fetch all labels defined in a repository."""
        return self._paginate(f"repos/{owner}/{name}/labels", {}, _parse_label, cancel_event)

    def fetch_events(
        self,
        owner: str,
        name: str,
        since: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[RemoteEvent]:
        """Fetch the repository's issue event timeline.

        GitHub returns events newest first. With a `since` cutoff, fetching stops
        at the first event older than the cutoff.
        """
        logger.info(f"Fetching events for {owner}/{name} ({'incremental' if since else 'full'})")
        cutoff = normalize_utc_naive(since)
        path = f"repos/{owner}/{name}/issues/events"

        events: List[RemoteEvent] = []
        page = 1
        while True:
            raise_if_cancelled(cancel_event)
            raw_page = self._get_json(path, {"per_page": self.page_size, "page": page})
            for raw in raw_page:
                created_at = parse_github_datetime(raw["created_at"])
                if cutoff is not None and created_at < cutoff:
                    logger.debug(f"Stopping at event from {created_at} (before {cutoff})")
                    logger.info(f"Found {len(events)} events for {owner}/{name}")
                    return events

                issue = raw.get("issue")
                if not issue:
                    continue
                events.append(
                    RemoteEvent(
                        github_event_id=int(raw["id"]),
                        issue_number=int(issue["number"]),
                        event_type=raw.get("event") or "",
                        created_at=created_at,
                    )
                )
            if len(raw_page) < self.page_size:
                break
            page += 1

        logger.info(f"Found {len(events)} events for {owner}/{name}")
        return events

    def fetch_repositories_for_owner(
        self,
        owner: str,
        owner_type: str = "user",
        include_archived: bool = False,
        include_forks: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[str]:
        """Discover "Owner/Repo" names with issues enabled for a user or organization."""
        if owner_type.lower() == "org":
            path, params = f"orgs/{owner}/repos", {}
        else:
            path, params = f"users/{owner}/repos", {"type": "all"}

        def _full_name(raw: Dict[str, Any]) -> Optional[str]:
            full_name = raw.get("full_name")
            if not full_name:
                return None
            if raw.get("has_issues") is False:
                logger.debug(f"Skipping {full_name}: has_issues=false")
                return None
            if not include_archived and raw.get("archived"):
                logger.debug(f"Skipping {full_name}: archived")
                return None
            if not include_forks and raw.get("fork"):
                logger.debug(f"Skipping {full_name}: fork")
                return None
            return full_name

        repositories = self._paginate(path, params, _full_name, cancel_event)
        logger.info(f"Discovered {len(repositories)} repositories for {owner}")
        return repositories

    def get_repository(self, owner: str, name: str) -> RemoteRepository:
        """Get a single repository's identity."""
        return _parse_repository(self._get_json(f"repos/{owner}/{name}"))
