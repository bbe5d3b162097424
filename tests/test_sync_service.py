import threading
import unittest
from datetime import datetime, timedelta

T = datetime(2024, 5, 1, 12, 0, 0)


def _memory_session():
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker
    from sqlalchemy.pool import StaticPool

    from issuemirror.models.base import init_db

    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    init_db(engine)
    return sessionmaker(bind=engine)()


def _remote(number, updated_at=T, title=None, body="", labels=(), pr=False, parent=None, state="open"):
    from issuemirror.services.github_client import RemoteIssue, RemoteLabel

    return RemoteIssue(
        number=number,
        title=title or f"Issue {number}",
        body=body,
        state=state,
        html_url=f"https://github.com/acme/widgets/issues/{number}",
        updated_at=updated_at,
        parent_issue_url=parent,
        labels=tuple(RemoteLabel(name=n) for n in labels),
        is_pull_request=pr,
    )


class _FakeGitHubClient:
    def __init__(self, issues=None, labels=(), events=None, failing=()):
        self.issues = issues or {}
        self.labels = list(labels)
        self.events = events or {}
        self.failing = set(failing)
        self.request_count = 0
        self.fetch_issue_calls = []

    def get_repository(self, owner, name):
        from issuemirror.services.github_client import RemoteRepository

        self.request_count += 1
        return RemoteRepository(
            github_id=1000 + len(name), full_name=f"{owner}/{name}", html_url=f"https://github.com/{owner}/{name}"
        )

    def fetch_labels(self, owner, name, cancel_event=None):
        self.request_count += 1
        return list(self.labels)

    def fetch_issues(self, owner, name, since=None, cancel_event=None):
        from issuemirror.services.github_client import GitHubClientError

        self.request_count += 1
        full_name = f"{owner}/{name}"
        self.fetch_issue_calls.append((full_name, since))
        if full_name in self.failing:
            raise GitHubClientError("GET issues failed: HTTP 502", status_code=502)
        return [i for i in self.issues.get(full_name, []) if since is None or i.updated_at >= since]

    def fetch_events(self, owner, name, since=None, cancel_event=None):
        self.request_count += 1
        return list(self.events.get(f"{owner}/{name}", []))

    def fetch_issue_comments(self, owner, name, number, cancel_event=None):
        return []


class _FakeEmbeddingGenerator:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def generate(self, owner, name, number, title, body, label_names=None, include_comments=True):
        self.calls.append(number)
        return None if self.fail else [0.1, 0.2, 0.3]


class SyncServiceTestCase(unittest.TestCase):
    def setUp(self):
        self.db = _memory_session()

    def tearDown(self):
        self.db.close()

    def _service(self, client, generator=None, notifier=None):
        from issuemirror.services.sync_service import SyncService

        self.generator = generator or _FakeEmbeddingGenerator()
        return SyncService(self.db, client, self.generator, notifier)

    def _seed(self, numbers, updated_at=T, full_name="acme/widgets"):
        from issuemirror.services.embeddings import compute_content_hash
        from issuemirror.services.store import IssueFields, IssueStore

        store = IssueStore(self.db)
        repo = store.ensure_repository(1, full_name, f"https://github.com/{full_name}")
        for number in numbers:
            store.upsert_issue(
                repo.id,
                IssueFields(
                    number=number,
                    title=f"Issue {number}",
                    body="",
                    is_open=True,
                    url="",
                    github_updated_at=updated_at,
                ),
            )
            store.set_embedding(
                store.get_issue(repo.id, number), [1.0], compute_content_hash(f"Issue {number}", "")
            )
        return repo

    def _issue(self, number, full_name="acme/widgets"):
        from issuemirror.services.store import IssueStore

        store = IssueStore(self.db)
        return store.get_issue(store.get_repository(full_name).id, number)


class FullSyncTests(SyncServiceTestCase):
    def test_missing_remote_issue_is_soft_deleted_and_matching_ones_untouched(self):
        repo = self._seed([1, 2, 3])
        client = _FakeGitHubClient(issues={"acme/widgets": [_remote(1), _remote(2)]})

        stats = self._service(client).sync_repository("acme", "widgets")

        self.assertEqual(stats.total_found, 2)
        self.assertEqual(stats.unchanged, 2)
        self.assertEqual(stats.created, 0)
        self.assertEqual(stats.updated, 0)
        self.assertEqual(stats.deleted, 1)
        self.assertTrue(self._issue(3).is_deleted)
        self.assertFalse(self._issue(1).is_deleted)
        self.assertFalse(self._issue(2).is_deleted)
        self.assertEqual(self.generator.calls, [])
        self.assertIsNotNone(repo.last_synced_at)
        # labels + issues + events; the repository row already existed.
        self.assertEqual(stats.api_calls, 3)

    def test_new_issue_is_created_with_labels_and_embedding(self):
        client = _FakeGitHubClient(
            issues={"acme/widgets": [_remote(1, body="Steps", labels=("bug",)), _remote(2, pr=True)]}
        )

        stats = self._service(client).sync_repository("acme", "widgets")

        self.assertEqual(stats.created, 1)
        self.assertEqual(stats.total_found, 1)
        issue = self._issue(1)
        self.assertEqual(issue.label_names, ["bug"])
        self.assertEqual(issue.embedding, [0.1, 0.2, 0.3])
        self.assertIsNone(self._issue(2))
        # The repository row is created lazily from the remote identity.
        self.assertEqual(issue.repository.full_name, "acme/widgets")

    def test_label_only_change_reuses_embedding(self):
        self._seed([1])
        client = _FakeGitHubClient(
            issues={"acme/widgets": [_remote(1, updated_at=T + timedelta(hours=1), labels=("bug",))]}
        )

        stats = self._service(client).sync_repository("acme", "widgets")

        self.assertEqual(stats.updated, 1)
        self.assertEqual(self.generator.calls, [])
        self.assertEqual(self._issue(1).embedding, [1.0])
        self.assertEqual(self._issue(1).label_names, ["bug"])

    def test_content_change_regenerates_embedding(self):
        from issuemirror.services.embeddings import compute_content_hash

        self._seed([1])
        client = _FakeGitHubClient(
            issues={"acme/widgets": [_remote(1, updated_at=T + timedelta(hours=1), title="Renamed")]}
        )

        self._service(client).sync_repository("acme", "widgets")

        issue = self._issue(1)
        self.assertEqual(self.generator.calls, [1])
        self.assertEqual(issue.title, "Renamed")
        self.assertEqual(issue.content_hash, compute_content_hash("Renamed", ""))

    def test_embedding_failure_is_tolerated(self):
        client = _FakeGitHubClient(issues={"acme/widgets": [_remote(1)]})

        stats = self._service(client, _FakeEmbeddingGenerator(fail=True)).sync_repository(
            "acme", "widgets"
        )

        self.assertEqual(stats.created, 1)
        self.assertEqual(stats.embeddings_failed, 1)
        self.assertIsNone(self._issue(1).embedding)
        self.assertIsNotNone(self._issue(1).repository.last_synced_at)

    def test_raising_embedding_provider_is_tolerated(self):
        from issuemirror.services.embeddings import EmbeddingService, IssueEmbeddingGenerator

        class _BrokenProvider(EmbeddingService):
            def generate(self, text):
                raise RuntimeError("provider down")

        client = _FakeGitHubClient(issues={"acme/widgets": [_remote(1)]})
        generator = IssueEmbeddingGenerator(_BrokenProvider(), client)

        stats = self._service(client, generator).sync_repository("acme", "widgets")

        self.assertTrue(stats.success)
        self.assertEqual(stats.created, 1)
        self.assertEqual(stats.embeddings_failed, 1)
        self.assertIsNone(self._issue(1).embedding)
        self.assertIsNotNone(self._issue(1).repository.last_synced_at)

    def test_older_remote_state_is_counted_stale(self):
        self._seed([1], updated_at=T + timedelta(hours=2))
        client = _FakeGitHubClient(
            issues={"acme/widgets": [_remote(1, updated_at=T + timedelta(hours=1), title="Older")]}
        )

        stats = self._service(client).sync_repository("acme", "widgets")

        self.assertEqual(stats.stale, 1)
        self.assertEqual(stats.updated, 0)
        self.assertEqual(self._issue(1).title, "Issue 1")

    def test_parent_links_resolved_after_all_issues_written(self):
        parent_url = "https://api.github.com/repos/acme/widgets/issues/4"
        client = _FakeGitHubClient(
            issues={"acme/widgets": [_remote(5, parent=parent_url), _remote(4)]}
        )

        self._service(client).sync_repository("acme", "widgets")

        self.assertEqual(self._issue(5).parent_issue_id, self._issue(4).id)
        self.assertIsNone(self._issue(4).parent_issue_id)

    def test_events_are_synced_for_mirrored_issues(self):
        from issuemirror.services.github_client import RemoteEvent

        client = _FakeGitHubClient(
            issues={"acme/widgets": [_remote(1)]},
            events={
                "acme/widgets": [
                    RemoteEvent(github_event_id=11, issue_number=1, event_type="closed", created_at=T),
                    RemoteEvent(github_event_id=12, issue_number=99, event_type="closed", created_at=T),
                ]
            },
        )

        stats = self._service(client).sync_repository("acme", "widgets")

        self.assertEqual(stats.events_created, 1)

    def test_notifier_failure_does_not_fail_sync(self):
        class _BrokenNotifier:
            def notify(self, update):
                raise RuntimeError("push channel down")

        client = _FakeGitHubClient(issues={"acme/widgets": [_remote(1)]})

        stats = self._service(client, notifier=_BrokenNotifier()).sync_repository("acme", "widgets")

        self.assertEqual(stats.created, 1)


class IncrementalSyncTests(SyncServiceTestCase):
    def test_since_keeps_boundary_and_never_deletes(self):
        self._seed([9])
        client = _FakeGitHubClient(
            issues={
                "acme/widgets": [
                    _remote(1, updated_at=T - timedelta(seconds=1)),
                    _remote(2, updated_at=T),
                    _remote(3, updated_at=T + timedelta(seconds=1)),
                ]
            }
        )

        stats = self._service(client).sync_repository("acme", "widgets", since=T)

        self.assertEqual(client.fetch_issue_calls, [("acme/widgets", T)])
        self.assertEqual(stats.created, 2)
        self.assertEqual(stats.since_timestamp, T)
        self.assertIsNone(self._issue(1))
        self.assertFalse(self._issue(9).is_deleted)

    def test_smart_sync_uses_watermark(self):
        client = _FakeGitHubClient(issues={"acme/widgets": [_remote(1), _remote(2)]})
        service = self._service(client)

        first = service.sync_repository("acme", "widgets", smart=True)
        watermark = self._issue(1).repository.last_synced_at

        self.assertEqual(client.fetch_issue_calls[0], ("acme/widgets", None))
        self.assertIsNone(first.since_timestamp)
        self.assertEqual(first.created, 2)
        self.assertIsNotNone(watermark)

        second = service.sync_repository("acme", "widgets", smart=True)

        self.assertEqual(client.fetch_issue_calls[1], ("acme/widgets", watermark))
        self.assertEqual(second.created + second.updated, 0)
        self.assertEqual(second.deleted, 0)
        self.assertGreaterEqual(self._issue(1).repository.last_synced_at, watermark)

    def test_smart_and_since_are_mutually_exclusive(self):
        client = _FakeGitHubClient()

        with self.assertRaises(ValueError):
            self._service(client).sync_repository("acme", "widgets", since=T, smart=True)
        self.assertEqual(client.request_count, 0)


class MultiRepositorySyncTests(SyncServiceTestCase):
    def test_failing_repository_does_not_stop_the_others(self):
        client = _FakeGitHubClient(
            issues={"acme/widgets": [_remote(1)], "acme/gadgets": [_remote(1)]},
            failing={"acme/broken"},
        )

        stats = self._service(client).sync_repositories(["acme/widgets", "acme/broken", "acme/gadgets"])

        self.assertEqual(stats.failed_repositories, ["acme/broken"])
        self.assertFalse(stats.success)
        self.assertEqual(stats.created, 2)
        self.assertIsNotNone(self._issue(1, "acme/gadgets").repository.last_synced_at)

        from issuemirror.services.store import IssueStore

        broken = IssueStore(self.db).get_repository("acme/broken")
        self.assertIsNone(broken.last_synced_at)

    def test_invalid_repository_name_rejected_before_any_request(self):
        client = _FakeGitHubClient()

        with self.assertRaises(ValueError):
            self._service(client).sync_repositories(["acme/widgets", "not-a-repo"])
        self.assertEqual(client.request_count, 0)

    def test_cancellation_aborts_without_advancing_watermark(self):
        from issuemirror.services.cancellation import SyncCancelled

        class _CancellingClient(_FakeGitHubClient):
            def fetch_issues(self, owner, name, since=None, cancel_event=None):
                issues = super().fetch_issues(owner, name, since, cancel_event)
                cancel_event.set()
                return issues

        client = _CancellingClient(issues={"acme/widgets": [_remote(1)]})

        with self.assertRaises(SyncCancelled):
            self._service(client).sync_repositories(
                ["acme/widgets", "acme/gadgets"], cancel_event=threading.Event()
            )
        self.assertIsNone(self._issue(1))
        self.assertEqual(len(client.fetch_issue_calls), 1)

        from issuemirror.services.store import IssueStore

        self.assertIsNone(IssueStore(self.db).get_repository("acme/widgets").last_synced_at)

    def test_close_releases_default_embedding_provider(self):
        from unittest.mock import patch

        from issuemirror.services.sync_service import SyncService

        with patch("issuemirror.services.sync_service.OllamaEmbeddingService") as provider_cls:
            service = SyncService(self.db, _FakeGitHubClient())
            service.close()
            service.close()

        provider_cls.return_value.close.assert_called_once()

    def test_close_leaves_injected_generator_alone(self):
        generator = _FakeEmbeddingGenerator()
        service = self._service(_FakeGitHubClient(), generator)

        service.close()

        self.assertIs(service.embedding_generator, generator)

    def test_statistics_add(self):
        from issuemirror.services.sync_service import SyncStatistics

        total = SyncStatistics(api_calls=2, created=1)
        total.add(SyncStatistics(api_calls=3, updated=4, since_timestamp=T, failed_repositories=["a/b"]))

        self.assertEqual(total.api_calls, 5)
        self.assertEqual(total.created, 1)
        self.assertEqual(total.updated, 4)
        self.assertEqual(total.since_timestamp, T)
        self.assertEqual(total.to_dict()["failed_repositories"], ["a/b"])


class AnalyzeRepositoryTests(SyncServiceTestCase):
    def test_analyze_reports_counts_without_writing(self):
        self._seed([1, 3])
        client = _FakeGitHubClient(
            issues={"acme/widgets": [_remote(1), _remote(2)]}
        )

        result = self._service(client).analyze_repository("acme", "widgets")

        self.assertEqual(result["new"], 1)
        self.assertEqual(result["unchanged"], 1)
        self.assertEqual(result["would_delete"], 1)
        self.assertEqual(result["missing_embeddings"], 0)
        self.assertIsNone(self._issue(2))
        self.assertFalse(self._issue(3).is_deleted)


if __name__ == "__main__":
    unittest.main()
