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


def _fields(number=1, updated_at=T, title="Crash on save", body="Steps"):
    from issuemirror.services.store import IssueFields

    return IssueFields(
        number=number,
        title=title,
        body=body,
        is_open=True,
        url=f"https://github.com/acme/widgets/issues/{number}",
        github_updated_at=updated_at,
    )


class IssueStoreUpsertTests(unittest.TestCase):
    def setUp(self):
        from issuemirror.services.store import IssueStore

        self.db = _memory_session()
        self.store = IssueStore(self.db)
        self.repo = self.store.ensure_repository(1, "acme/widgets", "https://github.com/acme/widgets")

    def tearDown(self):
        self.db.close()

    def test_ensure_repository_is_idempotent(self):
        again = self.store.ensure_repository(1, "acme/widgets", "https://github.com/acme/widgets")
        self.assertEqual(again.id, self.repo.id)

    def test_upsert_creates_then_updates_same_row(self):
        from issuemirror.services.store import UPSERT_CREATED, UPSERT_UPDATED

        self.assertEqual(self.store.upsert_issue(self.repo.id, _fields()), UPSERT_CREATED)
        first_id = self.store.get_issue(self.repo.id, 1).id

        result = self.store.upsert_issue(
            self.repo.id, _fields(updated_at=T + timedelta(hours=1), title="Crash on save (v2)")
        )

        self.assertEqual(result, UPSERT_UPDATED)
        issue = self.store.get_issue(self.repo.id, 1)
        self.assertEqual(issue.id, first_id)
        self.assertEqual(issue.title, "Crash on save (v2)")
        self.assertEqual(len(self.store.issues_by_number(self.repo.id)), 1)

    def test_upsert_with_same_input_twice_is_idempotent(self):
        self.store.upsert_issue(self.repo.id, _fields())
        self.store.upsert_issue(self.repo.id, _fields())

        rows = self.store.issues_by_number(self.repo.id)
        self.assertEqual(list(rows), [1])
        self.assertEqual(rows[1].github_updated_at, T)

    def test_older_remote_timestamp_is_refused(self):
        from issuemirror.services.store import UPSERT_STALE

        self.store.upsert_issue(self.repo.id, _fields(updated_at=T + timedelta(hours=1), title="New"))

        result = self.store.upsert_issue(self.repo.id, _fields(updated_at=T, title="Old"))

        self.assertEqual(result, UPSERT_STALE)
        issue = self.store.get_issue(self.repo.id, 1)
        self.assertEqual(issue.title, "New")
        self.assertEqual(issue.github_updated_at, T + timedelta(hours=1))

    def test_upsert_clears_soft_delete(self):
        self.store.upsert_issue(self.repo.id, _fields())
        self.store.soft_delete(self.store.get_issue(self.repo.id, 1))

        self.store.upsert_issue(self.repo.id, _fields(updated_at=T + timedelta(minutes=1)))

        self.assertFalse(self.store.get_issue(self.repo.id, 1).is_deleted)

    def test_soft_delete_is_idempotent(self):
        self.store.upsert_issue(self.repo.id, _fields())
        issue = self.store.get_issue(self.repo.id, 1)

        self.assertTrue(self.store.soft_delete(issue))
        self.assertFalse(self.store.soft_delete(issue))
        self.assertTrue(self.store.get_issue(self.repo.id, 1).is_deleted)

    def test_set_state_respects_timestamp(self):
        self.store.upsert_issue(self.repo.id, _fields(updated_at=T))
        issue = self.store.get_issue(self.repo.id, 1)

        self.assertTrue(self.store.set_state(issue, False, T + timedelta(minutes=1)))
        self.assertFalse(self.store.set_state(issue, True, T))
        self.assertFalse(self.store.get_issue(self.repo.id, 1).is_open)


class IssueStoreLabelTests(unittest.TestCase):
    def setUp(self):
        from issuemirror.services.store import IssueStore

        self.db = _memory_session()
        self.store = IssueStore(self.db)
        self.repo = self.store.ensure_repository(1, "acme/widgets", "")
        self.store.upsert_issue(self.repo.id, _fields(number=7))

    def tearDown(self):
        self.db.close()

    def _issue(self):
        return self.store.get_issue(self.repo.id, 7)

    def test_replace_labels_replaces_whole_set(self):
        self.store.replace_labels(self._issue(), ["bug", "urgent"])
        self.assertEqual(self._issue().label_names, ["bug", "urgent"])

        self.store.replace_labels(self._issue(), ["docs"])
        self.assertEqual(self._issue().label_names, ["docs"])

    def test_upsert_label_updates_color(self):
        self.store.upsert_label(self.repo.id, "bug", "ff0000")
        label = self.store.upsert_label(self.repo.id, "bug", "00ff00")
        self.assertEqual(label.color, "00ff00")

    def test_replace_labels_if_current_refuses_older_delivery(self):
        newer = T + timedelta(minutes=2)
        self.assertEqual(
            self.store.replace_labels_if_current(self._issue(), ["bug"], newer), ["bug"]
        )

        result = self.store.replace_labels_if_current(
            self._issue(), ["bug", "urgent"], T + timedelta(minutes=1)
        )

        self.assertIsNone(result)
        self.assertEqual(self._issue().label_names, ["bug"])

    def test_delete_label_removes_associations(self):
        self.store.replace_labels(self._issue(), ["bug", "urgent"])

        self.assertTrue(self.store.delete_label(self.repo.id, "urgent"))
        self.assertFalse(self.store.delete_label(self.repo.id, "urgent"))
        self.assertEqual(self._issue().label_names, ["bug"])


class IssueStoreEventTests(unittest.TestCase):
    def test_add_events_falls_back_to_row_by_row_on_duplicates(self):
        from issuemirror.models import IssueEvent
        from issuemirror.services.store import IssueStore

        db = _memory_session()
        store = IssueStore(db)
        repo = store.ensure_repository(1, "acme/widgets", "")
        store.upsert_issue(repo.id, _fields(number=1))
        issue_id = store.get_issue(repo.id, 1).id
        closed_id = store.event_type_ids()["closed"]

        def _row(event_id):
            return IssueEvent(
                issue_id=issue_id, event_type_id=closed_id, github_event_id=event_id, created_at=T
            )

        self.assertEqual(store.add_events([_row(100)]), 1)
        # 100 is already stored: the batch fails and only 101 is inserted.
        self.assertEqual(store.add_events([_row(100), _row(101)]), 1)
        self.assertEqual(store.existing_event_ids(repo.id), {100, 101})
        db.close()


if __name__ == "__main__":
    unittest.main()
