import unittest
from datetime import datetime, timedelta
from types import SimpleNamespace

T = datetime(2024, 5, 1, 12, 0, 0)


def _remote(number, updated_at=T, pr=False):
    from issuemirror.services.github_client import RemoteIssue

    return RemoteIssue(
        number=number,
        title=f"Issue {number}",
        body=None,
        state="open",
        html_url=f"https://github.com/acme/widgets/issues/{number}",
        updated_at=updated_at,
        is_pull_request=pr,
    )


def _local(number, updated_at=T, is_deleted=False):
    return SimpleNamespace(number=number, github_updated_at=updated_at, is_deleted=is_deleted)


class DiffIssuesTests(unittest.TestCase):
    def test_classifies_new_changed_unchanged(self):
        from issuemirror.services.differ import diff_issues

        local = {1: _local(1), 2: _local(2)}
        remote = [_remote(1), _remote(2, T + timedelta(minutes=5)), _remote(3)]

        diff = diff_issues(remote, local, full_listing=False)

        self.assertEqual([r.number for r in diff.new], [3])
        self.assertEqual([r.number for r in diff.changed], [2])
        self.assertEqual([r.number for r in diff.unchanged], [1])
        self.assertEqual(diff.deleted, [])
        self.assertEqual([r.number for r in diff.to_write], [3, 2])

    def test_full_listing_infers_deletions(self):
        from issuemirror.services.differ import diff_issues

        local = {1: _local(1), 2: _local(2), 3: _local(3)}

        diff = diff_issues([_remote(1), _remote(2)], local, full_listing=True)

        self.assertEqual([i.number for i in diff.deleted], [3])
        self.assertEqual(len(diff.unchanged), 2)

    def test_incremental_listing_never_deletes(self):
        from issuemirror.services.differ import diff_issues

        local = {1: _local(1), 3: _local(3)}

        diff = diff_issues([_remote(1)], local, full_listing=False)

        self.assertEqual(diff.deleted, [])

    def test_already_deleted_rows_are_not_deleted_again(self):
        from issuemirror.services.differ import diff_issues

        local = {1: _local(1), 3: _local(3, is_deleted=True)}

        diff = diff_issues([_remote(1)], local, full_listing=True)

        self.assertEqual(diff.deleted, [])

    def test_pull_requests_are_skipped(self):
        from issuemirror.services.differ import diff_issues

        local = {5: _local(5)}

        diff = diff_issues([_remote(4, pr=True), _remote(5, pr=True)], local, full_listing=True)

        self.assertEqual(diff.new, [])
        self.assertEqual(diff.pull_requests_skipped, 2)
        # A pull request is not an issue listing entry, so #5 counts as missing.
        self.assertEqual([i.number for i in diff.deleted], [5])

    def test_soft_deleted_row_reported_live_is_changed(self):
        from issuemirror.services.differ import diff_issues

        local = {1: _local(1, is_deleted=True)}

        diff = diff_issues([_remote(1)], local, full_listing=True)

        self.assertEqual([r.number for r in diff.changed], [1])


if __name__ == "__main__":
    unittest.main()
