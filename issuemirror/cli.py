"""Command line interface.

Usage:
    issuemirror sync                                  full sync, all repositories
    issuemirror sync --smart                          auto-incremental via stored watermark
    issuemirror sync --repo Owner/Repo [--repo ...]   scope to named repositories
    issuemirror sync --since 2024-01-01T00:00:00Z     incremental since an explicit timestamp
    issuemirror analyze --repo Owner/Repo             dry run, no writes
    issuemirror serve                                 run the webhook/API server
"""

import argparse
import logging
import signal
import sys
import threading
from datetime import datetime
from typing import List, Optional

from issuemirror.config import settings
from issuemirror.services.cancellation import SyncCancelled
from issuemirror.services.github_client import parse_github_datetime

logger = logging.getLogger("issuemirror.cli")


def _since_type(value: str) -> datetime:
    try:
        return parse_github_datetime(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"invalid timestamp '{value}' (expected ISO-8601, e.g. 2024-01-01T00:00:00Z)"
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="issuemirror", description="Mirror GitHub issues into a local database"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Synchronize issues from GitHub")
    sync_parser.add_argument(
        "--repo",
        action="append",
        dest="repositories",
        metavar="OWNER/REPO",
        help="Repository to sync (repeatable). Defaults to the configured repositories.",
    )
    mode = sync_parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--smart",
        action="store_true",
        help="Incremental sync since each repository's last successful sync",
    )
    mode.add_argument(
        "--since",
        type=_since_type,
        metavar="TIMESTAMP",
        help="Incremental sync of issues updated at or after this ISO-8601 timestamp",
    )

    analyze_parser = subparsers.add_parser("analyze", help="Show what a sync would change")
    analyze_parser.add_argument("--repo", required=True, metavar="OWNER/REPO")
    analyze_mode = analyze_parser.add_mutually_exclusive_group()
    analyze_mode.add_argument("--smart", action="store_true")
    analyze_mode.add_argument("--since", type=_since_type, metavar="TIMESTAMP")

    subparsers.add_parser("serve", help="Run the webhook and API server")
    return parser


def _configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _install_cancel_handler(cancel_event: threading.Event):
    """First Ctrl-C requests a cooperative stop; the second one interrupts."""

    def _handler(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        print("Cancelling after the current issue... (press Ctrl-C again to abort)", file=sys.stderr)
        cancel_event.set()

    return signal.signal(signal.SIGINT, _handler)


def _print_statistics(stats) -> None:
    print("Sync finished")
    print(f"  API calls:          {stats.api_calls}")
    print(f"  Issues found:       {stats.total_found}")
    print(f"  Created:            {stats.created}")
    print(f"  Updated:            {stats.updated}")
    print(f"  Unchanged:          {stats.unchanged}")
    print(f"  Deleted:            {stats.deleted}")
    print(f"  Stale (skipped):    {stats.stale}")
    print(f"  Embedding failures: {stats.embeddings_failed}")
    print(f"  New events:         {stats.events_created}")
    if stats.since_timestamp:
        print(f"  Since:              {stats.since_timestamp.isoformat()}")
    if stats.failed_repositories:
        print(f"  Failed:             {', '.join(stats.failed_repositories)}")


def _run_sync(args, parser: argparse.ArgumentParser) -> int:
    from issuemirror.models.base import SessionLocal, init_db
    from issuemirror.services.github_client import GitHubClient
    from issuemirror.services.sync_service import SyncService, parse_repository_name

    # Validate everything before touching the network.
    for full_name in args.repositories or []:
        try:
            parse_repository_name(full_name)
        except ValueError as e:
            parser.error(str(e))

    init_db()
    db = SessionLocal()
    client = GitHubClient.from_settings()
    service = SyncService(db, client)
    cancel_event = threading.Event()
    previous_handler = _install_cancel_handler(cancel_event)
    try:
        if args.repositories:
            stats = service.sync_repositories(
                args.repositories, since=args.since, smart=args.smart, cancel_event=cancel_event
            )
        else:
            stats = service.sync_all_repositories(
                since=args.since, smart=args.smart, cancel_event=cancel_event
            )
    except SyncCancelled:
        logger.warning("Sync cancelled")
        return 1
    except Exception as e:
        logger.error(f"Sync failed: {e}")
        return 1
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        service.close()
        client.close()
        db.close()

    _print_statistics(stats)
    return 0 if stats.success else 1


def _run_analyze(args, parser: argparse.ArgumentParser) -> int:
    from issuemirror.models.base import SessionLocal, init_db
    from issuemirror.services.github_client import GitHubClient
    from issuemirror.services.sync_service import SyncService, parse_repository_name

    try:
        owner, name = parse_repository_name(args.repo)
    except ValueError as e:
        parser.error(str(e))

    init_db()
    db = SessionLocal()
    client = GitHubClient.from_settings()
    service = SyncService(db, client)
    try:
        result = service.analyze_repository(owner, name, since=args.since, smart=args.smart)
    except Exception as e:
        logger.error(f"Analysis failed: {e}")
        return 1
    finally:
        service.close()
        client.close()
        db.close()

    for key, value in result.items():
        print(f"{key}: {value}")
    return 0


def _run_serve() -> int:
    import uvicorn

    uvicorn.run(
        "issuemirror.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging()

    if args.command == "sync":
        return _run_sync(args, parser)
    if args.command == "analyze":
        return _run_analyze(args, parser)
    return _run_serve()


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
