import argparse
import json
from dataclasses import replace
from typing import Iterable, List, Optional

from . import __version__
from .cleanup import cleanup_jobs, sweep
from .config import load_settings
from .database import JobRecord, init_database
from .env import load_env
from .errors import NotFoundError, ValidationError
from .logger import get_logger
from .registry import JobRegistry


def _split_ids(value: Optional[str]) -> List[str]:
    return [i.strip() for i in value.split(",") if i.strip()] if value else []


def _print_job(job: JobRecord) -> None:
    print(json.dumps(job.to_dict(), indent=2))


def _print_jobs(jobs: Iterable[JobRecord]) -> None:
    jobs = list(jobs)
    if not jobs:
        print("No jobs found.")
        return
    print(f"Found {len(jobs)} jobs:\n")
    for job in jobs:
        print(f"ID: {job.id}")
        print(f"  Class: {job.job_class}")
        print(f"  State: {job.state.value}")
        print(f"  Target: {job.target_type.value}:{job.target_id}")
        print(f"  Principal: {job.principal_name}")
        print(f"  Updated: {job.updated.isoformat()}")
        print()


def build_registry(args: argparse.Namespace) -> JobRegistry:
    settings = load_settings()
    if getattr(args, "db", None):
        settings = replace(settings, database_url=args.db)
    logger = get_logger(level=settings.log_level, log_dir=settings.log_dir)
    return JobRegistry.from_settings(settings, logger=logger)


def cmd_initdb(args: argparse.Namespace) -> None:
    url = args.db or load_settings().database_url
    init_database(url)
    print(f"Initialized job database at {url}")


def cmd_submit(args: argparse.Namespace) -> None:
    registry = build_registry(args)
    data = {
        "id": args.id,
        "job_class": args.job_class,
        "job_group": args.group,
        "target_type": args.target_type,
        "target_id": args.target_id,
        "principal_name": args.principal,
    }
    try:
        job = registry.create(data)
    except ValidationError as e:
        print("Invalid:")
        for err in e.errors:
            print(f" - {err}")
        raise SystemExit(2)
    _print_job(job)


def cmd_show(args: argparse.Namespace) -> None:
    registry = build_registry(args)
    try:
        _print_job(registry.get(args.id))
    except NotFoundError as e:
        raise SystemExit(str(e))


def _transition_command(action: str):
    def run(args: argparse.Namespace) -> None:
        registry = build_registry(args)
        kwargs = {}
        if action in ("finish", "fail") and args.result is not None:
            kwargs["result"] = args.result
        try:
            job = getattr(registry, action)(args.id, **kwargs)
        except NotFoundError as e:
            raise SystemExit(f"{e} (unknown id, or the job cannot {action} from its current state)")
        _print_job(job)
    return run


def cmd_list(args: argparse.Namespace) -> None:
    registry = build_registry(args)
    if args.owner:
        jobs = registry.find_by_owner_key(args.owner)
    elif args.consumer:
        jobs = registry.find_by_consumer_uuid(args.consumer)
    elif args.principal:
        jobs = registry.find_by_principal_name(args.principal)
    elif args.canceled:
        jobs = registry.find_canceled_jobs(_split_ids(args.canceled))
    else:
        jobs = registry.find_waiting_jobs()
    _print_jobs(jobs)


def cmd_stats(args: argparse.Namespace) -> None:
    registry = build_registry(args)
    for state, count in registry.counts_by_state().items():
        print(f"{state:<10} {count}")


def cmd_reclaim(args: argparse.Namespace) -> None:
    registry = build_registry(args)
    count = registry.cancel_orphaned_jobs(
        _split_ids(args.active),
        stale_after_ms=args.stale_ms,
        job_group=args.group,
    )
    print(f"Canceled {count} orphaned jobs.")


def cmd_cleanup(args: argparse.Namespace) -> None:
    registry = build_registry(args)
    settings = load_settings()
    old_removed, failed_removed = cleanup_jobs(
        registry,
        days=args.days if args.days is not None else settings.retention_days,
        failed_days=(
            args.failed_days if args.failed_days is not None
            else settings.failed_retention_days
        ),
    )
    print(f"Removed {old_removed} finished/canceled jobs and {failed_removed} failed jobs.")


def cmd_sweep(args: argparse.Namespace) -> None:
    registry = build_registry(args)
    settings = load_settings()
    result = sweep(
        registry,
        _split_ids(args.active),
        days=settings.retention_days,
        failed_days=settings.failed_retention_days,
        stale_after_ms=args.stale_ms,
    )
    print(
        f"Done. orphans={result.orphans_canceled} old={result.old_removed} "
        f"failed={result.failed_removed}"
    )


def main(argv: Optional[List[str]] = None):
    # Load .env if present (JOBREGISTRY_DATABASE_URL, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="jobregistry", description="Job registry maintenance CLI")
    parser.add_argument("--version", action="store_true", help="Show version")

    db_parent = argparse.ArgumentParser(add_help=False)
    db_parent.add_argument("--db", help="Database URL (default: $JOBREGISTRY_DATABASE_URL or sqlite:///data/jobs.db)")

    subparsers = parser.add_subparsers(dest="command")
    ini = subparsers.add_parser("initdb", parents=[db_parent], help="Create the jobs table")
    ini.set_defaults(func=cmd_initdb)

    sub = subparsers.add_parser("submit", parents=[db_parent], help="Create a WAITING job")
    sub.add_argument("--job-class", required=True, help="Type of work, e.g. RefreshPoolsJob")
    sub.add_argument("--target-type", required=True, help="OWNER, CONSUMER or PRODUCT")
    sub.add_argument("--target-id", required=True, help="Key of the entity the job acts on")
    sub.add_argument("--principal", help="Submitting principal name")
    sub.add_argument("--group", help="Job group (default: async group)")
    sub.add_argument("--id", help="Explicit job id (default: generated)")
    sub.set_defaults(func=cmd_submit)

    shw = subparsers.add_parser("show", parents=[db_parent], help="Show a single job")
    shw.add_argument("--id", required=True, help="Job id")
    shw.set_defaults(func=cmd_show)

    for action, help_text in (
        ("cancel", "Cancel a WAITING or RUNNING job"),
        ("start", "Mark a WAITING job RUNNING"),
        ("finish", "Mark a RUNNING job FINISHED"),
        ("fail", "Mark a RUNNING job FAILED"),
    ):
        p = subparsers.add_parser(action, parents=[db_parent], help=help_text)
        p.add_argument("--id", required=True, help="Job id")
        if action in ("finish", "fail"):
            p.add_argument("--result", help="Result message")
        p.set_defaults(func=_transition_command(action))

    lst = subparsers.add_parser("list", parents=[db_parent], help="List jobs (default: WAITING jobs)")
    group = lst.add_mutually_exclusive_group()
    group.add_argument("--owner", help="Owner key")
    group.add_argument("--consumer", help="Consumer uuid")
    group.add_argument("--principal", help="Principal name")
    group.add_argument("--canceled", help="Comma-separated ids; show which of them are canceled")
    lst.set_defaults(func=cmd_list)

    sts = subparsers.add_parser("stats", parents=[db_parent], help="Count jobs per state")
    sts.set_defaults(func=cmd_stats)

    rec = subparsers.add_parser("reclaim", parents=[db_parent], help="Cancel orphaned jobs")
    rec.add_argument("--active", help="Comma-separated ids the scheduler still tracks")
    rec.add_argument("--stale-ms", type=int, help="Staleness threshold in milliseconds (default: 120000)")
    rec.add_argument("--group", help="Job group to sweep (default: $JOBREGISTRY_RECLAIM_GROUP)")
    rec.set_defaults(func=cmd_reclaim)

    cln = subparsers.add_parser("cleanup", parents=[db_parent], help="Delete expired terminal jobs")
    cln.add_argument("--days", type=int, help="Retention for finished/canceled jobs")
    cln.add_argument("--failed-days", type=int, help="Retention for failed jobs")
    cln.set_defaults(func=cmd_cleanup)

    swp = subparsers.add_parser("sweep", parents=[db_parent], help="Reclaim orphans, then clean up")
    swp.add_argument("--active", help="Comma-separated ids the scheduler still tracks")
    swp.add_argument("--stale-ms", type=int, help="Staleness threshold in milliseconds")
    swp.set_defaults(func=cmd_sweep)

    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
