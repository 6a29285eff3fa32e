import argparse
import json
from pathlib import Path

from .env import load_env

from . import __version__
from .config import load_settings
from .database import init_database
from .engine import CleanupEngine, build_engine
from .errors import CleanupError
from .models import ComparisonKind, RedirectRule, RulePattern
from .rules import SqlRuleStore
from .wordpress import WordPressContentStore


def _content_types(value: str) -> list:
    return [c.strip() for c in value.split(",") if c.strip()]


def get_engine(args: argparse.Namespace) -> CleanupEngine:
    settings = load_settings()
    if args.db:
        settings.db_path = Path(args.db)
    content_store = None
    if args.wordpress:
        if not settings.site_url:
            raise SystemExit("LINKSWEEP_SITE_URL not set. It is required with --wordpress.")
        content_store = WordPressContentStore(
            settings.site_url,
            username=settings.wp_username,
            app_password=settings.wp_app_password,
        )
    return build_engine(settings, content_store=content_store)


def print_job(job) -> None:
    print(f"Job: {job.id}")
    print(f"  Status: {job.status.value}")
    print(f"  Started: {job.started_at}")
    if job.finished_at:
        print(f"  Finished: {job.finished_at}")
    mode = "dry run" if job.options.dry_run else "live"
    print(f"  Mode: {mode} (backups: {'on' if job.options.writes_backups else 'off'})")
    print(f"  Content: {', '.join(job.options.content_types)}")
    results = job.results
    print(
        f"  Results: posts={results['posts_updated']} meta={results['meta_updated']} "
        f"options={results['options_updated']} urls={results['urls_replaced']} "
        f"failed={results['failed_writes']}"
    )
    if job.error:
        print(f"  Error: {job.error}")


def cmd_init_db(args: argparse.Namespace) -> None:
    db_path = Path(args.db) if args.db else load_settings().db_path
    init_database(db_path)
    print(f"Database ready: {db_path}")


def cmd_import_report(args: argparse.Namespace) -> None:
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    engine = get_engine(args)
    if not isinstance(engine.rule_store, SqlRuleStore):
        raise SystemExit("Rule import needs the SQLite rule store.")
    try:
        stats = engine.rule_store.import_crawl_report(input_path)
    except ValueError as e:
        raise SystemExit(str(e))
    engine.invalidate_analysis()
    print(
        f"Imported {stats['rules_added']} rules from {stats['total_rows']} rows "
        f"({stats['total_occurrences']} occurrences of {stats['unique_urls']} URLs)"
    )


def cmd_add_rule(args: argparse.Namespace) -> None:
    engine = get_engine(args)
    rule = RedirectRule(
        patterns=[RulePattern(args.source, ComparisonKind(args.comparison))],
        destination=args.destination,
        header_code=args.code,
    )
    try:
        rule_id = engine.rule_store.add_rule(rule)
    except ValueError as e:
        raise SystemExit(str(e))
    engine.invalidate_analysis()
    print(f"Rule {rule_id}: {args.source} -> {args.destination}")


def cmd_analyze(args: argparse.Namespace) -> None:
    engine = get_engine(args)
    result = engine.analyze_redirections()
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return
    print(f"Active redirections: {result.total_redirections}")
    print(f"Mappings: {len(result.url_mapping)} ({result.redirect_chains_resolved} chains collapsed)")
    if result.unresolved:
        print(f"Unresolved (loop or too many hops): {len(result.unresolved)}")
        for source in result.unresolved:
            print(f" - {source}")
    if result.skipped_patterns:
        print(f"Skipped patterns: {result.skipped_patterns}")
    if any(entry["hits"] for entry in result.top_redirections):
        print("Top redirections:")
        for entry in result.top_redirections:
            print(f" - {entry['source']} -> {entry['destination']} ({entry['hits']} hits)")
    analysis = result.content_analysis
    print(
        f"Content to update: posts={analysis.get('posts', 0)} postmeta={analysis.get('postmeta', 0)} "
        f"options={analysis.get('options', 0)} (occurrences={analysis.get('occurrences', 0)}, "
        f"links={analysis.get('links', 0)})"
    )


def _options_from_args(args: argparse.Namespace) -> dict:
    options = {
        "content_types": _content_types(args.content_types),
        "dry_run": not args.live,
        "create_backup": not args.no_backup,
    }
    if args.batch_size is not None:
        options["batch_size"] = args.batch_size
    return options


def cmd_start(args: argparse.Namespace) -> None:
    engine = get_engine(args)
    job_id = engine.start_cleanup_process(_options_from_args(args))
    print(job_id)


def cmd_run(args: argparse.Namespace) -> None:
    engine = get_engine(args)
    if args.analyze:
        engine.analyze_redirections()
    job_id = engine.start_cleanup_process(_options_from_args(args))
    print_job(engine.process_cleanup_job(job_id))


def cmd_process(args: argparse.Namespace) -> None:
    engine = get_engine(args)
    if args.step:
        result = engine.process_next_batch(args.job_id)
        print(json.dumps(result.to_dict(), indent=2))
        return
    print_job(engine.process_cleanup_job(args.job_id))


def cmd_progress(args: argparse.Namespace) -> None:
    engine = get_engine(args)
    progress = engine.get_job_progress(args.job_id)
    print(
        f"{progress['job_id']}: {progress['status']} "
        f"{progress['processed_mappings']}/{progress['total_mappings']} mappings ({progress['percent']}%)"
    )


def cmd_jobs(args: argparse.Namespace) -> None:
    engine = get_engine(args)
    jobs = engine.get_recent_jobs(args.limit)
    if not jobs:
        print("No jobs.")
        return
    for job in jobs:
        print_job(job)
        print()


def cmd_details(args: argparse.Namespace) -> None:
    engine = get_engine(args)
    job = engine.get_job_details(args.job_id)
    print_job(job)
    if job.logs:
        print("  Log:")
        for line in job.logs:
            print(f"    {line}")


def cmd_rollback(args: argparse.Namespace) -> None:
    engine = get_engine(args)
    outcome = engine.rollback_changes(args.job_id)
    print(f"Rolled back {args.job_id}: {outcome['restored_count']} items restored")


def cmd_fix_urls(args: argparse.Namespace) -> None:
    engine = get_engine(args)
    results = engine.repair_malformed_urls(_content_types(args.content_types), dry_run=args.dry_run)
    prefix = "Would fix" if args.dry_run else "Fixed"
    print(
        f"{prefix} {results['urls_fixed']} URLs: posts={results['posts_fixed']} "
        f"meta={results['meta_fixed']} options={results['options_fixed']}"
    )
    if results["failed_writes"]:
        print(f"Failed writes: {results['failed_writes']}")


def cmd_cleanup_backups(args: argparse.Namespace) -> None:
    engine = get_engine(args)
    before, after = engine.cleanup_expired_backups(days=args.days)
    print(f"Removed {before - after} snapshots, {after} remaining")


def cmd_clear_data(args: argparse.Namespace) -> None:
    if not args.yes:
        raise SystemExit("Refusing to clear jobs, backups and the cached analysis without --yes")
    engine = get_engine(args)
    removed = engine.clear_all_data()
    print(f"Cleared {removed} entries")


def add_job_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--content-types", default="all", help="Comma-separated: posts,postmeta,options or all (default: all)")
    parser.add_argument("--batch-size", type=int, help="Mappings per batch (default: LINKSWEEP_BATCH_SIZE)")
    parser.add_argument("--live", action="store_true", help="Write changes (default is a dry run)")
    parser.add_argument("--no-backup", action="store_true", help="Skip backup snapshots on live runs")


def main():
    # Load .env if present (LINKSWEEP_DB_PATH, LINKSWEEP_SITE_URL, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="linksweep", description="Redirection cleanup: rewrite links that point at redirects")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--db", help="SQLite database path (default: LINKSWEEP_DB_PATH or data/linksweep.db)")
    parser.add_argument("--wordpress", action="store_true", help="Read and write posts over the WordPress REST API at LINKSWEEP_SITE_URL")

    subparsers = parser.add_subparsers(dest="command")
    ini = subparsers.add_parser("init-db", help="Create the database tables")
    ini.set_defaults(func=cmd_init_db)

    imp = subparsers.add_parser("import-report", help="Import redirect rules from a crawl report CSV")
    imp.add_argument("--input", required=True, help="CSV with 'Redirected URL' and 'Final URL' columns")
    imp.set_defaults(func=cmd_import_report)

    add = subparsers.add_parser("add-rule", help="Add a single redirect rule")
    add.add_argument("--source", required=True, help="Source URL or path")
    add.add_argument("--destination", required=True, help="Destination URL or path")
    add.add_argument("--comparison", default="exact", choices=[k.value for k in ComparisonKind], help="Pattern comparison (default: exact)")
    add.add_argument("--code", type=int, default=301, help="HTTP status of the redirect (default: 301)")
    add.set_defaults(func=cmd_add_rule)

    ana = subparsers.add_parser("analyze", help="Resolve redirect chains and count affected content")
    ana.add_argument("--json", action="store_true", help="Print the analysis as JSON")
    ana.set_defaults(func=cmd_analyze)

    sta = subparsers.add_parser("start", help="Create a cleanup job from the cached analysis and print its id")
    add_job_options(sta)
    sta.set_defaults(func=cmd_start)

    run = subparsers.add_parser("run", help="Create a cleanup job and process it to the end")
    add_job_options(run)
    run.add_argument("--analyze", action="store_true", help="Refresh the analysis first")
    run.set_defaults(func=cmd_run)

    pro = subparsers.add_parser("process", help="Process (or resume) a cleanup job")
    pro.add_argument("--job-id", required=True, help="Job id")
    pro.add_argument("--step", action="store_true", help="Process a single batch only")
    pro.set_defaults(func=cmd_process)

    prg = subparsers.add_parser("progress", help="Show job progress")
    prg.add_argument("--job-id", required=True, help="Job id")
    prg.set_defaults(func=cmd_progress)

    lst = subparsers.add_parser("jobs", help="List recent jobs, most recent first")
    lst.add_argument("--limit", type=int, default=10, help="Number of jobs (default: 10)")
    lst.set_defaults(func=cmd_jobs)

    det = subparsers.add_parser("details", help="Show a job with its log")
    det.add_argument("--job-id", required=True, help="Job id")
    det.set_defaults(func=cmd_details)

    rbk = subparsers.add_parser("rollback", help="Restore content changed by a completed live job")
    rbk.add_argument("--job-id", required=True, help="Job id")
    rbk.set_defaults(func=cmd_rollback)

    fix = subparsers.add_parser("fix-urls", help="Repair malformed URLs (duplicated protocol, nested URLs, double slashes)")
    fix.add_argument("--content-types", default="all", help="Comma-separated: posts,postmeta,options or all (default: all)")
    fix.add_argument("--dry-run", action="store_true", help="Count repairs without writing")
    fix.set_defaults(func=cmd_fix_urls)

    cln = subparsers.add_parser("cleanup-backups", help="Delete backup snapshots of old jobs")
    cln.add_argument("--days", type=int, help="Retention in days (default: LINKSWEEP_BACKUP_RETENTION_DAYS)")
    cln.set_defaults(func=cmd_cleanup_backups)

    clr = subparsers.add_parser("clear-data", help="Delete all jobs, backups, locks and the cached analysis")
    clr.add_argument("--yes", action="store_true", help="Confirm the deletion")
    clr.set_defaults(func=cmd_clear_data)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        try:
            args.func(args)
        except CleanupError as e:
            raise SystemExit(str(e))
        return

    parser.print_help()


if __name__ == "__main__":
    main()
