"""
Record time on Jira issues and report on a local copy of your worklogs.

Usage:
    # Log 1.5 hours ending now
    python timesheet.py add -i TIME-94 -d 1h30m -c "Code review"

    # Log a whole week, one entry per day starting 08:00
    python timesheet.py add -i TIME-94 -d Mon:7,5h Tue:7,5h Wed:1d Thu:1d Fri:1d

    # Timer
    python timesheet.py start -i TIME-94 -c "Release"
    python timesheet.py stop

    # Refresh the local copy and report on it
    python timesheet.py sync -i TIME-94 TIME-147 --after 2024-11-01
    python timesheet.py sync -p TIME
    python timesheet.py status --group week
"""

import argparse
import sys
from datetime import datetime, timedelta

from clients import ApiError, JiraClient
from duration import ParseError, parse_date_time, parse_since
from patterns import Patterns
from report import GROUPINGS, aggregate, format_seconds, print_entry_list, print_table
from store import LocalStoreError, WorklogStore
from sync import PartialSyncFailure, SyncEngine, default_since
from timer import TimerFile, TimerStateError, TimerStateMachine, elapsed_seconds
from utils import (
    CONFIG_FILE,
    get_week_dates,
    load_config_safe,
    mask_secret,
    save_config,
    timesheet_setting,
)
from worklog import OwnershipError, UnknownEntryError, WorklogService

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_PARSE_ERROR = 2
EXIT_TIMER_STATE = 3
EXIT_PARTIAL_SYNC = 4
EXIT_REMOTE_ERROR = 5
EXIT_LOCAL_STORE = 6
EXIT_NO_DATA = 7


# ============================================================================
# Helpers
# ============================================================================


def now_local() -> datetime:
    return datetime.now().astimezone()


def parse_issue_key(text: str) -> str:
    key = text.strip().upper()
    if not Patterns.ISSUE_KEY.match(key):
        raise ParseError(f"'{text}' is not an issue key like TIME-94", text)
    return key


def parse_project_key(text: str) -> str:
    key = text.strip().upper()
    if not Patterns.PROJECT_KEY.match(key):
        raise ParseError(f"'{text}' is not a project key like TIME", text)
    return key


def parse_optional_time(text: str | None, now: datetime) -> datetime | None:
    return parse_date_time(text, now) if text else None


def open_store(config: dict) -> WorklogStore:
    return WorklogStore(timesheet_setting(config, "database"))


def timer_machine(config: dict, service: WorklogService | None) -> TimerStateMachine:
    timer_file = TimerFile(timesheet_setting(config, "timer_file"))
    if service is None:
        return TimerStateMachine(timer_file, None)
    return TimerStateMachine(timer_file, service.create_remote, service.mirror)


def print_entry(prefix: str, entry) -> None:
    print(
        f"{prefix} {entry.issue_key} worklog {entry.entry_id}: "
        f"{format_seconds(entry.duration_seconds)} from {entry.started:%a %Y-%m-%d %H:%M}"
    )


# ============================================================================
# Commands
# ============================================================================


def cmd_add(args, config: dict) -> int:
    now = now_local()
    issue_key = parse_issue_key(args.issue)
    started = parse_optional_time(args.started, now)

    with open_store(config) as store:
        service = WorklogService(JiraClient(config), store)
        entries = service.add(issue_key, args.durations, started=started, comment=args.comment, now=now)

    for entry in entries:
        print_entry("[+] Added", entry)
    total = sum(e.duration_seconds for e in entries)
    if len(entries) > 1:
        print(f"[*] Total: {format_seconds(total)} in {len(entries)} entries")
    return EXIT_OK


def cmd_del(args, config: dict) -> int:
    issue_key = parse_issue_key(args.issue) if args.issue else None

    with open_store(config) as store:
        service = WorklogService(JiraClient(config), store)
        deleted = service.delete(args.entry_id, issue_key)

    if deleted is None:
        print(f"[*] Worklog {args.entry_id} was already gone from Jira; removed the local copy")
    else:
        print_entry("[+] Deleted", deleted)
    return EXIT_OK


def cmd_status(args, config: dict) -> int:
    now = now_local()
    until = None
    if args.week:
        if not Patterns.WEEK_FORMAT.match(args.week):
            raise ParseError(f"Invalid week '{args.week}', expected YYYYWW (e.g., 202445)", args.week)
        first, last = get_week_dates(args.week)
        since = parse_since(first, now)
        until = parse_since(last, now) + timedelta(days=1)
    elif args.after:
        since = parse_since(args.after, now)
    else:
        since = default_since(now)

    with open_store(config) as store:
        issue_keys = [parse_issue_key(k) for k in args.issues] if args.issues else store.distinct_issue_keys()
        entries = store.find_entries(issue_keys, since=since, until=until)
        issues = {issue.key: issue for issue in store.get_issues(issue_keys)}

    timer = timer_machine(config, None).active

    if not entries:
        print(f"[!] No worklog entries in the local database since {since:%Y-%m-%d}.", file=sys.stderr)
        print("    Fill it from Jira first, for instance:", file=sys.stderr)
        print("    $ python timesheet.py sync -i TIME-94 TIME-147", file=sys.stderr)
        print("    $ python timesheet.py sync -p TIME", file=sys.stderr)
        print_timer(timer, now)
        return EXIT_NO_DATA

    print(f"[*] {len(entries)} worklog entries since {since:%Y-%m-%d}")
    print()
    if not args.no_list:
        print_entry_list(entries, issues)
        print()

    # Column order follows the most used keys
    order = {key: i for i, key in enumerate(issue_keys)}
    print_table(aggregate(sorted(entries, key=lambda e: order.get(e.issue_key, len(order))), args.group))
    print()
    print_timer(timer, now)
    return EXIT_OK


def print_timer(timer, now: datetime) -> None:
    if timer is None:
        print("No active timer")
        return
    elapsed = elapsed_seconds(timer, now)
    print(
        f"Active timer for {timer.issue_key}, started {timer.started:%Y-%m-%d %H:%M}, "
        f"elapsed {format_seconds(elapsed)}"
    )


def cmd_sync(args, config: dict) -> int:
    now = now_local()
    since = parse_since(args.after, now) if args.after else default_since(now)
    issue_keys = {parse_issue_key(k) for k in args.issues or []}
    projects = {parse_project_key(p) for p in args.projects or []}

    with open_store(config) as store:
        engine = SyncEngine(
            JiraClient(config),
            store,
            max_workers=timesheet_setting(config, "sync_workers"),
            debug=args.debug,
        )
        keys = engine.resolve_issue_keys(issue_keys, projects)
        if not keys:
            print("[!] No issue keys to sync and none found in the local database.", file=sys.stderr)
            print("    $ python timesheet.py sync -i TIME-94 TIME-147", file=sys.stderr)
            print("    $ python timesheet.py sync -p TIME", file=sys.stderr)
            return EXIT_NO_DATA

        scope = "all users" if args.all_users else "your worklogs"
        print(f"[*] Synchronising {scope} since {since:%Y-%m-%d} for: {', '.join(keys)}")
        report = engine.sync(keys, since, current_user_only=not args.all_users)

    for key, count in sorted(report.synced.items()):
        print(f"    [+] {key}: {count} worklogs")
    if report.ok:
        print(f"[*] Done, {sum(report.synced.values())} worklogs stored")
        return EXIT_OK

    raise PartialSyncFailure(report)


def cmd_start(args, config: dict) -> int:
    now = now_local()
    issue_key = parse_issue_key(args.issue)
    started = parse_optional_time(args.started, now)

    timer = timer_machine(config, None).start(issue_key, comment=args.comment, explicit_start=started, now=now)
    print(f"[+] Timer started for {timer.issue_key} at {timer.started:%Y-%m-%d %H:%M}")
    return EXIT_OK


def cmd_stop(args, config: dict) -> int:
    now = now_local()

    if args.discard:
        timer = timer_machine(config, None).discard()
        what = f" for {timer.issue_key}" if timer else ""
        print(f"[+] Timer{what} discarded, nothing was logged")
        return EXIT_OK

    stopped = parse_optional_time(args.stopped, now)
    with open_store(config) as store:
        service = WorklogService(JiraClient(config), store)
        entry = timer_machine(config, service).stop(comment_override=args.comment, explicit_stop=stopped, now=now)
    print_entry("[+] Timer stopped, added", entry)
    return EXIT_OK


def cmd_codes(args, config: dict) -> int:
    with open_store(config) as store:
        keys = store.distinct_issue_keys()
        issues = {issue.key: issue for issue in store.get_issues()}

    print("[*] Issue keys in the local database (most used first):")
    if not issues:
        print("    none yet")
    for key in keys + sorted(set(issues) - set(keys)):
        issue = issues.get(key)
        components = ", ".join(c.name for c in issue.components) if issue else ""
        summary = issue.summary if issue else "?"
        print(f"    {key:12} {summary[:60]:60} {components}")

    project = timesheet_setting(config, "tracking_project")
    if project:
        print()
        print(f"[*] Open issues in {project} on Jira:")
        for issue in JiraClient(config).search_issues(
            f'project = "{project}" AND resolution = Unresolved ORDER BY key'
        ):
            print(f"    {issue.key:12} {issue.summary[:60]}")
    return EXIT_OK


def cmd_config(args, config: dict | None) -> int:
    if args.action == "init":
        new_config = {
            "jira": {"base_url": args.url, "user_email": args.user, "api_token": args.token},
            "timesheet": {
                "database": args.database or timesheet_setting({}, "database"),
                "timer_file": timesheet_setting({}, "timer_file"),
            },
        }
        if args.project:
            new_config["timesheet"]["tracking_project"] = args.project
        try:
            save_config(new_config, args.config)
        except FileExistsError:
            print(f"[!] {args.config} already exists, not overwriting it", file=sys.stderr)
            return EXIT_CONFIG
        print(f"[+] Wrote {args.config}")
        return EXIT_OK

    if args.action == "show":
        print(f"[*] Configuration from {args.config}:")
        print(f"    jira.base_url:   {config['jira']['base_url']}")
        print(f"    jira.user_email: {config['jira']['user_email']}")
        print(f"    jira.api_token:  {mask_secret(config['jira']['api_token'])}")
        for key in ("database", "timer_file", "tracking_project", "sync_workers"):
            print(f"    timesheet.{key + ':':17} {timesheet_setting(config, key)}")
        return EXIT_OK

    # check
    print(f"[*] Connecting to {config['jira']['base_url']}...")
    me = JiraClient(config).get_myself()
    print(f"[+] Authenticated as {me.get('displayName', '?')} ({me.get('accountId', '?')})")
    return EXIT_OK


# ============================================================================
# CLI
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Log time on Jira issues and report on your worklogs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Durations: 1w (5 days), 1d (7.5 hours), 1,5h, 30m, combined as 1d2h30m.
Prefix with a weekday to log on that day from 08:00: Mon:7,5h Tue:1d
Times: 08:00 (today), 2024-11-04 (08:00 that day) or 2024-11-04T09:30
        """,
    )
    parser.add_argument("--config", default=CONFIG_FILE, help=f"Configuration file (default: {CONFIG_FILE})")
    parser.add_argument("--debug", action="store_true", help="Print debug information")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add", help="Log time on an issue")
    p.add_argument("-i", "--issue", required=True, help="Issue key, e.g. TIME-94")
    p.add_argument("-d", "--durations", nargs="+", required=True, help="1h30m, or Mon:7,5h Tue:1d ...")
    p.add_argument("-s", "--started", help="Start time, default: now minus the duration")
    p.add_argument("-c", "--comment", help="Worklog comment")
    p.set_defaults(handler=cmd_add)

    p = sub.add_parser("del", help="Delete one of your worklog entries")
    p.add_argument("entry_id", type=int, help="Worklog id, see 'status'")
    p.add_argument("-i", "--issue", help="Issue key, looked up locally if omitted")
    p.set_defaults(handler=cmd_del)

    p = sub.add_parser("status", help="Report on the local worklog database")
    p.add_argument("-i", "--issues", nargs="*", help="Issue keys, default: the most used ones")
    p.add_argument("-a", "--after", help="Report entries started on or after this date, from midnight (default: 30 days ago)")
    p.add_argument("-w", "--week", help="Report a single week YYYYWW instead")
    p.add_argument("-g", "--group", choices=GROUPINGS, default="day", help="Totals per day, week or month")
    p.add_argument("--no-list", action="store_true", help="Only print the totals table")
    p.set_defaults(handler=cmd_status)

    p = sub.add_parser("sync", help="Fetch worklogs from Jira into the local database")
    p.add_argument("-i", "--issues", nargs="*", help="Issue keys, default: those in the local database")
    p.add_argument("-a", "--after", help="Fetch entries started on or after this date, from midnight (default: 30 days ago)")
    p.add_argument("-p", "--projects", nargs="*", help="Also sync every issue of these projects, e.g. TIME")
    p.add_argument("--all-users", action="store_true", help="Keep entries of all users, not just yours")
    p.set_defaults(handler=cmd_sync)

    p = sub.add_parser("start", help="Start the timer on an issue")
    p.add_argument("-i", "--issue", required=True, help="Issue key, e.g. TIME-94")
    p.add_argument("-c", "--comment", help="Worklog comment")
    p.add_argument("-s", "--started", help="Start time, default: now")
    p.set_defaults(handler=cmd_start)

    p = sub.add_parser("stop", help="Stop the timer and log the elapsed time")
    p.add_argument("-c", "--comment", help="Replaces the comment given to 'start'")
    p.add_argument("-s", "--stopped", help="Stop time, default: now")
    p.add_argument("--discard", action="store_true", help="Drop the timer without logging anything")
    p.set_defaults(handler=cmd_stop)

    p = sub.add_parser("codes", help="List the issue keys you log time on")
    p.set_defaults(handler=cmd_codes)

    p = sub.add_parser("config", help="Show, create or check the configuration")
    p.add_argument("action", choices=["show", "init", "check"])
    p.add_argument("--url", help="Jira base URL (init)")
    p.add_argument("--user", help="Jira user e-mail (init)")
    p.add_argument("--token", help="Jira API token (init)")
    p.add_argument("--project", help="Project listed by 'codes' (init)")
    p.add_argument("--database", help="Local database file (init)")
    p.set_defaults(handler=cmd_config)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "config" and args.action == "init":
        if not (args.url and args.user and args.token):
            parser.error("config init needs --url, --user and --token")
        return cmd_config(args, None)

    config = load_config_safe(args.config)
    if config is None:
        return EXIT_CONFIG

    try:
        return args.handler(args, config)
    except ParseError as e:
        print(f"[!] {e}", file=sys.stderr)
        return EXIT_PARSE_ERROR
    except UnknownEntryError as e:
        print(f"[!] {e}", file=sys.stderr)
        return EXIT_PARSE_ERROR
    except TimerStateError as e:
        print(f"[!] {e}", file=sys.stderr)
        return EXIT_TIMER_STATE
    except PartialSyncFailure as e:
        report = e.report
        print(f"[!] Sync incomplete: {len(report.synced)} issues synchronised, {len(report.failed)} failed", file=sys.stderr)
        for key, reason in sorted(report.failed.items()):
            print(f"    [!] {key}: {reason}", file=sys.stderr)
        print("    Run the same sync again to retry; finished issues are kept.", file=sys.stderr)
        return EXIT_PARTIAL_SYNC
    except (ApiError, OwnershipError) as e:
        print(f"[!] {e}", file=sys.stderr)
        return EXIT_REMOTE_ERROR
    except LocalStoreError as e:
        print(f"[!] {e}", file=sys.stderr)
        return EXIT_LOCAL_STORE


if __name__ == "__main__":
    exit(main())
