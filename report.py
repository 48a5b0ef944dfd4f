"""Aggregation of worklog entries into day, week and month totals."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from models import Issue, WorklogEntry

GROUPINGS = ("day", "week", "month")


@dataclass
class ReportRow:
    """Totals of one day, ISO week or month."""

    group_key: str  # 2024-11-04, 2024-W45 or 2024-11
    period_start: date
    cells: dict[str, int]  # issue key -> seconds
    total: int


@dataclass
class Report:
    group_by: str
    issue_keys: list[str]  # first-seen order of the input
    rows: list[ReportRow]

    @property
    def total(self) -> int:
        return sum(row.total for row in self.rows)


def format_seconds(seconds: int) -> str:
    """54000 -> '15:00'"""
    hours, rest = divmod(seconds, 3600)
    return f"{hours:02d}:{rest // 60:02d}"


def period_of(day: date, group_by: str) -> tuple[str, date]:
    """Group key and first day of the period holding day."""
    if group_by == "day":
        return day.isoformat(), day
    if group_by == "week":
        year, week, weekday = day.isocalendar()
        return f"{year}-W{week:02d}", day - timedelta(days=weekday - 1)
    if group_by == "month":
        return f"{day.year}-{day.month:02d}", day.replace(day=1)
    raise ValueError(f"Unknown grouping '{group_by}', use one of {', '.join(GROUPINGS)}")


def aggregate(entries: list[WorklogEntry], group_by: str = "day") -> Report:
    """Sum entry durations per period and issue key.

    An entry counts in full on the date it started, even when it runs past
    midnight. Issue key columns keep the order in which the keys first
    appear in entries.
    """
    if group_by not in GROUPINGS:
        raise ValueError(f"Unknown grouping '{group_by}', use one of {', '.join(GROUPINGS)}")

    issue_keys: list[str] = []
    buckets: dict[str, tuple[date, dict[str, int]]] = {}
    for entry in entries:
        if entry.issue_key not in issue_keys:
            issue_keys.append(entry.issue_key)
        key, start = period_of(entry.started.date(), group_by)
        _, cells = buckets.setdefault(key, (start, {}))
        cells[entry.issue_key] = cells.get(entry.issue_key, 0) + entry.duration_seconds

    rows = [
        ReportRow(group_key=key, period_start=start, cells=cells, total=sum(cells.values()))
        for key, (start, cells) in sorted(buckets.items(), key=lambda item: item[1][0])
    ]
    return Report(group_by=group_by, issue_keys=issue_keys, rows=rows)


def period_totals(report: Report, period: str) -> dict[str, int]:
    """Sum of row totals per coarser period, e.g. per week of a daily report."""
    order = {name: i for i, name in enumerate(GROUPINGS)}
    if period not in order:
        raise ValueError(f"Unknown grouping '{period}', use one of {', '.join(GROUPINGS)}")
    if order[period] < order[report.group_by] or (report.group_by == "week" and period == "month"):
        raise ValueError(f"Cannot total a {report.group_by} report per {period}")

    totals: dict[str, int] = {}
    for row in report.rows:
        key, _ = period_of(row.period_start, period)
        totals[key] = totals.get(key, 0) + row.total
    return totals


# ============================================================================
# Console output
# ============================================================================


def print_entry_list(entries: list[WorklogEntry], issues: dict[str, Issue] | None = None) -> None:
    """One line per entry, grouped by issue and ordered by start."""
    issues = issues or {}
    print(f"{'Issue':10} {'Id':>9} {'Weekday':9} {'Started':22} {'Spent':>6}  Comment")
    for e in sorted(entries, key=lambda e: (e.issue_key, e.started)):
        comment = (e.comment or "").replace("\n", " ")
        weekday = e.started.strftime("%a")
        started = e.started.strftime("%Y-%m-%d %H:%M %z")
        spent = format_seconds(e.duration_seconds)
        print(f"{e.issue_key:10} {e.entry_id:>9} {weekday:9} {started:22} {spent:>6}  {comment[:50]}")
    if issues:
        print()
        for key in sorted({e.issue_key for e in entries}):
            if key in issues:
                print(f"  {key:10} {issues[key].summary}")


def print_table(report: Report) -> None:
    """Totals table, with week subtotals when grouped by day."""
    if not report.rows:
        print("No worklog entries in this period.")
        return

    widths = {key: max(len(key), 6) for key in report.issue_keys}
    label_width = 12
    header = f"{report.group_by.capitalize():{label_width}}"
    header += "".join(f" {key:>{widths[key]}}" for key in report.issue_keys)
    header += f" {'Total':>7}"
    print(header)
    print("-" * len(header))

    week_totals = period_totals(report, "week") if report.group_by == "day" else {}
    for i, row in enumerate(report.rows):
        line = f"{row.group_key:{label_width}}"
        for key in report.issue_keys:
            cell = row.cells.get(key, 0)
            text = format_seconds(cell) if cell else ""
            line += f" {text:>{widths[key]}}"
        line += f" {format_seconds(row.total):>7}"
        print(line)

        if week_totals:
            week, _ = period_of(row.period_start, "week")
            next_week = period_of(report.rows[i + 1].period_start, "week")[0] if i + 1 < len(report.rows) else None
            if week != next_week:
                label = f"{week} total"
                print(f"{label:>{len(header) - 8}} {format_seconds(week_totals[week]):>7}")
                print()

    print("-" * len(header))
    print(f"{'Total':{len(header) - 8}} {format_seconds(report.total):>7}")
