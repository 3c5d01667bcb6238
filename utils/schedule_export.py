from __future__ import annotations

import io
import zipfile
from datetime import date
from typing import Optional

import pandas as pd


ASSIGNMENT_COLUMNS = [
    "participant_id",
    "participant",
    "status",
    "accepted",
    "rank",
    "day",
    "start",
    "end",
    "frequency",
    "recurrence_rule",
    "reason",
]


def assignments_df(result) -> pd.DataFrame:
    """One row per participant outcome, in scheduling order."""

    from scheduling.recurrence import format_recurrence_rule

    rows = []
    for a in result.assignments:
        timing = a.timing
        window = timing.window if timing is not None else None
        rows.append(
            {
                "participant_id": a.participant.participant_id,
                "participant": a.participant.name,
                "status": a.status.value,
                "accepted": bool(a.accepted),
                "rank": int(a.rank),
                "day": window.day.value if window else "",
                "start": f"{window.start_hour:02d}:{window.start_minute:02d}" if window else "",
                "end": f"{window.end_hour:02d}:{window.end_minute:02d}" if window else "",
                "frequency": timing.frequency.value if timing else "",
                "recurrence_rule": format_recurrence_rule(window.day, timing.frequency) if a.accepted else "",
                "reason": a.reason or "",
            }
        )
    return pd.DataFrame(rows, columns=ASSIGNMENT_COLUMNS)


def occurrences_df(result, *, anchor_date: date, total_weeks: int) -> pd.DataFrame:
    """Materialized single-occurrence entries for every accepted assignment."""

    from scheduling.materializer import materialize_weeks

    rows = []
    for a in result.accepted_assignments():
        for entry in materialize_weeks(a, anchor_date, total_weeks):
            rows.append(
                {
                    "participant": a.participant.name,
                    "week": entry.week,
                    "start_time": entry.start_time.isoformat(),
                    "end_time": entry.end_time.isoformat(),
                    "recurrence_rule": entry.recurrence_rule,
                }
            )
    out = pd.DataFrame(rows, columns=["participant", "week", "start_time", "end_time", "recurrence_rule"])
    return out.sort_values(["start_time", "participant"]).reset_index(drop=True)


def free_capacity_df(grid) -> pd.DataFrame:
    """Free minutes per (week, weekday) of an availability grid (rows=weeks)."""

    from scheduling.models import Weekday

    rows = []
    for week in range(grid.total_weeks):
        row = {"WEEK": week}
        for day in Weekday:
            row[day.value] = grid.free_minutes(week, day)
        rows.append(row)
    return pd.DataFrame(rows, columns=["WEEK"] + [d.value for d in Weekday])


def schedule_report_workbook_bytes(
    *,
    result,
    anchor_date: date,
    total_weeks: int,
    grid=None,
    metrics: Optional[dict] = None,
) -> bytes:
    """Build an Excel workbook with the assignment table and its materialized entries.

    Includes a summary sheet when `metrics` is given and a free-capacity sheet
    when `grid` is given.
    """

    out = io.BytesIO()

    with pd.ExcelWriter(out, engine="openpyxl") as writer:
        if metrics:
            summary = pd.DataFrame(sorted(metrics.items()), columns=["Metric", "Value"])
            summary.to_excel(writer, sheet_name="Summary", index=False)

        assignments_df(result).to_excel(writer, sheet_name="Assignments", index=False)
        occurrences_df(result, anchor_date=anchor_date, total_weeks=total_weeks).to_excel(
            writer, sheet_name="Entries", index=False
        )

        if grid is not None:
            free_capacity_df(grid).to_excel(writer, sheet_name="Free Capacity (min)", index=False)

    return out.getvalue()


def schedule_report_zip_bytes(
    *,
    result,
    anchor_date: date,
    total_weeks: int,
    grid=None,
    metrics: Optional[dict] = None,
) -> bytes:
    """Create a ZIP containing the workbook plus each table as CSV."""

    wb = schedule_report_workbook_bytes(
        result=result,
        anchor_date=anchor_date,
        total_weeks=total_weeks,
        grid=grid,
        metrics=metrics,
    )

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as z:
        z.writestr("schedule_report.xlsx", wb)
        z.writestr("tables/assignments.csv", assignments_df(result).to_csv(index=False).encode("utf-8"))
        z.writestr(
            "tables/entries.csv",
            occurrences_df(result, anchor_date=anchor_date, total_weeks=total_weeks).to_csv(index=False).encode("utf-8"),
        )
        if grid is not None:
            z.writestr("tables/free_capacity.csv", free_capacity_df(grid).to_csv(index=False).encode("utf-8"))

    return buf.getvalue()


def df_to_markdown(df: pd.DataFrame) -> str:
    """Render a DataFrame as a GitHub-flavored Markdown table."""

    def row(values) -> str:
        cells = (str(v).replace("\n", " ").replace("|", "\\|") for v in values)
        return "| " + " | ".join(cells) + " |"

    lines = [row(df.columns), row(["---"] * len(df.columns))]
    lines.extend(row(values) for values in df.itertuples(index=False))
    return "\n".join(lines) + "\n"
