"""Demo runner: schedule the sample participants from JSON.

Prints the assignment table, the first weeks of materialized entries and the
run metrics, and writes a report workbook next to the sample data.

Usage:
    python scripts/run_scheduling_demo.py

"""

from __future__ import annotations

from pathlib import Path
import logging
import sys

# Ensure project root is on PYTHONPATH when running as a script
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scheduling import (
    load_scheduling_problem_from_json,
    remaining_availability,
    solve_scheduling_problem,
)
from utils.schedule_export import (
    assignments_df,
    df_to_markdown,
    occurrences_df,
    schedule_report_workbook_bytes,
)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    problem_path = ROOT / "data" / "sample_scheduling_problem.json"
    problem = load_scheduling_problem_from_json(str(problem_path))

    result, metrics = solve_scheduling_problem(problem)

    print("\n=== Assignments ===")
    print(df_to_markdown(assignments_df(result)))

    entries = occurrences_df(result, anchor_date=problem.anchor_date, total_weeks=problem.total_weeks)
    print("=== Entries (first 2 weeks) ===")
    print(df_to_markdown(entries[entries["week"] < 2]))

    print("=== Metrics ===")
    for k, v in metrics.items():
        print(f"{k}: {v}")

    out_path = ROOT / "data" / "sample_schedule_report.xlsx"
    out_path.write_bytes(
        schedule_report_workbook_bytes(
            result=result,
            anchor_date=problem.anchor_date,
            total_weeks=problem.total_weeks,
            grid=remaining_availability(problem, result),
            metrics=metrics,
        )
    )
    print(f"\nReport written to {out_path}")


if __name__ == "__main__":
    main()
