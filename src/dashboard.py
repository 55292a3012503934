"""
Triage dashboard: recent records, their computed tiers and the summary tiles.

Read-only. build_view() does all the decisions; the renderers only format.
"""

from pathlib import Path
from typing import Iterable

from jinja2 import Environment, FileSystemLoader, select_autoescape

from settings import SUMMARY_CRITICAL_THRESHOLD
from src.models import DashboardRow, DashboardView, FeedbackRecord
from src.triage import rank, summarize, triage

TEMPLATES_DIR = Path(__file__).parent / "templates"

_env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html"]),
)


def build_view(records: Iterable[FeedbackRecord], order: str = "recent", **thresholds) -> DashboardView:
    """
    Compute tiers and counters for a record set.

    order="recent" keeps the given order (the store returns newest first);
    order="priority" ranks rows by urgency.
    """
    records = list(records)
    if order == "priority":
        records = rank(records, **thresholds)
    elif order != "recent":
        raise ValueError(f"Unknown order: {order!r}")

    summary = summarize(records, thresholds.get("summary_threshold", SUMMARY_CRITICAL_THRESHOLD))

    return DashboardView(
        summary=summary,
        rows=[DashboardRow(record=r, triage=triage(r, **thresholds)) for r in records],
        order=order,
    )


def render_html(view: DashboardView) -> str:
    return _env.get_template("dashboard.html").render(view=view)


def render_text(view: DashboardView) -> str:
    """Plain-text table for the CLI."""
    s = view.summary
    lines = [
        f"Total: {s.total}   Critical incidents: {s.critical_count}   Bug reports: {s.bug_count}",
        "─" * 78,
        f"{'ID':>5}  {'PRIORITY':<8}  {'CATEGORY':<15}  {'SENT.':>5}  TEXT",
    ]
    for row in view.rows:
        text = row.record.raw_text.replace("\n", " ")
        if len(text) > 36:
            text = text[:35] + "…"
        lines.append(
            f"{row.record.id:>5}  {row.triage.tier:<8}  {row.record.category:<15}  "
            f"{row.record.sentiment:>5.2f}  {text}"
        )
    if not view.rows:
        lines.append("  (no feedback yet)")
    return "\n".join(lines)
