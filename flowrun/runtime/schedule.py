"""
Scheduled workflows.

A workflow is scheduled when its graph contains a ``Schedule`` node. The
node's parameters pick an interval label; after each triggered run the next
run time is pushed forward by that interval.
"""

import calendar
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flowrun.schemas.run import WorkflowVersion

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = "Every Hour"

INTERVALS: dict[str, timedelta] = {
    "Every 10 Minutes": timedelta(minutes=10),
    "Every 15 Minutes": timedelta(minutes=15),
    "Every 30 Minutes": timedelta(minutes=30),
    "Every Hour": timedelta(hours=1),
    "Every 2 Hours": timedelta(hours=2),
    "Every 6 Hours": timedelta(hours=6),
    "Every 12 Hours": timedelta(hours=12),
    "Daily": timedelta(days=1),
    "Weekly": timedelta(weeks=1),
}
MONTHLY = "Monthly"


@dataclass
class ScheduleConfig:
    """Parameters of a workflow's Schedule node."""

    interval: str = DEFAULT_INTERVAL
    timezone: str = "UTC"


def extract_schedule_config(graph: dict[str, Any]) -> ScheduleConfig | None:
    """The first Schedule node's config, or None (no node, or ``enabled: false``)."""
    nodes = graph.get("nodes") if isinstance(graph, dict) else None
    if not isinstance(nodes, list):
        return None

    for node in nodes:
        if not isinstance(node, dict):
            continue
        data = node.get("data") or {}
        name = data.get("name") or data.get("label")
        node_type = data.get("type") or name
        if name != "Schedule" and node_type != "Schedule":
            continue

        params = data.get("parameters") or {}
        if params.get("enabled") is False:
            return None
        return ScheduleConfig(
            interval=params.get("interval") or DEFAULT_INTERVAL,
            timezone=params.get("timezone") or "UTC",
        )
    return None


def _zone(timezone: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown schedule timezone '{timezone}', using UTC")
        return ZoneInfo("UTC")


def _add_month(moment: datetime) -> datetime:
    year, month = (moment.year + 1, 1) if moment.month == 12 else (moment.year, moment.month + 1)
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def calculate_next_run(interval: str, timezone: str = "UTC", now: datetime | None = None) -> datetime:
    """
    Next run time for an interval label, in ``timezone``.

    Unknown labels fall back to one hour. Monthly keeps the day of month,
    clamped to the length of the next month.
    """
    zone = _zone(timezone)
    current = (now or datetime.now(UTC)).astimezone(zone)
    if interval == MONTHLY:
        return _add_month(current)
    return current + INTERVALS.get(interval, INTERVALS[DEFAULT_INTERVAL])


def is_due(next_run: datetime | None, now: datetime | None = None) -> bool:
    """A workflow with no next run time yet is due immediately."""
    if next_run is None:
        return True
    return next_run <= (now or datetime.now(UTC))


@dataclass
class ScheduledWorkflow:
    """A workflow version registered for periodic execution."""

    version: WorkflowVersion
    config: ScheduleConfig
    next_run: datetime | None = None
    last_run: datetime | None = None
    run_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_version(cls, version: WorkflowVersion) -> "ScheduledWorkflow | None":
        config = extract_schedule_config(version.graph)
        if config is None:
            return None
        return cls(version=version, config=config)


async def trigger_due(scheduled: list[ScheduledWorkflow], worker, now: datetime | None = None) -> list[str]:
    """
    Submit every due workflow to ``worker`` and advance its next run time.

    A failing submission is logged and does not stop the others.

    Returns:
        Run ids of the submitted runs
    """
    now = now or datetime.now(UTC)
    submitted = []
    due = [item for item in scheduled if is_due(item.next_run, now)]
    logger.info(f"📊 Found {len(due)} scheduled workflows due to run")

    for item in due:
        workflow_id = item.version.workflow_id
        try:
            run_id = await worker.submit(item.version)
        except Exception as e:
            logger.error(f"❌ Failed to run scheduled workflow {workflow_id}: {e}")
            continue
        item.last_run = now
        item.next_run = calculate_next_run(item.config.interval, item.config.timezone, now)
        item.run_ids.append(run_id)
        submitted.append(run_id)
        logger.info(f"✅ Workflow {workflow_id} triggered, next run at {item.next_run.isoformat()}")

    return submitted
