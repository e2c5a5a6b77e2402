"""Derived views over a flat list of schedule tasks.

All functions are pure: they read ``ScheduleTask`` records and return new
objects. Malformed ISO dates surface as ``InvalidDateError``.
"""
from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from .dates import DAY, DateLike, inclusive_day_count, parse_calendar_date, to_utc_date
from .schemas import (
    GanttDatasetItem,
    Overlap,
    PhaseSummary,
    ProgressSnapshot,
    ResourceRecommendation,
    ScheduleAlert,
    ScheduleTask,
    TimelineSummary,
)

CSV_HEADER = "id,phase,name,start,end,dependencies,resources,crewSize,percentComplete,notes"


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def build_timeline(tasks: Sequence[ScheduleTask]) -> TimelineSummary:
    """Project window plus a per-phase start/end/duration/count summary."""
    if not tasks:
        return TimelineSummary()

    ordered = sorted(tasks, key=lambda task: parse_calendar_date(task.start))
    project_start = ordered[0].start
    project_end = max((task.end for task in ordered), key=parse_calendar_date)

    phase_summaries: Dict[str, PhaseSummary] = {}
    for task in ordered:
        summary = phase_summaries.get(task.phase)
        if summary is None:
            phase_summaries[task.phase] = PhaseSummary(
                start=task.start,
                end=task.end,
                duration_days=inclusive_day_count(task.start, task.end),
                task_count=1,
            )
            continue
        if parse_calendar_date(task.start) < parse_calendar_date(summary.start):
            summary.start = task.start
        if parse_calendar_date(task.end) > parse_calendar_date(summary.end):
            summary.end = task.end
        summary.duration_days = inclusive_day_count(summary.start, summary.end)
        summary.task_count += 1

    return TimelineSummary(
        project_start=project_start,
        project_end=project_end,
        total_duration_days=inclusive_day_count(project_start, project_end),
        phase_summaries=phase_summaries,
    )


def find_overlaps(tasks: Sequence[ScheduleTask], resource_filter: Optional[str] = None) -> List[Overlap]:
    """Every pair of tasks whose date ranges intersect.

    With ``resource_filter``, a pair is only considered when at least one of
    the two tasks uses that resource.
    """
    overlaps: List[Overlap] = []
    for i, task_a in enumerate(tasks):
        for task_b in tasks[i + 1:]:
            resources_a = task_a.resources or []
            resources_b = task_b.resources or []
            if resource_filter and resource_filter not in resources_a and resource_filter not in resources_b:
                continue

            latest_start = max(parse_calendar_date(task_a.start), parse_calendar_date(task_b.start))
            earliest_end = min(parse_calendar_date(task_a.end), parse_calendar_date(task_b.end))
            if earliest_end < latest_start:
                continue

            overlaps.append(Overlap(
                task_a=task_a,
                task_b=task_b,
                overlap_days=inclusive_day_count(latest_start.date().isoformat(), earliest_end.date().isoformat()),
                shared_resources=[resource for resource in resources_a if resource in resources_b],
            ))
    return overlaps


def calculate_progress(tasks: Iterable[ScheduleTask]) -> ProgressSnapshot:
    """Completion weighted by duration times crew size, overall and per phase."""
    weighted = 0.0
    completed = 0.0
    phase_totals: Dict[str, List[float]] = {}

    for task in tasks:
        weight = inclusive_day_count(task.start, task.end) * (task.crew_size if task.crew_size is not None else 1)
        done = weight * (task.percent_complete or 0) / 100
        weighted += weight
        completed += done
        totals = phase_totals.setdefault(task.phase, [0.0, 0.0])
        totals[0] += done
        totals[1] += weight

    by_phase = {
        phase: _round_half_up(done / weight * 100) if weight else 0
        for phase, (done, weight) in phase_totals.items()
    }
    overall = _round_half_up(completed / weighted * 100) if weighted else 0
    return ProgressSnapshot(overall=overall, by_phase=by_phase)


def generate_alerts(
    tasks: Iterable[ScheduleTask],
    reference_date: Optional[DateLike] = None,
    horizon_days: int = 3,
) -> List[ScheduleAlert]:
    """Start and deadline alerts falling within ``horizon_days`` of the reference day."""
    if reference_date is None:
        reference_date = datetime.now(timezone.utc)
    today = parse_calendar_date(to_utc_date(reference_date).isoformat())

    alerts: List[ScheduleAlert] = []
    for task in tasks:
        start_delta = math.ceil((parse_calendar_date(task.start) - today) / DAY)
        end_delta = math.ceil((parse_calendar_date(task.end) - today) / DAY)
        if 0 <= start_delta <= horizon_days:
            alerts.append(ScheduleAlert(task_id=task.id, task_name=task.name, type="start", due_in_days=start_delta))
        if 0 <= end_delta <= horizon_days:
            alerts.append(ScheduleAlert(task_id=task.id, task_name=task.name, type="deadline", due_in_days=end_delta))
    return alerts


def _csv_optional(value: Optional[int]) -> str:
    return "" if value is None else str(value)


def to_csv(tasks: Iterable[ScheduleTask]) -> str:
    """CSV export consumed by downstream tooling; the layout must not change."""
    rows = [CSV_HEADER]
    for task in tasks:
        rows.append(",".join([
            task.id,
            task.phase,
            json.dumps(task.name, ensure_ascii=False),
            task.start,
            task.end,
            "|".join(task.dependencies or []),
            "|".join(task.resources or []),
            _csv_optional(task.crew_size),
            _csv_optional(task.percent_complete),
            json.dumps(task.notes, ensure_ascii=False) if task.notes else "",
        ]))
    return "\n".join(rows)


def to_gantt_dataset(tasks: Iterable[ScheduleTask]) -> List[GanttDatasetItem]:
    return [
        GanttDatasetItem(
            id=task.id,
            name=f"{task.phase}: {task.name}",
            start=task.start,
            end=task.end,
            progress=task.percent_complete or 0,
            dependencies=",".join(task.dependencies or []),
        )
        for task in tasks
    ]


def suggest_resource_leveling(
    tasks: Sequence[ScheduleTask],
    resource_filter: Optional[str] = None,
) -> List[ResourceRecommendation]:
    """Advice for overlapping pairs that compete for the same resource."""
    recommendations = []
    for overlap in find_overlaps(tasks, resource_filter):
        if not overlap.shared_resources:
            continue
        resources = ", ".join(overlap.shared_resources)
        recommendations.append(ResourceRecommendation(
            resource=resources,
            tasks=(overlap.task_a.id, overlap.task_b.id),
            overlap_days=overlap.overlap_days,
            recommendation=(
                f"Shift {overlap.task_b.id} by {overlap.overlap_days} day(s) "
                f"or split crew for resource {resources}"
            ),
        ))
    return recommendations


def _root_title(task) -> str:
    seen = set()
    while task.parent is not None and task.parent.id not in seen:
        seen.add(task.id)
        task = task.parent
    return task.title


def schedule_tasks_from_project(tasks) -> List[ScheduleTask]:
    """Project tasks as schedule records.

    Each task is grouped under the title of its top-level ancestor, runs to
    its final end date, and uses its owner's e-mail as resource so overlaps
    surface double-booked owners.
    """
    return [
        ScheduleTask(
            id=str(task.id),
            phase=_root_title(task),
            name=task.title,
            start=task.start_date.isoformat(),
            end=task.end_date_final.isoformat(),
            resources=[task.owner.email] if task.owner is not None else None,
            percent_complete=task.progress,
            notes=task.description,
        )
        for task in tasks
    ]
