"""Demo construction schedule served by ``GET /construction-schedule``."""
from typing import List

from .schemas import ConstructionSchedule, ScheduleTask

CONSTRUCTION_SCHEDULE = ConstructionSchedule.model_validate({
    "project": "F apartment new construction",
    "baseline_start": "2025-11-05",
    "baseline_end": "2025-12-04",
    "timezone": "UTC",
    "phases": [
        {
            "name": "Temporary works",
            "tasks": [
                {"id": "TEMP-CORE", "name": "Temporary works", "start": "2025-11-09", "end": "2025-12-04",
                 "resources": ["logistics"], "crew_size": 6, "percent_complete": 35},
                {"id": "TEMP-CARRY", "name": "Carrying in", "start": "2025-11-13", "end": "2025-11-21",
                 "dependencies": ["TEMP-CORE"], "resources": ["logistics"], "crew_size": 4, "percent_complete": 15},
                {"id": "TEMP-PREP", "name": "Preparation", "start": "2025-11-15", "end": "2025-11-18",
                 "dependencies": ["TEMP-CORE"], "resources": ["logistics", "hse"], "crew_size": 3,
                 "percent_complete": 20},
                {"id": "TEMP-SCAF-ASSY", "name": "Assembling scaffolding", "start": "2025-11-13", "end": "2025-11-24",
                 "dependencies": ["TEMP-PREP"], "resources": ["scaffolding"], "crew_size": 6, "percent_complete": 60},
                {"id": "TEMP-SCAF-CLEAN", "name": "Scaffolding dismantling / cleaning", "start": "2025-11-10",
                 "end": "2025-11-30", "dependencies": ["TEMP-SCAF-ASSY"], "resources": ["scaffolding"],
                 "crew_size": 6, "percent_complete": 0,
                 "notes": "Scheduled overlap with assembly; consider staging."},
            ],
        },
        {
            "name": "Soil / Foundation",
            "tasks": [
                {"id": "SOIL-CORE", "name": "Soil / foundation work", "start": "2025-11-11", "end": "2025-11-20",
                 "dependencies": ["TEMP-CORE"], "resources": ["earthworks"], "crew_size": 8, "percent_complete": 50},
                {"id": "SOIL-PREP", "name": "Foundation preparation", "start": "2025-11-13", "end": "2025-11-30",
                 "dependencies": ["SOIL-CORE"], "resources": ["engineering"], "crew_size": 4, "percent_complete": 20},
                {"id": "SOIL-MAT", "name": "Bringing in materials", "start": "2025-11-05", "end": "2025-11-16",
                 "resources": ["supply-chain"], "crew_size": 3, "percent_complete": 80},
            ],
        },
        {
            "name": "Plastering",
            "tasks": [
                {"id": "PLAST-CORE", "name": "Plastering", "start": "2025-11-13", "end": "2025-11-19",
                 "dependencies": ["SOIL-CORE", "TEMP-SCAF-ASSY"], "resources": ["plaster"], "crew_size": 5,
                 "percent_complete": 5},
                {"id": "PLAST-OUTER", "name": "Outer wall", "start": "2025-11-09", "end": "2025-11-26",
                 "dependencies": ["TEMP-SCAF-ASSY"], "resources": ["facade"], "crew_size": 5, "percent_complete": 0,
                 "notes": "Starts before plaster core ends; sequencing review required."},
            ],
        },
    ],
})


def flatten_schedule(schedule: ConstructionSchedule) -> List[ScheduleTask]:
    """One ``ScheduleTask`` per phase task, tagged with its phase name."""
    return [
        ScheduleTask(**task.model_dump(), phase=phase.name)
        for phase in schedule.phases
        for task in phase.tasks
    ]


SCHEDULE_TASKS = flatten_schedule(CONSTRUCTION_SCHEDULE)
