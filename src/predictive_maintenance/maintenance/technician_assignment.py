"""
Technician Assignment Resolver
Matches maintenance tasks to qualified, available technicians
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
import logging

import pulp

from predictive_maintenance.config.settings import settings
from predictive_maintenance.maintenance.models import (
    MaintenanceTask, SchedulingConstraints, Technician, TechnicianAssignment, serialize
)

logger = logging.getLogger(__name__)

# Weight of leaving a task unassigned relative to labor cost in exclusive mode
UNASSIGNED_PENALTY = 1e5


@dataclass
class AssignmentResult:
    """Assignments plus tasks nobody could take"""
    assignments: List[TechnicianAssignment] = field(default_factory=list)
    unassigned_tasks: List[str] = field(default_factory=list)
    exclusive: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return serialize(self)


class TechnicianAssignmentResolver:
    """
    Skill-based assignment

    Default mode lets every qualified technician claim every matching task,
    so a task can appear under more than one technician. Exclusive mode
    solves a binary assignment with PuLP: each task goes to at most one
    qualified technician, labor cost is minimized and each technician is
    capped at ``max_daily_hours``.
    """

    def __init__(self, hourly_rate: Optional[float] = None, max_daily_hours: Optional[float] = None):
        self.hourly_rate = hourly_rate if hourly_rate is not None else settings.get_cost_config().hourly_rate
        self.max_daily_hours = (max_daily_hours if max_daily_hours is not None
                                else settings.get_optimizer_config().max_daily_technician_hours)

    @staticmethod
    def qualifies(technician: Technician, task: MaintenanceTask) -> bool:
        skills = {s.lower() for s in technician.specializations}
        return any(skill.lower() in skills for skill in task.required_skills)

    def available_technicians(self,
                              technicians: List[Technician],
                              scheduled_date: Optional[datetime] = None,
                              constraints: Optional[SchedulingConstraints] = None) -> List[Technician]:
        """Active technicians that are not marked unavailable on the scheduled day"""
        available = []
        availability = constraints.technician_availability if constraints else {}
        day = scheduled_date.date() if scheduled_date else None

        for tech in technicians:
            if not tech.is_active:
                continue
            if day is not None and not tech.is_available_on(day):
                logger.debug(f"Technician {tech.technician_id} unavailable on {day}")
                continue
            if day is not None and tech.technician_id in availability:
                if day.isoformat() not in [str(d)[:10] for d in availability[tech.technician_id]]:
                    logger.debug(f"Technician {tech.technician_id} not listed as available on {day}")
                    continue
            available.append(tech)
        return available

    def resolve(self,
                tasks: List[MaintenanceTask],
                technicians: List[Technician],
                scheduled_date: Optional[datetime] = None,
                constraints: Optional[SchedulingConstraints] = None,
                exclusive: bool = False) -> AssignmentResult:
        """Assign tasks to technicians

        Args:
            tasks: Tasks of one schedule
            technicians: Candidate technicians
            scheduled_date: Day the work happens, used for availability
            constraints: Scheduling constraints with optional technician availability
            exclusive: Assign each task to exactly one technician

        Returns:
            AssignmentResult
        """
        candidates = self.available_technicians(technicians, scheduled_date, constraints)

        if exclusive:
            return self._resolve_exclusive(tasks, candidates)

        assignments = []
        claimed = set()
        for tech in candidates:
            matching = [t for t in tasks if self.qualifies(tech, t)]
            if not matching:
                continue
            claimed.update(t.task_id for t in matching)
            assignments.append(self._build_assignment(tech, matching))

        unassigned = [t.task_id for t in tasks if t.task_id not in claimed]
        if unassigned:
            logger.warning(f"No qualified technician for tasks: {', '.join(unassigned)}")
        return AssignmentResult(assignments=assignments, unassigned_tasks=unassigned, exclusive=False)

    def _resolve_exclusive(self, tasks: List[MaintenanceTask], technicians: List[Technician]) -> AssignmentResult:
        prob = pulp.LpProblem("TechnicianAssignment", pulp.LpMinimize)

        # Decision variables only for qualified pairs
        assign_vars = {}
        for i, task in enumerate(tasks):
            for j, tech in enumerate(technicians):
                if self.qualifies(tech, task):
                    assign_vars[(i, j)] = pulp.LpVariable(f"assign_{i}_{j}", cat='Binary')

        if not assign_vars:
            return AssignmentResult(unassigned_tasks=[t.task_id for t in tasks], exclusive=True)

        # Each task to at most one technician
        for i, _ in enumerate(tasks):
            task_vars = [v for (ti, _), v in assign_vars.items() if ti == i]
            if task_vars:
                prob += pulp.lpSum(task_vars) <= 1

        # Technician capacity
        for j, _ in enumerate(technicians):
            tech_terms = [v * tasks[ti].estimated_time_minutes / 60.0
                          for (ti, tj), v in assign_vars.items() if tj == j]
            if tech_terms:
                prob += pulp.lpSum(tech_terms) <= self.max_daily_hours

        # Objective: assign as many tasks as possible at minimum labor cost
        cost_terms = []
        for (i, j), var in assign_vars.items():
            rate = technicians[j].hourly_rate if technicians[j].hourly_rate is not None else self.hourly_rate
            cost = tasks[i].estimated_time_minutes / 60.0 * rate
            cost_terms.append(var * (cost - UNASSIGNED_PENALTY))
        prob += pulp.lpSum(cost_terms)

        prob.solve(pulp.PULP_CBC_CMD(msg=0))

        if prob.status != pulp.LpStatusOptimal:
            logger.error(f"Exclusive assignment solver ended with status {pulp.LpStatus[prob.status]}")
            return AssignmentResult(unassigned_tasks=[t.task_id for t in tasks], exclusive=True)

        per_tech: Dict[int, List[MaintenanceTask]] = {}
        assigned = set()
        for (i, j), var in sorted(assign_vars.items()):
            if var.varValue is not None and var.varValue > 0.5:
                per_tech.setdefault(j, []).append(tasks[i])
                assigned.add(tasks[i].task_id)

        assignments = [self._build_assignment(technicians[j], per_tech[j]) for j in sorted(per_tech)]
        unassigned = [t.task_id for t in tasks if t.task_id not in assigned]
        if unassigned:
            logger.warning(f"Exclusive assignment left tasks unassigned: {', '.join(unassigned)}")
        return AssignmentResult(assignments=assignments, unassigned_tasks=unassigned, exclusive=True)

    @staticmethod
    def _build_assignment(tech: Technician, matching: List[MaintenanceTask]) -> TechnicianAssignment:
        task_skills = {s.lower() for t in matching for s in t.required_skills}
        specialization = next((s for s in tech.specializations if s.lower() in task_skills),
                              tech.specializations[0] if tech.specializations else 'general')
        return TechnicianAssignment(
            technician_id=tech.technician_id,
            technician_name=tech.name,
            specialization=specialization,
            assigned_tasks=[t.task_id for t in matching],
            estimated_hours=round(sum(t.estimated_time_minutes for t in matching) / 60, 1),
        )
