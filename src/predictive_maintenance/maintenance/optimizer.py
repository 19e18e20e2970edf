"""
Fleet Optimizer Module
Multi-objective optimization of the maintenance schedules in a time window
"""

import copy
import hashlib
import json
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from datetime import datetime, timedelta, date
from collections import defaultdict
import logging

from predictive_maintenance.business_logic.cost_benefit_analysis import CostEstimator
from predictive_maintenance.config.settings import OptimizerConfig, settings
from predictive_maintenance.data_ingestion.repositories import AuditEvent, AuditSink, PersistenceStore
from predictive_maintenance.exceptions import ConflictError, ValidationError
from predictive_maintenance.maintenance.models import (
    MaintenanceSchedule, MaintenanceType, PriorityLevel, ScheduleStatus, Technician,
    TechnicianAssignment, serialize
)
from predictive_maintenance.maintenance.priority_calculator import PriorityCalculator
from predictive_maintenance.utils.helpers import days_between, parse_period, round_currency, stable_digest
from predictive_maintenance.utils.logger import log_execution_time

logger = logging.getLogger(__name__)

OBJECTIVES = (
    'minimize_cost',
    'maximize_availability',
    'minimize_downtime',
    'balance_workload',
    'ensure_compliance',
    'optimize_resources',
)

MOVABLE_STATUSES = (ScheduleStatus.SCHEDULED, ScheduleStatus.RESCHEDULED)
PROTECTED_PRIORITIES = (PriorityLevel.CRITICAL, PriorityLevel.HIGH)
EXTERNAL_CONTRACTOR_ID = 'external_contractor'

IMPLEMENTATION_STEPS = {
    'schedule_adjustment': [
        'Confirm new dates with equipment owners',
        'Update technician calendars',
        'Notify affected procedure owners',
    ],
    'resource_reallocation': [
        'Confirm receiving technician availability',
        'Hand over task documentation',
        'Update work orders with new assignee',
    ],
    'task_consolidation': [
        'Merge task lists into the earliest visit',
        'Cancel the absorbed visits',
        'Stage parts for the combined visit',
    ],
    'preventive_to_predictive': [
        'Enable condition monitoring triggers',
        'Convert schedule type to predictive',
        'Review sensor thresholds after one cycle',
    ],
    'batch_processing': [
        'Group same-category equipment on one day',
        'Prepare shared tooling and setup',
        'Sequence equipment to minimize travel',
    ],
    'outsourcing': [
        'Request contractor quotes',
        'Issue purchase order',
        'Brief contractor on safety requirements',
    ],
}

REQUIRED_APPROVALS = {
    'schedule_adjustment': ['maintenance_supervisor'],
    'resource_reallocation': ['maintenance_supervisor'],
    'task_consolidation': ['maintenance_supervisor', 'operations_manager'],
    'preventive_to_predictive': ['reliability_engineer'],
    'batch_processing': ['maintenance_supervisor'],
    'outsourcing': ['operations_manager', 'procurement'],
}

COMPLEXITY = {
    'schedule_adjustment': 'low',
    'resource_reallocation': 'medium',
    'task_consolidation': 'medium',
    'preventive_to_predictive': 'low',
    'batch_processing': 'medium',
    'outsourcing': 'high',
}


def snapshot_fingerprint(schedules: List[MaintenanceSchedule]) -> str:
    """Hash of (schedule_id, version) pairs identifying one consistent schedule set"""
    pairs = sorted((s.schedule_id, s.version) for s in schedules)
    return hashlib.sha256(json.dumps(pairs).encode('utf-8')).hexdigest()


@dataclass
class OptimizationObjectives:
    """Normalized objective weights"""
    weights: Dict[str, float]

    @classmethod
    def from_input(cls, objectives: Any) -> 'OptimizationObjectives':
        """Accept {name: weight}, [{objective, weight}] or [name, ...]

        Raises:
            ValidationError: Unknown objective, negative weight or non-positive total
        """
        if isinstance(objectives, dict):
            raw = dict(objectives)
        elif isinstance(objectives, (list, tuple)):
            raw = {}
            for item in objectives:
                if isinstance(item, dict):
                    raw[item.get('objective')] = item.get('weight', 1.0)
                else:
                    raw[item] = 1.0
        else:
            raise ValidationError("objectives must be a mapping or a list")

        weights = {}
        for name, weight in raw.items():
            if name not in OBJECTIVES:
                raise ValidationError(f"Unknown objective {name!r}; expected one of: {', '.join(OBJECTIVES)}")
            try:
                weight = float(weight)
            except (TypeError, ValueError):
                raise ValidationError(f"Weight for {name} must be a number")
            if weight < 0:
                raise ValidationError(f"Weight for {name} cannot be negative")
            weights[name] = weight

        total = sum(weights.values())
        if total <= 0:
            raise ValidationError("Objective weights must sum to a positive value")
        return cls(weights={k: weights[k] / total for k in sorted(weights)})


@dataclass
class OptimizationConstraints:
    max_daily_technician_hours: float
    max_schedules_per_day: int
    max_cost_increase: float
    parts_inventory: Optional[Dict[str, int]] = None

    @classmethod
    def from_input(cls, data: Optional[Dict[str, Any]], config: OptimizerConfig) -> 'OptimizationConstraints':
        data = data or {}
        constraints = cls(
            max_daily_technician_hours=float(data.get('max_daily_technician_hours', config.max_daily_technician_hours)),
            max_schedules_per_day=int(data.get('max_schedules_per_day', config.max_schedules_per_day)),
            max_cost_increase=float(data.get('max_cost_increase', config.max_cost_increase)),
            parts_inventory=data.get('parts_inventory'),
        )
        if constraints.max_daily_technician_hours <= 0 or constraints.max_schedules_per_day < 1:
            raise ValidationError("Daily technician hours and schedules per day must be positive")
        return constraints


@dataclass
class Bottleneck:
    bottleneck_type: str  # technician_availability, parts_availability, time_constraints, equipment_conflicts
    description: str
    affected_items: List[str] = field(default_factory=list)
    severity: str = 'medium'


@dataclass
class ResourceAnalysis:
    """Utilization, cost and bottlenecks of a schedule set"""
    total_schedules: int = 0
    window_days: int = 0
    technician_utilization: Dict[str, float] = field(default_factory=dict)
    total_demand_hours: float = 0.0
    total_capacity_hours: float = 0.0
    daily_schedule_counts: Dict[str, int] = field(default_factory=dict)
    total_cost: float = 0.0
    cost_by_priority: Dict[str, float] = field(default_factory=dict)
    unassigned_tasks: Dict[str, List[str]] = field(default_factory=dict)
    parts_shortfalls: Dict[str, int] = field(default_factory=dict)
    bottlenecks: List[Bottleneck] = field(default_factory=list)


@dataclass
class Recommendation:
    recommendation_id: str
    recommendation_type: str
    description: str
    affected_schedules: List[str]
    expected_benefits: Dict[str, float]
    implementation_complexity: str
    implementation_steps: List[str]
    required_approvals: List[str]
    score: float = 0.0
    actions: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class OptimizationRun:
    """Immutable record of one optimization over a schedule snapshot"""
    optimization_id: str
    created_at: datetime
    period_start: datetime
    period_end: datetime
    objectives: Dict[str, float]
    constraints: OptimizationConstraints
    snapshot_fingerprint: str
    snapshot: List[MaintenanceSchedule]
    analysis: ResourceAnalysis
    recommendations: List[Recommendation]
    applied_recommendations: List[str]
    optimized_schedules: List[MaintenanceSchedule]
    changed_schedule_ids: List[str]
    change_summary: Dict[str, Any]
    validation: Dict[str, Any]
    publishable: bool
    implementation_plan: Dict[str, Any]

    def to_dict(self, include_snapshot: bool = False) -> Dict[str, Any]:
        data = serialize(self)
        if not include_snapshot:
            data.pop('snapshot')
            data['snapshot_schedule_ids'] = [s.schedule_id for s in self.snapshot]
        return data


class _Metrics:
    """Aggregate measures used to price recommendations"""

    def __init__(self, schedules: Dict[str, MaintenanceSchedule], reference_time: datetime,
                 window_days: int, constraints: OptimizationConstraints):
        active = [s for s in schedules.values() if s.is_active]
        self.total_cost = sum(s.cost_analysis.total_cost_estimate for s in active)
        self.downtime_hours = sum(s.estimated_duration_hours for s in active)
        self.labor_hours = sum(a.estimated_hours for s in active for a in s.technician_assignments)

        tech_day = defaultdict(float)
        day_schedules = defaultdict(list)
        for s in active:
            day_schedules[s.scheduled_date.date()].append(s)
            for a in s.technician_assignments:
                if a.technician_id != EXTERNAL_CONTRACTOR_ID:
                    tech_day[(a.technician_id, s.scheduled_date.date())] += a.estimated_hours

        overload = sum(max(0.0, h - constraints.max_daily_technician_hours) for h in tech_day.values())
        for day_items in day_schedules.values():
            excess = len(day_items) - constraints.max_schedules_per_day
            if excess > 0:
                overload += excess * sum(s.estimated_duration_hours for s in day_items) / len(day_items)
        self.overload_hours = overload

        exposure = 0.0
        for s in active:
            days_out = max(0.0, days_between(reference_time, s.scheduled_date))
            if _unassigned_tasks(s):
                days_out += window_days
            exposure += s.failure_probability * days_out
        self.risk_exposure = exposure


def _unassigned_tasks(schedule: MaintenanceSchedule) -> List[str]:
    claimed = {t for a in schedule.technician_assignments for t in a.assigned_tasks}
    return [t.task_id for t in schedule.maintenance_tasks if t.task_id not in claimed]


def _pct(delta: float, base: float) -> float:
    return round(delta / base * 100, 2) if base else 0.0


class FleetOptimizer:
    """
    Analyze a window of schedules and propose an optimized schedule set

    The optimizer works on copies of one store snapshot and never writes
    schedules; ProposalApplier publishes a run.
    """

    def __init__(self,
                 store: PersistenceStore,
                 cost_estimator: Optional[CostEstimator] = None,
                 priority_calculator: Optional[PriorityCalculator] = None,
                 config: Optional[OptimizerConfig] = None):
        self.store = store
        self.cost_estimator = cost_estimator or CostEstimator()
        self.priority_calculator = priority_calculator or PriorityCalculator()
        self.config = config or settings.get_optimizer_config()
        self.minimum_lead_days = float(settings.get('timing.minimum_lead_days', 7))
        self.outsourcing_rate = self.cost_estimator.config.outsourcing_hourly_rate

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    @log_execution_time
    def optimize(self,
                 period: Any,
                 objectives: Any,
                 constraints: Optional[Dict[str, Any]] = None,
                 technicians: Optional[List[Technician]] = None,
                 reference_time: Optional[datetime] = None) -> OptimizationRun:
        """Run the optimization

        Args:
            period: {start_date, end_date} or (start, end)
            objectives: Objective weights
            constraints: Optional overrides of optimizer limits plus parts_inventory
            technicians: Technician roster used for capacity and reallocation
            reference_time: "now" for the computation

        Returns:
            OptimizationRun
        """
        start, end = parse_period(period)
        weights = OptimizationObjectives.from_input(objectives).weights
        limits = OptimizationConstraints.from_input(constraints, self.config)
        reference_time = reference_time or datetime.now()
        technicians = sorted(technicians or [], key=lambda t: t.technician_id)

        rates = {t.technician_id: t.hourly_rate for t in technicians if t.hourly_rate is not None}
        rates[EXTERNAL_CONTRACTOR_ID] = self.outsourcing_rate

        snapshot = self.store.list_schedules(start=start, end=end)
        fingerprint = snapshot_fingerprint(snapshot)
        window_days = (end.date() - start.date()).days + 1
        baseline = {s.schedule_id: copy.deepcopy(s) for s in snapshot}

        analysis = self._analyze(baseline, technicians, limits, window_days)
        recommendations = self._generate_recommendations(
            baseline, technicians, limits, weights, start, end, reference_time, window_days, analysis, rates
        )

        optimized, applied = self._build_optimized_set(
            baseline, recommendations, limits, reference_time, window_days, rates
        )
        changed = sorted(sid for sid, s in optimized.items() if s.to_dict() != baseline[sid].to_dict())
        change_summary = self._change_summary(baseline, optimized, recommendations, applied, changed)
        validation = self._validate(baseline, optimized, changed, technicians, limits, start, end,
                                    reference_time, change_summary)
        publishable = all(validation[k] for k in (
            'constraint_compliance', 'resource_feasibility', 'business_impact_acceptable', 'risk_level_acceptable'
        ))

        optimization_id = 'opt_' + stable_digest({
            'fingerprint': fingerprint,
            'objectives': weights,
            'constraints': serialize(limits),
            'period': [start.isoformat(), end.isoformat()],
            'reference_time': reference_time.isoformat(),
        }, length=16)

        run = OptimizationRun(
            optimization_id=optimization_id,
            created_at=reference_time,
            period_start=start,
            period_end=end,
            objectives=weights,
            constraints=limits,
            snapshot_fingerprint=fingerprint,
            snapshot=[copy.deepcopy(s) for s in snapshot],
            analysis=analysis,
            recommendations=recommendations,
            applied_recommendations=applied,
            optimized_schedules=[optimized[sid] for sid in sorted(optimized)],
            changed_schedule_ids=changed,
            change_summary=change_summary,
            validation=validation,
            publishable=publishable,
            implementation_plan=self._implementation_plan(recommendations, applied, reference_time),
        )
        logger.info(f"Optimization {optimization_id}: {len(snapshot)} schedules, "
                    f"{len(recommendations)} recommendations, {len(changed)} changes, publishable={publishable}")
        return run

    # ------------------------------------------------------------------
    # (a) Analysis
    # ------------------------------------------------------------------

    def _analyze(self, schedules: Dict[str, MaintenanceSchedule], technicians: List[Technician],
                 limits: OptimizationConstraints, window_days: int) -> ResourceAnalysis:
        active = sorted((s for s in schedules.values() if s.is_active), key=lambda s: (s.scheduled_date, s.schedule_id))
        analysis = ResourceAnalysis(total_schedules=len(active), window_days=window_days)

        capacity_per_tech = limits.max_daily_technician_hours * window_days
        tech_hours = {t.technician_id: 0.0 for t in technicians if t.is_active}
        tech_day = defaultdict(float)
        daily = defaultdict(list)
        parts_demand = defaultdict(int)

        for s in active:
            day = s.scheduled_date.date()
            daily[day].append(s.schedule_id)
            for a in s.technician_assignments:
                if a.technician_id == EXTERNAL_CONTRACTOR_ID:
                    continue
                tech_hours[a.technician_id] = tech_hours.get(a.technician_id, 0.0) + a.estimated_hours
                tech_day[(a.technician_id, day)] += a.estimated_hours
            for task in s.maintenance_tasks:
                for part in task.required_parts:
                    parts_demand[part.part_number] += part.quantity
            unassigned = _unassigned_tasks(s)
            if unassigned:
                analysis.unassigned_tasks[s.schedule_id] = unassigned
            level = s.priority_level.value
            analysis.cost_by_priority[level] = round_currency(
                analysis.cost_by_priority.get(level, 0.0) + s.cost_analysis.total_cost_estimate
            )

        analysis.technician_utilization = {
            tech_id: round(hours / capacity_per_tech * 100, 1) if capacity_per_tech else 0.0
            for tech_id, hours in sorted(tech_hours.items())
        }
        analysis.total_demand_hours = round(sum(tech_hours.values()), 2)
        analysis.total_capacity_hours = round(capacity_per_tech * sum(1 for t in technicians if t.is_active), 2)
        analysis.daily_schedule_counts = {d.isoformat(): len(ids) for d, ids in sorted(daily.items())}
        analysis.total_cost = round_currency(sum(s.cost_analysis.total_cost_estimate for s in active))

        if limits.parts_inventory is not None:
            for part_number, needed in sorted(parts_demand.items()):
                available = int(limits.parts_inventory.get(part_number, 0))
                if needed > available:
                    analysis.parts_shortfalls[part_number] = needed - available

        bottlenecks = analysis.bottlenecks
        for (tech_id, day), hours in sorted(tech_day.items(), key=lambda kv: (kv[0][1], kv[0][0])):
            if hours > limits.max_daily_technician_hours:
                bottlenecks.append(Bottleneck(
                    'technician_availability',
                    f"{tech_id} booked {hours:.1f}h on {day.isoformat()} "
                    f"(limit {limits.max_daily_technician_hours:.1f}h)",
                    [tech_id, day.isoformat()], 'high',
                ))
        if analysis.total_demand_hours > analysis.total_capacity_hours:
            bottlenecks.append(Bottleneck(
                'technician_availability',
                f"Demand {analysis.total_demand_hours:.1f}h exceeds capacity {analysis.total_capacity_hours:.1f}h",
                [], 'high',
            ))
        if analysis.unassigned_tasks:
            bottlenecks.append(Bottleneck(
                'technician_availability',
                f"{sum(len(v) for v in analysis.unassigned_tasks.values())} tasks have no qualified technician",
                sorted(analysis.unassigned_tasks), 'high',
            ))
        if analysis.parts_shortfalls:
            bottlenecks.append(Bottleneck(
                'parts_availability',
                f"Insufficient stock for {len(analysis.parts_shortfalls)} part numbers",
                sorted(analysis.parts_shortfalls), 'high',
            ))
        for day, ids in sorted(daily.items()):
            if len(ids) > limits.max_schedules_per_day:
                bottlenecks.append(Bottleneck(
                    'time_constraints',
                    f"{len(ids)} schedules on {day.isoformat()} (limit {limits.max_schedules_per_day})",
                    sorted(ids), 'medium',
                ))
        for s in active:
            if s.scheduled_date.date() in s.scheduling_constraints.excluded_dates:
                bottlenecks.append(Bottleneck(
                    'time_constraints', f"{s.schedule_id} falls on an excluded date", [s.schedule_id], 'medium',
                ))

        by_equipment = defaultdict(list)
        for s in active:
            by_equipment[s.equipment_id].append(s)
        for equipment_id, items in sorted(by_equipment.items()):
            for prev, nxt in zip(items, items[1:]):
                if nxt.scheduled_date < prev.scheduled_end:
                    bottlenecks.append(Bottleneck(
                        'equipment_conflicts',
                        f"Overlapping maintenance windows on {equipment_id}",
                        [prev.schedule_id, nxt.schedule_id], 'medium',
                    ))

        return analysis

    # ------------------------------------------------------------------
    # (b) Recommendations
    # ------------------------------------------------------------------

    def _generate_recommendations(self, schedules, technicians, limits, weights, start, end,
                                  reference_time, window_days, analysis, rates) -> List[Recommendation]:
        movable = sorted(
            (s for s in schedules.values() if s.is_active and s.status in MOVABLE_STATUSES),
            key=lambda s: (s.scheduled_date, s.schedule_id)
        )
        candidates: List[Tuple[str, str, List[str], List[Dict[str, Any]]]] = []
        candidates += self._schedule_adjustments(schedules, movable, limits, start, end, reference_time)
        candidates += self._reallocations(schedules, movable, technicians, limits)
        candidates += self._consolidations(movable)
        candidates += self._conversions(movable)
        candidates += self._batches(schedules, movable, limits)
        candidates += self._outsourcing(movable, analysis)

        baseline = _Metrics(schedules, reference_time, window_days, limits)
        recommendations = []
        for rec_type, description, affected, actions in candidates:
            trial = copy.deepcopy(schedules)
            if not all(self._apply_action(trial, action, limits, reference_time, rates) for action in actions):
                continue
            benefits = self._benefits(baseline, _Metrics(trial, reference_time, window_days, limits))
            recommendations.append(Recommendation(
                recommendation_id=f"rec_{rec_type}_{stable_digest(actions, length=8)}",
                recommendation_type=rec_type,
                description=description,
                affected_schedules=sorted(set(affected)),
                expected_benefits=benefits,
                implementation_complexity=COMPLEXITY[rec_type],
                implementation_steps=list(IMPLEMENTATION_STEPS[rec_type]),
                required_approvals=list(REQUIRED_APPROVALS[rec_type]),
                score=self._score(benefits, baseline, weights),
                actions=actions,
            ))

        recommendations.sort(key=lambda r: (-r.score, r.recommendation_id))
        return recommendations

    def _benefits(self, before: _Metrics, after: _Metrics) -> Dict[str, float]:
        cost_savings = round_currency(before.total_cost - after.total_cost)
        efficiency_delta = (before.labor_hours - after.labor_hours) + (before.overload_hours - after.overload_hours)
        return {
            'cost_savings': cost_savings,
            'availability_improvement': _pct(before.downtime_hours - after.downtime_hours, before.downtime_hours),
            'efficiency_gain': _pct(efficiency_delta, before.labor_hours),
            'risk_reduction': _pct(before.risk_exposure - after.risk_exposure, before.risk_exposure),
        }

    def _score(self, benefits: Dict[str, float], baseline: _Metrics, weights: Dict[str, float]) -> float:
        points = dict(benefits)
        points['cost_savings'] = _pct(benefits['cost_savings'], baseline.total_cost)
        benefit_map = self.config.objective_benefit_map
        return round(sum(w * points.get(benefit_map.get(name, ''), 0.0) for name, w in weights.items()), 4)

    def _planning_days(self, start: datetime, end: datetime, reference_time: datetime) -> List[date]:
        first = max(start.date(), (reference_time + timedelta(days=self.minimum_lead_days)).date())
        return [first + timedelta(days=i) for i in range((end.date() - first).days + 1)]

    def _schedule_adjustments(self, schedules, movable, limits, start, end, reference_time):
        load = defaultdict(int)
        for s in schedules.values():
            if s.is_active:
                load[s.scheduled_date.date()] += 1

        days = self._planning_days(start, end, reference_time)
        results = []
        for day in sorted(d for d, c in load.items() if c > limits.max_schedules_per_day):
            excess = load[day] - limits.max_schedules_per_day
            on_day = [s for s in movable if s.scheduled_date.date() == day and s.priority_level not in PROTECTED_PRIORITIES]
            on_day.sort(key=lambda s: (-self.priority_calculator.rank(s.priority_level),
                                       s.failure_probability, s.schedule_id))
            actions = []
            for s in on_day[:excess]:
                options = [d for d in days
                           if d != day and load[d] < limits.max_schedules_per_day
                           and d not in s.scheduling_constraints.excluded_dates]
                if not options:
                    break
                target = min(options, key=lambda d: (load[d], d))
                new_date = datetime.combine(target, s.scheduled_date.time())
                if new_date > end:
                    continue
                load[target] += 1
                load[day] -= 1
                actions.append({'action': 'reschedule', 'schedule_id': s.schedule_id, 'new_date': new_date})
            if actions:
                results.append((
                    'schedule_adjustment',
                    f"Move {len(actions)} lower-priority schedules off {day.isoformat()}",
                    [a['schedule_id'] for a in actions], actions,
                ))
        return results

    def _reallocations(self, schedules, movable, technicians, limits):
        tech_day = defaultdict(float)
        for s in schedules.values():
            if s.is_active:
                for a in s.technician_assignments:
                    tech_day[(a.technician_id, s.scheduled_date.date())] += a.estimated_hours

        results = []
        overloaded = sorted((k for k, h in tech_day.items()
                             if h > limits.max_daily_technician_hours and k[0] != EXTERNAL_CONTRACTOR_ID),
                            key=lambda k: (k[1], k[0]))
        for tech_id, day in overloaded:
            actions = []
            for s in [m for m in movable if m.scheduled_date.date() == day]:
                if tech_day[(tech_id, day)] <= limits.max_daily_technician_hours:
                    break
                assignment = next((a for a in s.technician_assignments if a.technician_id == tech_id), None)
                if assignment is None:
                    continue
                tasks = [t for t in s.maintenance_tasks if t.task_id in assignment.assigned_tasks]
                receivers = [
                    t for t in technicians
                    if t.is_active and t.technician_id != tech_id and t.is_available_on(day)
                    and all(any(t.has_skill(skill) for skill in task.required_skills) for task in tasks)
                    and tech_day[(t.technician_id, day)] + assignment.estimated_hours <= limits.max_daily_technician_hours
                ]
                if not receivers:
                    continue
                receiver = min(receivers, key=lambda t: (tech_day[(t.technician_id, day)], t.technician_id))
                tech_day[(tech_id, day)] -= assignment.estimated_hours
                tech_day[(receiver.technician_id, day)] += assignment.estimated_hours
                actions.append({'action': 'reassign', 'schedule_id': s.schedule_id,
                                'from_technician': tech_id, 'to_technician': receiver.technician_id,
                                'to_technician_name': receiver.name})
            if actions:
                results.append((
                    'resource_reallocation',
                    f"Shift work from {tech_id} on {day.isoformat()} to technicians with spare capacity",
                    [a['schedule_id'] for a in actions], actions,
                ))
        return results

    def _consolidations(self, movable):
        window = timedelta(days=self.config.consolidation_window_days)
        by_equipment = defaultdict(list)
        for s in movable:
            by_equipment[s.equipment_id].append(s)

        results = []
        for equipment_id, items in sorted(by_equipment.items()):
            remaining = list(items)
            while len(remaining) > 1:
                anchor = remaining[0]
                cluster = [s for s in remaining[1:] if s.scheduled_date - anchor.scheduled_date <= window]
                remaining = [s for s in remaining[1:] if s not in cluster]
                if not cluster:
                    continue
                absorbed = [s.schedule_id for s in cluster]
                results.append((
                    'task_consolidation',
                    f"Combine {len(cluster) + 1} visits to {equipment_id} into one on "
                    f"{anchor.scheduled_date.date().isoformat()}",
                    [anchor.schedule_id] + absorbed,
                    [{'action': 'consolidate', 'schedule_id': anchor.schedule_id, 'absorbed_ids': absorbed}],
                ))
        return results

    def _conversions(self, movable):
        eligible = [s for s in movable
                    if s.maintenance_type == MaintenanceType.PREVENTIVE
                    and s.failure_probability < self.config.low_risk_probability]
        if not eligible:
            return []
        return [(
            'preventive_to_predictive',
            f"Convert {len(eligible)} low-risk preventive schedules to condition-based predictive maintenance",
            [s.schedule_id for s in eligible],
            [{'action': 'convert', 'schedule_id': s.schedule_id} for s in eligible],
        )]

    def _batches(self, schedules, movable, limits):
        window = timedelta(days=self.config.consolidation_window_days)
        load = defaultdict(int)
        for s in schedules.values():
            if s.is_active:
                load[s.scheduled_date.date()] += 1

        by_category = defaultdict(list)
        for s in movable:
            by_category[s.equipment_category].append(s)

        results = []
        for category, items in sorted(by_category.items()):
            if len({s.scheduled_date.date() for s in items}) < 2:
                continue
            anchor = items[0]
            room = limits.max_schedules_per_day - load[anchor.scheduled_date.date()]
            members = [
                s for s in items[1:]
                if s.scheduled_date.date() != anchor.scheduled_date.date()
                and s.equipment_id != anchor.equipment_id
                and s.scheduled_date - anchor.scheduled_date <= window
                and anchor.scheduled_date.date() not in s.scheduling_constraints.excluded_dates
            ][:max(room, 0)]
            if not members:
                continue
            results.append((
                'batch_processing',
                f"Batch {len(members) + 1} {category} schedules on {anchor.scheduled_date.date().isoformat()}",
                [anchor.schedule_id] + [s.schedule_id for s in members],
                [{'action': 'batch', 'schedule_ids': [s.schedule_id for s in members],
                  'target_date': anchor.scheduled_date}],
            ))
        return results

    def _outsourcing(self, movable, analysis):
        actions = [
            {'action': 'outsource', 'schedule_id': s.schedule_id, 'task_ids': analysis.unassigned_tasks[s.schedule_id]}
            for s in movable if s.schedule_id in analysis.unassigned_tasks
        ]
        if not actions:
            return []
        return [(
            'outsourcing',
            f"Outsource {sum(len(a['task_ids']) for a in actions)} tasks with no qualified in-house technician",
            [a['schedule_id'] for a in actions], actions,
        )]

    # ------------------------------------------------------------------
    # Applying actions to working copies
    # ------------------------------------------------------------------

    def _reprice(self, schedule: MaintenanceSchedule, rates: Dict[str, float]):
        schedule.cost_analysis = self.cost_estimator.estimate(
            schedule.maintenance_tasks, schedule.technician_assignments, schedule.sop_impact_analysis, rates
        )

    @staticmethod
    def _mark_moved(schedule: MaintenanceSchedule, new_date: datetime, reference_time: datetime, note: str):
        schedule.scheduled_date = new_date
        if schedule.status == ScheduleStatus.SCHEDULED:
            schedule.transition_to(ScheduleStatus.RESCHEDULED, reference_time)
        schedule.updated_at = reference_time
        schedule.notes.append(note)

    def _apply_action(self, working: Dict[str, MaintenanceSchedule], action: Dict[str, Any],
                      limits: OptimizationConstraints, reference_time: datetime,
                      rates: Dict[str, float]) -> bool:
        kind = action['action']
        target = working.get(action.get('schedule_id', ''))
        if kind != 'batch' and (target is None or not target.is_active or target.status not in MOVABLE_STATUSES):
            return False

        def day_load(day: date) -> int:
            return sum(1 for s in working.values() if s.is_active and s.scheduled_date.date() == day)

        if kind == 'reschedule':
            new_date = action['new_date']
            if day_load(new_date.date()) >= limits.max_schedules_per_day:
                return False
            self._mark_moved(target, new_date, reference_time, f"Rescheduled to {new_date.date().isoformat()}")
            return True

        if kind == 'reassign':
            source = next((a for a in target.technician_assignments if a.technician_id == action['from_technician']), None)
            if source is None:
                return False
            existing = next((a for a in target.technician_assignments if a.technician_id == action['to_technician']), None)
            if existing is not None:
                existing.assigned_tasks = sorted(set(existing.assigned_tasks) | set(source.assigned_tasks))
                existing.estimated_hours = round(existing.estimated_hours + source.estimated_hours, 1)
                target.technician_assignments.remove(source)
            else:
                source.technician_id = action['to_technician']
                source.technician_name = action['to_technician_name']
            target.notes.append(f"Reassigned from {action['from_technician']} to {action['to_technician']}")
            target.updated_at = reference_time
            self._reprice(target, rates)
            return True

        if kind == 'consolidate':
            absorbed = [working.get(sid) for sid in action['absorbed_ids']]
            if any(s is None or not s.is_active or s.status not in MOVABLE_STATUSES for s in absorbed):
                return False
            names = {t.task_name for t in target.maintenance_tasks}
            ids = {t.task_id for t in target.maintenance_tasks}
            by_tech = {a.technician_id: a for a in target.technician_assignments}
            added_minutes = 0
            for index, other in enumerate(absorbed, start=1):
                renamed = {}
                for task in other.maintenance_tasks:
                    if task.task_name in names:
                        continue
                    new_task = copy.deepcopy(task)
                    if new_task.task_id in ids:
                        new_task.task_id = f"{task.task_id}_{index}"
                    renamed[task.task_id] = new_task.task_id
                    target.maintenance_tasks.append(new_task)
                    names.add(new_task.task_name)
                    ids.add(new_task.task_id)
                    added_minutes += new_task.estimated_time_minutes
                for a in other.technician_assignments:
                    moved = [t for t in a.assigned_tasks if t in renamed]
                    if not moved:
                        continue
                    minutes = sum(t.estimated_time_minutes for t in other.maintenance_tasks if t.task_id in moved)
                    if a.technician_id not in by_tech:
                        by_tech[a.technician_id] = TechnicianAssignment(
                            a.technician_id, a.technician_name, a.specialization, [], 0.0
                        )
                        target.technician_assignments.append(by_tech[a.technician_id])
                    merged = by_tech[a.technician_id]
                    merged.assigned_tasks.extend(renamed[t] for t in moved)
                    merged.estimated_hours = round(merged.estimated_hours + minutes / 60, 1)
                other.transition_to(ScheduleStatus.CANCELLED, reference_time)
                other.notes.append(f"Consolidated into {target.schedule_id}")
            target.estimated_duration_hours = round(target.estimated_duration_hours + added_minutes / 60, 1)
            target.notes.append(f"Absorbed {', '.join(action['absorbed_ids'])}")
            target.updated_at = reference_time
            self._reprice(target, rates)
            return True

        if kind == 'convert':
            if target.maintenance_type != MaintenanceType.PREVENTIVE:
                return False
            factor = 1 - self.config.predictive_conversion_savings
            target.maintenance_type = MaintenanceType.PREDICTIVE
            for a in target.technician_assignments:
                a.estimated_hours = round(a.estimated_hours * factor, 1)
            target.notes.append("Converted from preventive to predictive")
            target.updated_at = reference_time
            self._reprice(target, rates)
            return True

        if kind == 'batch':
            members = [working.get(sid) for sid in action['schedule_ids']]
            if any(s is None or not s.is_active or s.status not in MOVABLE_STATUSES for s in members):
                return False
            target_date = action['target_date']
            if day_load(target_date.date()) + len(members) > limits.max_schedules_per_day:
                return False
            factor = 1 - self.config.batching_setup_fraction
            for s in members:
                self._mark_moved(s, datetime.combine(target_date.date(), s.scheduled_date.time()), reference_time,
                                 f"Batched with {s.equipment_category} work on {target_date.date().isoformat()}")
                for a in s.technician_assignments:
                    a.estimated_hours = round(a.estimated_hours * factor, 1)
                self._reprice(s, rates)
            return True

        if kind == 'outsource':
            tasks = [t for t in target.maintenance_tasks if t.task_id in action['task_ids']]
            if not tasks:
                return False
            target.technician_assignments.append(TechnicianAssignment(
                technician_id=EXTERNAL_CONTRACTOR_ID,
                technician_name='External contractor',
                specialization=(tasks[0].required_skills or ['general'])[0],
                assigned_tasks=[t.task_id for t in tasks],
                estimated_hours=round(sum(t.estimated_time_minutes for t in tasks) / 60, 1),
            ))
            target.notes.append(f"Outsourced {len(tasks)} tasks")
            target.updated_at = reference_time
            self._reprice(target, rates)
            return True

        raise ValidationError(f"Unknown optimization action {kind!r}")

    # ------------------------------------------------------------------
    # (c) Optimized set, (d) validation, (e) plan
    # ------------------------------------------------------------------

    def _build_optimized_set(self, baseline, recommendations, limits, reference_time, window_days, rates):
        working = copy.deepcopy(baseline)
        base_cost = _Metrics(baseline, reference_time, window_days, limits).total_cost
        applied = []
        for rec in recommendations:
            trial = copy.deepcopy(working)
            if not all(self._apply_action(trial, action, limits, reference_time, rates) for action in rec.actions):
                logger.debug(f"Skipping {rec.recommendation_id}: no longer applicable")
                continue
            if _Metrics(trial, reference_time, window_days, limits).total_cost - base_cost > limits.max_cost_increase + 1e-9:
                logger.debug(f"Skipping {rec.recommendation_id}: exceeds cost increase limit")
                continue
            working = trial
            applied.append(rec.recommendation_id)
        return working, applied

    @staticmethod
    def _change_summary(baseline, optimized, recommendations, applied, changed) -> Dict[str, Any]:
        applied_recs = [r for r in recommendations if r.recommendation_id in applied]

        def count(kind):
            return sum(1 for r in applied_recs for a in r.actions if a['action'] == kind)

        before_active = [s for s in baseline.values() if s.is_active]
        after_active = [s for s in optimized.values() if s.is_active]
        before_cost = sum(s.cost_analysis.total_cost_estimate for s in before_active)
        after_cost = sum(s.cost_analysis.total_cost_estimate for s in after_active)

        return {
            'tasks_rescheduled': sum(1 for sid in changed
                                     if optimized[sid].is_active
                                     and optimized[sid].scheduled_date != baseline[sid].scheduled_date),
            'tasks_consolidated': sum(len(a['absorbed_ids']) for r in applied_recs for a in r.actions
                                      if a['action'] == 'consolidate'),
            'resource_reallocations': count('reassign'),
            'schedules_converted': count('convert'),
            'tasks_outsourced': sum(len(a['task_ids']) for r in applied_recs for a in r.actions
                                    if a['action'] == 'outsource'),
            'net_cost_delta': round_currency(after_cost - before_cost),
            'availability_impact_hours': round(sum(s.estimated_duration_hours for s in before_active) -
                                               sum(s.estimated_duration_hours for s in after_active), 2),
        }

    def _validate(self, baseline, optimized, changed, technicians, limits, start, end,
                  reference_time, change_summary) -> Dict[str, Any]:
        issues = []
        active = [s for s in optimized.values() if s.is_active]

        daily = defaultdict(int)
        for s in active:
            daily[s.scheduled_date.date()] += 1
        for day, count in sorted(daily.items()):
            if count > limits.max_schedules_per_day:
                issues.append(f"{count} schedules on {day.isoformat()} exceed the daily limit")
        earliest = reference_time + timedelta(days=self.minimum_lead_days)
        for sid in changed:
            s = optimized[sid]
            if not s.is_active or s.scheduled_date == baseline[sid].scheduled_date:
                continue
            if s.scheduled_date.date() in s.scheduling_constraints.excluded_dates:
                issues.append(f"{sid} moved onto an excluded date")
            if s.scheduled_date < earliest or not start <= s.scheduled_date <= end:
                issues.append(f"{sid} moved outside the allowed window")
        constraint_compliance = not issues

        resource_issues = []
        tech_day = defaultdict(float)
        for s in active:
            for a in s.technician_assignments:
                if a.technician_id != EXTERNAL_CONTRACTOR_ID:
                    tech_day[(a.technician_id, s.scheduled_date.date())] += a.estimated_hours
            if _unassigned_tasks(s):
                resource_issues.append(f"{s.schedule_id} has unassigned tasks")
        for (tech_id, day), hours in sorted(tech_day.items()):
            if hours > limits.max_daily_technician_hours:
                resource_issues.append(f"{tech_id} over capacity on {day.isoformat()}")
        if limits.parts_inventory is not None:
            demand = defaultdict(int)
            for s in active:
                for task in s.maintenance_tasks:
                    for part in task.required_parts:
                        demand[part.part_number] += part.quantity
            for part_number, needed in sorted(demand.items()):
                if needed > int(limits.parts_inventory.get(part_number, 0)):
                    resource_issues.append(f"Insufficient stock of {part_number}")
        resource_feasibility = not resource_issues

        business_issues = []
        if change_summary['net_cost_delta'] > limits.max_cost_increase:
            business_issues.append("Net cost increase exceeds the allowed limit")
        if change_summary['availability_impact_hours'] < 0:
            business_issues.append("Optimized plan increases total downtime")
        business_impact_acceptable = not business_issues

        risk_issues = []
        for sid in changed:
            before, after = baseline[sid], optimized[sid]
            if before.priority_level in PROTECTED_PRIORITIES:
                if after.is_active and after.scheduled_date > before.scheduled_date:
                    risk_issues.append(f"{sid} ({before.priority_level.value}) moved later")
                if not after.is_active and not any("Consolidated into" in n for n in after.notes):
                    risk_issues.append(f"{sid} ({before.priority_level.value}) dropped")
        risk_level_acceptable = not risk_issues

        return {
            'constraint_compliance': constraint_compliance,
            'resource_feasibility': resource_feasibility,
            'business_impact_acceptable': business_impact_acceptable,
            'risk_level_acceptable': risk_level_acceptable,
            'issues': issues + resource_issues + business_issues + risk_issues,
        }

    def _implementation_plan(self, recommendations, applied, reference_time) -> Dict[str, Any]:
        applied_recs = [r for r in recommendations if r.recommendation_id in applied]
        phase_length = timedelta(days=self.config.phase_length_days)
        phase_start = reference_time + timedelta(days=self.config.rollout_lead_days)

        phases = []
        for complexity in ('low', 'medium', 'high'):
            group = [r for r in applied_recs if r.implementation_complexity == complexity]
            if not group:
                continue
            affected = sorted({sid for r in group for sid in r.affected_schedules})
            phases.append({
                'phase': len(phases) + 1,
                'name': f"{complexity.capitalize()}-complexity changes",
                'start_date': phase_start,
                'end_date': phase_start + phase_length,
                'recommendations': [r.recommendation_id for r in group],
                'rollback_plan': f"Restore {len(affected)} schedules to their snapshot versions",
                'affected_schedules': affected,
            })
            phase_start += phase_length

        stakeholders = sorted({a for r in applied_recs for a in r.required_approvals})
        return {
            'phases': phases,
            'change_management': {
                'stakeholders': stakeholders,
                'communication_plan': [
                    'Share the optimized schedule with affected technicians',
                    'Notify owners of procedures affected by moved schedules',
                ],
                'training_required': any(r.implementation_complexity == 'high' for r in applied_recs),
            },
            'monitoring_plan': {
                'kpis': ['schedule_adherence', 'technician_utilization', 'maintenance_cost', 'equipment_availability'],
                'review_frequency_days': self.config.phase_length_days,
                'rollback_triggers': [
                    'Failure on equipment whose maintenance was moved',
                    'Technician utilization above daily limit',
                ],
            },
        }


class ProposalApplier:
    """Publishes an optimization run after re-checking the snapshot"""

    def __init__(self, store: PersistenceStore, audit_sink: AuditSink):
        self.store = store
        self.audit_sink = audit_sink

    def apply(self, run: OptimizationRun, approved_by: str,
              reference_time: Optional[datetime] = None) -> Dict[str, Any]:
        """Save the run's changed schedules

        Raises:
            ValidationError: The run failed validation
            ConflictError: The schedule window changed since the snapshot
        """
        if not run.publishable:
            raise ValidationError(
                f"Optimization {run.optimization_id} is not publishable: {'; '.join(run.validation.get('issues', []))}"
            )
        if not approved_by:
            raise ValidationError("approved_by is required")

        reference_time = reference_time or datetime.now()
        current = self.store.list_schedules(start=run.period_start, end=run.period_end)
        if snapshot_fingerprint(current) != run.snapshot_fingerprint:
            raise ConflictError(
                f"Schedules in the window changed since optimization {run.optimization_id}",
                context={'optimization_id': run.optimization_id}
            )

        versions = {s.schedule_id: s.version for s in run.snapshot}
        optimized = {s.schedule_id: s for s in run.optimized_schedules}
        # All-or-nothing; a concurrent write to any schedule aborts the whole run
        stored = self.store.save_schedules(
            [(optimized[schedule_id], versions[schedule_id]) for schedule_id in run.changed_schedule_ids]
        )
        saved = [s.schedule_id for s in stored]

        self.audit_sink.record(AuditEvent(
            event_type='optimization_applied',
            subject_id=run.optimization_id,
            actor=approved_by,
            timestamp=reference_time,
            details={'schedule_ids': saved, 'recommendations': list(run.applied_recommendations)},
        ))
        logger.info(f"Applied optimization {run.optimization_id}: {len(saved)} schedules updated by {approved_by}")
        return {
            'optimization_id': run.optimization_id,
            'applied_by': approved_by,
            'applied_at': reference_time,
            'updated_schedules': saved,
        }
