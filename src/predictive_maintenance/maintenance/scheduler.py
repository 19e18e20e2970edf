"""
Scheduler Module for Predictive Maintenance
Builds maintenance schedules for single equipment units and for batches
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
import json
import logging

from predictive_maintenance.business_logic.cost_benefit_analysis import CostEstimator
from predictive_maintenance.business_logic.predictive_triggers import AutomationTriggerGenerator
from predictive_maintenance.business_logic.sop_impact import SOPDependencyAnalyzer
from predictive_maintenance.config.settings import SchedulingConfig, settings
from predictive_maintenance.data_ingestion.repositories import (
    AuditEvent, AuditSink, EquipmentRegistry, PersistenceStore, SOPRegistry, TechnicianDirectory
)
from predictive_maintenance.exceptions import ComputationError, MaintenanceEngineError, ValidationError
from predictive_maintenance.forecasting.failure_probability import (
    FailurePrediction, FailurePredictor, HeuristicFailurePredictor, validate_prediction
)
from predictive_maintenance.maintenance.models import (
    Equipment, MaintenanceSchedule, MaintenanceType, PriorityLevel, ScheduleStatus, SchedulingConstraints, serialize
)
from predictive_maintenance.maintenance.priority_calculator import PriorityCalculator
from predictive_maintenance.maintenance.task_catalog import TaskCatalog
from predictive_maintenance.maintenance.technician_assignment import TechnicianAssignmentResolver
from predictive_maintenance.maintenance.timing_optimizer import MaintenanceTimingOptimizer
from predictive_maintenance.utils.helpers import call_with_retry, round_currency
from predictive_maintenance.utils.logger import context as log_thread_context, log_context

logger = logging.getLogger(__name__)

HIGH_PRIORITY_LEVELS = (PriorityLevel.CRITICAL, PriorityLevel.HIGH)


@dataclass
class ScheduleOptions:
    """Per-request scheduling options"""
    strategy: Optional[str] = None
    prediction_horizon_days: Optional[float] = None
    constraints: Optional[SchedulingConstraints] = None
    exclusive_assignment: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ScheduleOptions':
        data = data or {}
        constraints = data.get('constraints', data.get('scheduling_constraints'))
        return cls(
            strategy=data.get('strategy', data.get('optimization_strategy')),
            prediction_horizon_days=data.get('prediction_horizon_days'),
            constraints=None if constraints is None else SchedulingConstraints.from_dict(constraints),
            exclusive_assignment=bool(data.get('exclusive_assignment', False)),
        )


@dataclass
class BatchResult:
    """Outcome of a batch: per-id schedules and failures plus a summary"""
    schedules: List[MaintenanceSchedule] = field(default_factory=list)
    failures: Dict[str, Dict[str, str]] = field(default_factory=dict)
    summary: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'schedules': [s.to_dict() for s in self.schedules],
            'failures': dict(self.failures),
            'summary': serialize(self.summary),
        }


def schedule_id_for(equipment_id: str, reference_time: datetime) -> str:
    """Deterministic schedule id from equipment id and reference time"""
    return f"maint_sched_{equipment_id}_{reference_time.strftime('%Y%m%d%H%M%S')}"


def summarize_schedules(schedules: List[MaintenanceSchedule], high_risk_probability: float = 0.7) -> Dict[str, Any]:
    """Counts and totals over a set of schedules"""
    by_priority: Dict[str, int] = {level.value: 0 for level in PriorityLevel}
    by_type: Dict[str, int] = {}
    for schedule in schedules:
        by_priority[schedule.priority_level.value] += 1
        by_type[schedule.maintenance_type.value] = by_type.get(schedule.maintenance_type.value, 0) + 1

    return {
        'total_schedules': len(schedules),
        'schedules_by_priority': by_priority,
        'schedules_by_type': by_type,
        'total_estimated_cost': round_currency(sum(s.cost_analysis.total_cost_estimate for s in schedules)),
        'total_estimated_hours': round(sum(s.estimated_duration_hours for s in schedules), 2),
        'high_risk_equipment': sorted({s.equipment_id for s in schedules
                                       if s.failure_probability > high_risk_probability}),
    }


class ScheduleBuilder:
    """
    Orchestrates prediction, timing, tasks, assignments, SOP impact, cost,
    priority and triggers into one MaintenanceSchedule per equipment unit
    """

    def __init__(self,
                 equipment_registry: EquipmentRegistry,
                 technician_directory: TechnicianDirectory,
                 sop_registry: SOPRegistry,
                 store: PersistenceStore,
                 audit_sink: AuditSink,
                 predictor: Optional[FailurePredictor] = None,
                 timing_optimizer: Optional[MaintenanceTimingOptimizer] = None,
                 task_catalog: Optional[TaskCatalog] = None,
                 assignment_resolver: Optional[TechnicianAssignmentResolver] = None,
                 sop_analyzer: Optional[SOPDependencyAnalyzer] = None,
                 cost_estimator: Optional[CostEstimator] = None,
                 priority_calculator: Optional[PriorityCalculator] = None,
                 trigger_generator: Optional[AutomationTriggerGenerator] = None,
                 config: Optional[SchedulingConfig] = None):
        self.equipment_registry = equipment_registry
        self.technician_directory = technician_directory
        self.sop_registry = sop_registry
        self.store = store
        self.audit_sink = audit_sink

        self.predictor = predictor or HeuristicFailurePredictor()
        self.timing_optimizer = timing_optimizer or MaintenanceTimingOptimizer()
        self.task_catalog = task_catalog or TaskCatalog()
        self.assignment_resolver = assignment_resolver or TechnicianAssignmentResolver()
        self.sop_analyzer = sop_analyzer or SOPDependencyAnalyzer()
        self.cost_estimator = cost_estimator or CostEstimator()
        self.priority_calculator = priority_calculator or PriorityCalculator()
        self.trigger_generator = trigger_generator or AutomationTriggerGenerator()
        self.config = config or settings.get_scheduling_config()
        self.minimum_rul_days = settings.get_predictor_config().minimum_rul_days

    def _call(self, func, *args, operation: str):
        """Collaborator call with request-scoped timeout and one retry on DependencyError"""
        return call_with_retry(
            func, *args,
            timeout=self.config.request_timeout_seconds,
            max_retries=self.config.max_retries,
            backoff_seconds=self.config.retry_backoff_seconds,
            operation=operation,
        )

    def default_constraints(self) -> SchedulingConstraints:
        return SchedulingConstraints.from_dict(self.config.default_constraints)

    def predict(self, equipment_id: str, reference_time: Optional[datetime] = None) -> FailurePrediction:
        """Fetch equipment and predict its failure risk"""
        reference_time = reference_time or datetime.now()
        equipment = self._call(self.equipment_registry.get_equipment, equipment_id,
                               operation=f"equipment lookup {equipment_id}")
        prediction = self.predictor.predict(equipment, reference_time)
        return validate_prediction(prediction, self.minimum_rul_days)

    def build(self,
              equipment_id: str,
              options: Optional[ScheduleOptions] = None,
              reference_time: Optional[datetime] = None) -> MaintenanceSchedule:
        """Build (but do not persist) a schedule for one equipment unit"""
        options = options or ScheduleOptions()
        reference_time = reference_time or datetime.now()
        constraints = options.constraints or self.default_constraints()

        equipment = self._call(self.equipment_registry.get_equipment, equipment_id,
                               operation=f"equipment lookup {equipment_id}")
        try:
            return self._assemble(equipment, options, constraints, reference_time)
        except ComputationError as e:
            e.context.setdefault('equipment', equipment.to_dict())
            e.context.setdefault('reference_time', reference_time.isoformat())
            e.context.setdefault('options', serialize(options))
            raise

    def _assemble(self,
                  equipment: Equipment,
                  options: ScheduleOptions,
                  constraints: SchedulingConstraints,
                  reference_time: datetime) -> MaintenanceSchedule:
        equipment_id = equipment.equipment_id
        prediction = validate_prediction(self.predictor.predict(equipment, reference_time), self.minimum_rul_days)

        timing = self.timing_optimizer.optimize(
            equipment, prediction,
            strategy=options.strategy,
            horizon_days=options.prediction_horizon_days,
            reference_time=reference_time,
        )
        scheduled_date = self.timing_optimizer.apply_constraints(timing.scheduled_date, constraints, reference_time)

        tasks = self.task_catalog.generate(equipment, prediction)

        technicians = self._call(self.technician_directory.list_technicians, operation="technician lookup")
        assignment = self.assignment_resolver.resolve(
            tasks, technicians,
            scheduled_date=scheduled_date,
            constraints=constraints,
            exclusive=options.exclusive_assignment,
        )

        procedures = self._call(self.sop_registry.procedures_for_equipment, equipment_id,
                                operation=f"SOP lookup {equipment_id}")
        sop_impact = self.sop_analyzer.analyze(
            equipment_id, procedures, timing.estimated_duration_hours, scheduled_date
        )

        rates = {t.technician_id: t.hourly_rate for t in technicians if t.hourly_rate is not None}
        cost = self.cost_estimator.estimate(tasks, assignment.assignments, sop_impact, rates)

        triggers = self.trigger_generator.generate(equipment, prediction, scheduled_date, reference_time)

        notes = []
        if not timing.within_horizon:
            notes.append(f"Scheduled beyond the {options.prediction_horizon_days or 'default'} day horizon")
        if assignment.unassigned_tasks:
            notes.append(f"Unassigned tasks: {', '.join(assignment.unassigned_tasks)}")

        return MaintenanceSchedule(
            schedule_id=schedule_id_for(equipment_id, reference_time),
            equipment_id=equipment.equipment_id,
            equipment_name=equipment.name,
            equipment_category=equipment.category,
            maintenance_type=MaintenanceType.PREDICTIVE,
            scheduled_date=scheduled_date,
            estimated_duration_hours=timing.estimated_duration_hours,
            priority_level=self.priority_calculator.calculate(prediction.probability_of_failure),
            maintenance_tasks=tasks,
            technician_assignments=assignment.assignments,
            sop_impact_analysis=sop_impact,
            predictive_indicators=prediction.to_indicators(),
            cost_analysis=cost,
            scheduling_constraints=constraints,
            automation_triggers=triggers,
            created_at=reference_time,
            updated_at=reference_time,
            status=ScheduleStatus.SCHEDULED,
            notes=notes,
        )

    def create(self,
               equipment_id: str,
               options: Optional[ScheduleOptions] = None,
               reference_time: Optional[datetime] = None,
               actor: str = 'system') -> MaintenanceSchedule:
        """Build, persist and audit a schedule

        Raises:
            ConflictError: If a schedule with the same id already exists
        """
        reference_time = reference_time or datetime.now()
        try:
            schedule = self.build(equipment_id, options, reference_time)
        except ComputationError as e:
            logger.error(f"Computation failed for {equipment_id}: {e.message} "
                         f"input={json.dumps(serialize(e.context), sort_keys=True, default=str)}",
                         extra={'error_context': e.context, 'equipment_id_input': equipment_id})
            raise

        # Insert only; an existing schedule keeps its lifecycle state
        stored = self.store.save_schedule(schedule, expected_version=0)
        self.audit_sink.record(AuditEvent(
            event_type='schedule_created',
            subject_id=stored.schedule_id,
            actor=actor,
            timestamp=reference_time,
            details={'equipment_id': equipment_id,
                     'priority_level': stored.priority_level.value,
                     'total_cost_estimate': stored.cost_analysis.total_cost_estimate},
        ))
        logger.info(f"Created schedule {stored.schedule_id} ({stored.priority_level.value}) "
                    f"for {stored.scheduled_date.isoformat()}")
        return stored


class BatchScheduler:
    """Runs the schedule builder over many equipment ids on a bounded pool"""

    def __init__(self, builder: ScheduleBuilder, max_workers: Optional[int] = None):
        self.builder = builder
        self.max_workers = max_workers or builder.config.max_workers

    def create_schedules(self,
                         equipment_ids: List[str],
                         options: Optional[ScheduleOptions] = None,
                         reference_time: Optional[datetime] = None,
                         actor: str = 'system') -> BatchResult:
        """Schedule every equipment id, isolating per-id failures

        Raises:
            ValidationError: If no equipment ids are given
        """
        if not equipment_ids:
            raise ValidationError("equipment_ids must contain at least one id")

        # Collapse duplicates, keep first-seen order
        unique_ids = list(dict.fromkeys(str(e) for e in equipment_ids))
        if len(unique_ids) < len(equipment_ids):
            logger.info(f"Collapsed {len(equipment_ids) - len(unique_ids)} duplicate equipment ids")

        reference_time = reference_time or datetime.now()
        request_id = getattr(log_thread_context, 'request_id', None)
        slots: Dict[str, Any] = {}

        def work(equipment_id: str):
            with log_context(request_id=request_id, equipment_id=equipment_id):
                try:
                    slots[equipment_id] = self.builder.create(equipment_id, options, reference_time, actor)
                except MaintenanceEngineError as e:
                    logger.warning(f"Scheduling failed for {equipment_id}: {e.kind}: {e.message}")
                    slots[equipment_id] = e
                except Exception as e:
                    logger.exception(f"Unexpected error scheduling {equipment_id}")
                    slots[equipment_id] = e

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(unique_ids))) as executor:
            list(executor.map(work, unique_ids))

        result = BatchResult()
        for equipment_id in unique_ids:
            outcome = slots.get(equipment_id)
            if isinstance(outcome, MaintenanceSchedule):
                result.schedules.append(outcome)
            elif isinstance(outcome, MaintenanceEngineError):
                result.failures[equipment_id] = outcome.to_dict()
            else:
                result.failures[equipment_id] = {'kind': 'InternalError',
                                                 'message': 'Unexpected error while scheduling'}

        result.summary = {
            'total_schedules_created': len(result.schedules),
            'total_estimated_cost': round_currency(sum(s.cost_analysis.total_cost_estimate for s in result.schedules)),
            'total_estimated_hours': round(sum(s.estimated_duration_hours for s in result.schedules), 2),
            'high_priority_schedules': sum(1 for s in result.schedules if s.priority_level in HIGH_PRIORITY_LEVELS),
            'failed_equipment': len(result.failures),
        }
        logger.info(f"Batch complete: {len(result.schedules)} scheduled, {len(result.failures)} failed")
        return result
