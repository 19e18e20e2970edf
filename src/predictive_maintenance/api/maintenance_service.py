"""
Predictive Maintenance Service
Public operations of the engine wrapped in success/error envelopes
"""

import uuid
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass
from datetime import datetime
import logging

from predictive_maintenance.data_ingestion.repositories import (
    AuditEvent, AuditSink, EquipmentRegistry, PersistenceStore, SOPRegistry, TechnicianDirectory
)
from predictive_maintenance.exceptions import ComputationError, MaintenanceEngineError, ValidationError
from predictive_maintenance.forecasting.failure_probability import FailurePredictor
from predictive_maintenance.maintenance.maintenance_analytics import MaintenanceAnalyticsAggregator
from predictive_maintenance.maintenance.models import ScheduleStatus, parse_enum, serialize
from predictive_maintenance.maintenance.optimizer import FleetOptimizer, ProposalApplier
from predictive_maintenance.maintenance.scheduler import (
    BatchScheduler, ScheduleBuilder, ScheduleOptions, summarize_schedules
)
from predictive_maintenance.utils.helpers import call_with_retry, parse_period
from predictive_maintenance.utils.logger import log_context

logger = logging.getLogger(__name__)

HIGH_RISK_PROBABILITY = 0.7


@dataclass
class ServiceResponse:
    """Result envelope returned by every service operation"""
    success: bool
    timestamp: datetime
    data: Any = None
    error: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'data': serialize(self.data),
            'error': self.error,
            'timestamp': self.timestamp.isoformat(),
        }


class PredictiveMaintenanceService:
    """
    Service facade

    Each operation validates input, runs the relevant components and returns
    a ServiceResponse. Engine errors keep their kind and message; anything
    unexpected is reported as InternalError without internal details.
    """

    def __init__(self,
                 equipment_registry: EquipmentRegistry,
                 technician_directory: TechnicianDirectory,
                 sop_registry: SOPRegistry,
                 store: PersistenceStore,
                 audit_sink: AuditSink,
                 predictor: Optional[FailurePredictor] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 **components):
        self.store = store
        self.audit_sink = audit_sink
        self.technician_directory = technician_directory
        self.clock = clock or datetime.now
        self.builder = ScheduleBuilder(
            equipment_registry, technician_directory, sop_registry, store, audit_sink,
            predictor=predictor, **components
        )
        self.batch_scheduler = BatchScheduler(self.builder)
        self.optimizer = FleetOptimizer(store, cost_estimator=self.builder.cost_estimator,
                                        priority_calculator=self.builder.priority_calculator)
        self.applier = ProposalApplier(store, audit_sink)
        self.analytics = MaintenanceAnalyticsAggregator()

    def _respond(self, operation: str, func: Callable, *args, **kwargs) -> ServiceResponse:
        request_id = uuid.uuid4().hex[:12]
        with log_context(request_id=request_id):
            try:
                data = func(*args, **kwargs)
                return ServiceResponse(success=True, data=data, timestamp=self.clock())
            except ComputationError as e:
                logger.error(f"{operation} failed: {e.message}", extra={'error_context': e.context})
                return ServiceResponse(success=False, error=e.to_dict(), timestamp=self.clock())
            except MaintenanceEngineError as e:
                logger.warning(f"{operation} rejected: {e.kind}: {e.message}")
                return ServiceResponse(success=False, error=e.to_dict(), timestamp=self.clock())
            except Exception:
                logger.exception(f"{operation} failed unexpectedly")
                return ServiceResponse(
                    success=False,
                    error={'kind': 'InternalError', 'message': 'An internal error occurred'},
                    timestamp=self.clock(),
                )

    def _technicians(self):
        cfg = self.builder.config
        return call_with_retry(self.technician_directory.list_technicians,
                               timeout=cfg.request_timeout_seconds,
                               max_retries=cfg.max_retries,
                               backoff_seconds=cfg.retry_backoff_seconds,
                               operation="technician lookup")

    @staticmethod
    def _require_ids(equipment_ids: Optional[List[str]]) -> List[str]:
        if not equipment_ids or not isinstance(equipment_ids, (list, tuple)):
            raise ValidationError("equipment_ids must be a non-empty list")
        return list(dict.fromkeys(str(e) for e in equipment_ids))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def predict_failures(self, equipment_ids: List[str], reference_time: Optional[datetime] = None) -> ServiceResponse:
        """Failure predictions for the given equipment"""
        def run():
            ids = self._require_ids(equipment_ids)
            now = reference_time or self.clock()
            predictions, failures = [], {}
            for equipment_id in ids:
                with log_context(equipment_id=equipment_id):
                    try:
                        predictions.append(self.builder.predict(equipment_id, now))
                    except MaintenanceEngineError as e:
                        failures[equipment_id] = e.to_dict()
            return {
                'predictions': [p.to_dict() for p in predictions],
                'failures': failures,
                'summary': {
                    'total_predictions': len(predictions),
                    'high_risk_equipment': sorted(p.equipment_id for p in predictions
                                                  if p.probability_of_failure > HIGH_RISK_PROBABILITY),
                    'average_probability': round(sum(p.probability_of_failure for p in predictions) /
                                                 len(predictions), 4) if predictions else 0.0,
                },
            }
        return self._respond('predict_failures', run)

    def create_schedules(self, equipment_ids: List[str], options: Optional[Dict[str, Any]] = None,
                         reference_time: Optional[datetime] = None, actor: str = 'system') -> ServiceResponse:
        """Create schedules for the given equipment; per-id failures are reported, not raised"""
        def run():
            ids = self._require_ids(equipment_ids)
            parsed = ScheduleOptions.from_dict(options)
            result = self.batch_scheduler.create_schedules(ids, parsed, reference_time or self.clock(), actor)
            return result.to_dict()
        return self._respond('create_schedules', run)

    def get_schedules(self, equipment_ids: Optional[List[str]] = None, date_range: Any = None,
                      include_predictions: bool = False,
                      reference_time: Optional[datetime] = None) -> ServiceResponse:
        """Stored schedules, optionally with fresh predictions"""
        def run():
            start, end = parse_period(date_range) if date_range is not None else (None, None)
            schedules = self.store.list_schedules(equipment_ids=equipment_ids, start=start, end=end)
            data = {
                'schedules': [s.to_dict() for s in schedules],
                'summary': summarize_schedules(schedules, HIGH_RISK_PROBABILITY),
            }
            if include_predictions:
                now = reference_time or self.clock()
                predictions = {}
                for equipment_id in sorted({s.equipment_id for s in schedules}):
                    try:
                        predictions[equipment_id] = self.builder.predict(equipment_id, now).to_dict()
                    except MaintenanceEngineError as e:
                        logger.warning(f"Prediction unavailable for {equipment_id}: {e.message}")
                        predictions[equipment_id] = {'error': e.to_dict()}
                data['predictions'] = predictions
            return data
        return self._respond('get_schedules', run)

    def optimize(self, period: Any, objectives: Any, constraints: Optional[Dict[str, Any]] = None,
                 reference_time: Optional[datetime] = None) -> ServiceResponse:
        """Run the fleet optimizer and store the run"""
        def run():
            result = self.optimizer.optimize(
                period, objectives, constraints,
                technicians=self._technicians(),
                reference_time=reference_time or self.clock(),
            )
            self.store.save_optimization_run(result)
            return result.to_dict()
        return self._respond('optimize', run)

    def apply_optimization(self, optimization_id: str, approved_by: str,
                           reference_time: Optional[datetime] = None) -> ServiceResponse:
        """Publish a stored optimization run"""
        def run():
            optimization = self.store.get_optimization_run(optimization_id)
            return self.applier.apply(optimization, approved_by, reference_time or self.clock())
        return self._respond('apply_optimization', run)

    def update_schedule_status(self, schedule_id: str, status: str, actor: str = 'system',
                               reference_time: Optional[datetime] = None) -> ServiceResponse:
        """Move a schedule through its lifecycle"""
        def run():
            now = reference_time or self.clock()
            new_status = parse_enum(ScheduleStatus, status, 'status')
            schedule = self.store.get_schedule(schedule_id)
            previous = schedule.status
            schedule.transition_to(new_status, now)
            stored = self.store.save_schedule(schedule, expected_version=schedule.version)
            self.audit_sink.record(AuditEvent(
                event_type='schedule_status_changed',
                subject_id=schedule_id,
                actor=actor,
                timestamp=now,
                details={'from': previous.value, 'to': new_status.value},
            ))
            return stored.to_dict()
        return self._respond('update_schedule_status', run)

    def generate_analytics(self, period: Any, reference_time: Optional[datetime] = None) -> ServiceResponse:
        """Analytics report for a period"""
        def run():
            start, end = parse_period(period)
            report = self.analytics.generate(
                (start, end),
                self.store.list_maintenance_records(start, end),
                self.store.list_prediction_outcomes(start, end),
                self.store.list_schedules(start=start, end=end),
                technicians=self._technicians(),
                reference_time=reference_time or self.clock(),
            )
            self.store.save_analytics_report(report)
            return report.to_dict()
        return self._respond('generate_analytics', run)


def create_default_service(**overrides) -> PredictiveMaintenanceService:
    """Service over empty in-memory collaborators"""
    from predictive_maintenance.data_ingestion.repositories import build_in_memory_backend
    backend = build_in_memory_backend({})
    backend.update(overrides)
    return PredictiveMaintenanceService(**backend)
