"""
Collaborator Contracts and In-Memory Adapters

The engine consumes equipment, technicians, procedures and persistence through
these abstract interfaces. The in-memory adapters back the CLI, the tests and
any embedding application that does not bring its own storage.
"""

import copy
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import logging

from predictive_maintenance.exceptions import ConflictError, NotFoundError, ValidationError
from predictive_maintenance.maintenance.models import (
    Equipment, MaintenanceRecord, MaintenanceSchedule, PredictionOutcome,
    StandardOperatingProcedure, Technician, serialize
)

logger = logging.getLogger(__name__)


# ========================================
# Contracts
# ========================================

class EquipmentRegistry(ABC):
    """Source of equipment snapshots"""

    @abstractmethod
    def get_equipment(self, equipment_id: str, timeout: Optional[float] = None) -> Equipment:
        """Fetch one equipment unit

        Raises:
            NotFoundError: Unknown equipment id
            DependencyError: Registry unavailable or timed out
        """
        pass


class TechnicianDirectory(ABC):
    """Source of technicians"""

    @abstractmethod
    def list_technicians(self, timeout: Optional[float] = None) -> List[Technician]:
        pass


class SOPRegistry(ABC):
    """Source of standard operating procedures"""

    @abstractmethod
    def procedures_for_equipment(self, equipment_id: str,
                                 timeout: Optional[float] = None) -> List[StandardOperatingProcedure]:
        """Procedures that declare a requirement on the equipment"""
        pass


class PersistenceStore(ABC):
    """Schedules, optimization runs, analytics reports and historical records"""

    @abstractmethod
    def save_schedule(self, schedule: MaintenanceSchedule,
                      expected_version: Optional[int] = None) -> MaintenanceSchedule:
        """Persist a schedule and return the stored copy with its new version

        Raises:
            ConflictError: If expected_version does not match the stored version
        """
        pass

    @abstractmethod
    def save_schedules(self, updates: List[Tuple[MaintenanceSchedule, int]]) -> List[MaintenanceSchedule]:
        """Persist several schedules all-or-nothing

        Args:
            updates: (schedule, expected_version) pairs

        Raises:
            ConflictError: If any expected_version is stale; nothing is written
        """
        pass

    @abstractmethod
    def get_schedule(self, schedule_id: str) -> MaintenanceSchedule:
        pass

    @abstractmethod
    def list_schedules(self,
                       equipment_ids: Optional[Iterable[str]] = None,
                       start: Optional[datetime] = None,
                       end: Optional[datetime] = None) -> List[MaintenanceSchedule]:
        pass

    @abstractmethod
    def save_optimization_run(self, run: Any):
        pass

    @abstractmethod
    def get_optimization_run(self, optimization_id: str) -> Any:
        pass

    @abstractmethod
    def save_analytics_report(self, report: Any):
        pass

    @abstractmethod
    def list_maintenance_records(self, start: datetime, end: datetime,
                                 equipment_ids: Optional[Iterable[str]] = None) -> List[MaintenanceRecord]:
        pass

    @abstractmethod
    def list_prediction_outcomes(self, start: datetime, end: datetime) -> List[PredictionOutcome]:
        pass


@dataclass
class AuditEvent:
    """Append-only audit entry"""
    event_type: str
    subject_id: str
    actor: str
    timestamp: datetime
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return serialize(self)


class AuditSink(ABC):
    """Destination for audit events"""

    @abstractmethod
    def record(self, event: AuditEvent):
        pass


# ========================================
# In-memory adapters
# ========================================

class InMemoryEquipmentRegistry(EquipmentRegistry):

    def __init__(self, equipment: Optional[Iterable[Equipment]] = None):
        self._equipment = {e.equipment_id: e for e in (equipment or [])}

    def add(self, equipment: Equipment):
        self._equipment[equipment.equipment_id] = equipment

    def get_equipment(self, equipment_id: str, timeout: Optional[float] = None) -> Equipment:
        if equipment_id not in self._equipment:
            raise NotFoundError(f"Equipment {equipment_id} not found", context={'equipment_id': equipment_id})
        return copy.deepcopy(self._equipment[equipment_id])


class InMemoryTechnicianDirectory(TechnicianDirectory):

    def __init__(self, technicians: Optional[Iterable[Technician]] = None):
        self._technicians = list(technicians or [])

    def list_technicians(self, timeout: Optional[float] = None) -> List[Technician]:
        return copy.deepcopy(self._technicians)


class InMemorySOPRegistry(SOPRegistry):

    def __init__(self, procedures: Optional[Iterable[StandardOperatingProcedure]] = None):
        self._procedures = list(procedures or [])

    def procedures_for_equipment(self, equipment_id: str,
                                 timeout: Optional[float] = None) -> List[StandardOperatingProcedure]:
        return [copy.deepcopy(p) for p in self._procedures if p.requirement_for(equipment_id) is not None]


class InMemoryPersistenceStore(PersistenceStore):
    """Thread-safe store returning copies so callers never share state"""

    def __init__(self):
        self._lock = threading.RLock()
        self._schedules: Dict[str, MaintenanceSchedule] = {}
        self._runs: Dict[str, Any] = {}
        self._reports: List[Any] = []
        self._records: List[MaintenanceRecord] = []
        self._outcomes: List[PredictionOutcome] = []

    def save_schedule(self, schedule: MaintenanceSchedule,
                      expected_version: Optional[int] = None) -> MaintenanceSchedule:
        with self._lock:
            existing = self._schedules.get(schedule.schedule_id)
            current_version = existing.version if existing else 0
            if expected_version is not None and expected_version != current_version:
                raise ConflictError(
                    f"Schedule {schedule.schedule_id} is at version {current_version}, expected {expected_version}",
                    context={'schedule_id': schedule.schedule_id,
                             'current_version': current_version,
                             'expected_version': expected_version}
                )
            stored = copy.deepcopy(schedule)
            stored.version = current_version + 1
            self._schedules[stored.schedule_id] = stored
            logger.debug(f"Saved schedule {stored.schedule_id} v{stored.version}")
            return copy.deepcopy(stored)

    def save_schedules(self, updates: List[Tuple[MaintenanceSchedule, int]]) -> List[MaintenanceSchedule]:
        with self._lock:
            for schedule, expected_version in updates:
                existing = self._schedules.get(schedule.schedule_id)
                current_version = existing.version if existing else 0
                if expected_version != current_version:
                    raise ConflictError(
                        f"Schedule {schedule.schedule_id} is at version {current_version}, "
                        f"expected {expected_version}; no schedules were saved",
                        context={'schedule_id': schedule.schedule_id,
                                 'current_version': current_version,
                                 'expected_version': expected_version}
                    )
            return [self.save_schedule(schedule, expected_version) for schedule, expected_version in updates]

    def get_schedule(self, schedule_id: str) -> MaintenanceSchedule:
        with self._lock:
            if schedule_id not in self._schedules:
                raise NotFoundError(f"Schedule {schedule_id} not found", context={'schedule_id': schedule_id})
            return copy.deepcopy(self._schedules[schedule_id])

    def list_schedules(self,
                       equipment_ids: Optional[Iterable[str]] = None,
                       start: Optional[datetime] = None,
                       end: Optional[datetime] = None) -> List[MaintenanceSchedule]:
        wanted = set(equipment_ids) if equipment_ids else None
        with self._lock:
            result = [
                copy.deepcopy(s) for s in self._schedules.values()
                if (wanted is None or s.equipment_id in wanted)
                and (start is None or s.scheduled_date >= start)
                and (end is None or s.scheduled_date <= end)
            ]
        return sorted(result, key=lambda s: (s.scheduled_date, s.schedule_id))

    def save_optimization_run(self, run: Any):
        with self._lock:
            self._runs[run.optimization_id] = copy.deepcopy(run)

    def get_optimization_run(self, optimization_id: str) -> Any:
        with self._lock:
            if optimization_id not in self._runs:
                raise NotFoundError(f"Optimization run {optimization_id} not found",
                                    context={'optimization_id': optimization_id})
            return copy.deepcopy(self._runs[optimization_id])

    def save_analytics_report(self, report: Any):
        with self._lock:
            self._reports.append(copy.deepcopy(report))

    @property
    def analytics_reports(self) -> List[Any]:
        with self._lock:
            return copy.deepcopy(self._reports)

    def add_maintenance_record(self, record: MaintenanceRecord):
        with self._lock:
            self._records.append(copy.deepcopy(record))

    def add_prediction_outcome(self, outcome: PredictionOutcome):
        with self._lock:
            self._outcomes.append(copy.deepcopy(outcome))

    def list_maintenance_records(self, start: datetime, end: datetime,
                                 equipment_ids: Optional[Iterable[str]] = None) -> List[MaintenanceRecord]:
        wanted = set(equipment_ids) if equipment_ids else None
        with self._lock:
            return [
                copy.deepcopy(r) for r in self._records
                if start <= r.maintenance_date <= end and (wanted is None or r.equipment_id in wanted)
            ]

    def list_prediction_outcomes(self, start: datetime, end: datetime) -> List[PredictionOutcome]:
        with self._lock:
            return [copy.deepcopy(o) for o in self._outcomes if start <= o.predicted_at <= end]


class InMemoryAuditSink(AuditSink):

    def __init__(self):
        self._lock = threading.Lock()
        self.events: List[AuditEvent] = []

    def record(self, event: AuditEvent):
        with self._lock:
            self.events.append(event)
        logger.info(f"Audit: {event.event_type} {event.subject_id} by {event.actor}")


def _fixture_records(data: Dict[str, Any], section: str, factory: Callable[[Any], Any]) -> List[Any]:
    """Convert one fixture section, reporting malformed entries as ValidationError"""
    entries = data.get(section) or []
    if not isinstance(entries, list):
        raise ValidationError(f"Fixture section '{section}' must be a list", context={'section': section})

    records = []
    for index, raw in enumerate(entries):
        try:
            records.append(factory(raw))
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise ValidationError(
                f"Invalid {section}[{index}]: {e.__class__.__name__}: {e}",
                context={'section': section, 'index': index, 'entry': raw}
            )
    return records


def build_in_memory_backend(data: Dict[str, Any]) -> Dict[str, Any]:
    """Create in-memory collaborators from a plain fixture mapping

    Args:
        data: Mapping with optional ``equipment``, ``technicians``, ``procedures``,
            ``schedules``, ``maintenance_records`` and ``prediction_outcomes`` lists

    Returns:
        Keyword arguments for PredictiveMaintenanceService

    Raises:
        ValidationError: If an entry is missing a required field or has an unknown one
    """
    store = InMemoryPersistenceStore()
    for schedule in _fixture_records(data, 'schedules', MaintenanceSchedule.from_dict):
        store.save_schedule(schedule, expected_version=0)
    for record in _fixture_records(data, 'maintenance_records', MaintenanceRecord.from_dict):
        store.add_maintenance_record(record)
    for outcome in _fixture_records(data, 'prediction_outcomes', PredictionOutcome.from_dict):
        store.add_prediction_outcome(outcome)

    return {
        'equipment_registry': InMemoryEquipmentRegistry(_fixture_records(data, 'equipment', Equipment.from_dict)),
        'technician_directory': InMemoryTechnicianDirectory(
            _fixture_records(data, 'technicians', Technician.from_dict)
        ),
        'sop_registry': InMemorySOPRegistry(
            _fixture_records(data, 'procedures', StandardOperatingProcedure.from_dict)
        ),
        'store': store,
        'audit_sink': InMemoryAuditSink(),
    }
