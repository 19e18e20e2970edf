"""
Domain Models for Predictive Maintenance Scheduling
Equipment, technician, SOP and schedule containers shared by all components
"""

from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, date, timedelta
from enum import Enum
import copy

from predictive_maintenance.exceptions import ValidationError
from predictive_maintenance.utils.helpers import parse_datetime


class PriorityLevel(Enum):
    """Schedule priority levels"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DegradationTrend(Enum):
    """Equipment degradation trend"""
    STABLE = "stable"
    SLOW_DECLINE = "slow_decline"
    RAPID_DECLINE = "rapid_decline"
    CRITICAL = "critical"  # reserved for predictors that model terminal decline


class SignalSeverity(Enum):
    """Warning signal severity"""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class MaintenanceStrategy(Enum):
    """Timing strategies"""
    CONDITION_BASED = "condition_based"
    TIME_BASED = "time_based"
    HYBRID = "hybrid"


class MaintenanceType(Enum):
    """Types of maintenance work"""
    PREVENTIVE = "preventive"
    PREDICTIVE = "predictive"
    CORRECTIVE = "corrective"
    EMERGENCY = "emergency"
    CALIBRATION = "calibration"


class DependencyCriticality(Enum):
    """How strongly a procedure depends on a piece of equipment"""
    CRITICAL = "critical"
    MODERATE = "moderate"
    MINIMAL = "minimal"


class ScheduleStatus(Enum):
    """Schedule lifecycle states"""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


ALLOWED_TRANSITIONS = {
    ScheduleStatus.SCHEDULED: {ScheduleStatus.IN_PROGRESS, ScheduleStatus.CANCELLED, ScheduleStatus.RESCHEDULED},
    ScheduleStatus.IN_PROGRESS: {ScheduleStatus.COMPLETED, ScheduleStatus.CANCELLED, ScheduleStatus.RESCHEDULED},
    ScheduleStatus.RESCHEDULED: {ScheduleStatus.SCHEDULED, ScheduleStatus.IN_PROGRESS, ScheduleStatus.CANCELLED},
    ScheduleStatus.COMPLETED: set(),
    ScheduleStatus.CANCELLED: set(),
}


def serialize(value: Any) -> Any:
    """Convert dataclasses, enums and datetimes to JSON-friendly values"""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: serialize(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [serialize(v) for v in value]
    return value


def parse_enum(enum_cls, value, field_name: str):
    """Coerce a raw value into an enum member"""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {field_name} {value!r}; expected one of: {allowed}")


# ========================================
# Collaborator records
# ========================================

@dataclass
class MaintenanceHistoryEntry:
    """Past maintenance event on a piece of equipment"""
    performed_at: datetime
    maintenance_type: str = "preventive"
    notes: str = ""


@dataclass
class SensorReading:
    """Latest value of a monitored signal and its alarm threshold"""
    signal_type: str
    current_value: float
    threshold_value: float


@dataclass
class Equipment:
    """Equipment snapshot as provided by the asset registry"""
    equipment_id: str
    name: str
    category: str = "general"
    installation_date: Optional[datetime] = None
    total_operating_hours: Optional[float] = None
    maintenance_history: Optional[List[MaintenanceHistoryEntry]] = None
    last_maintenance_date: Optional[datetime] = None
    sensor_readings: List[SensorReading] = field(default_factory=list)
    location: str = ""

    def age_years(self, reference_time: datetime) -> Optional[float]:
        """Age in years at reference_time, None if the install date is unknown"""
        if self.installation_date is None:
            return None
        return (reference_time - self.installation_date).total_seconds() / (365.25 * 24 * 3600)

    @property
    def maintenance_event_count(self) -> Optional[int]:
        """Number of recorded maintenance events, None if history is unknown"""
        if self.maintenance_history is None:
            return None
        return len(self.maintenance_history)

    def latest_maintenance(self) -> Optional[datetime]:
        """Most recent maintenance date from the explicit field or the history"""
        candidates = [e.performed_at for e in (self.maintenance_history or [])]
        if self.last_maintenance_date is not None:
            candidates.append(self.last_maintenance_date)
        return max(candidates) if candidates else None

    def to_dict(self) -> Dict[str, Any]:
        return serialize(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Equipment':
        history = data.get('maintenance_history')
        return cls(
            equipment_id=str(data['equipment_id']),
            name=data.get('name', str(data['equipment_id'])),
            category=data.get('category', 'general'),
            installation_date=parse_datetime(data.get('installation_date'), 'installation_date'),
            total_operating_hours=data.get('total_operating_hours'),
            maintenance_history=None if history is None else [
                MaintenanceHistoryEntry(
                    performed_at=parse_datetime(h['performed_at'], 'performed_at'),
                    maintenance_type=h.get('maintenance_type', 'preventive'),
                    notes=h.get('notes', ''),
                ) for h in history
            ],
            last_maintenance_date=parse_datetime(data.get('last_maintenance_date'), 'last_maintenance_date'),
            sensor_readings=[SensorReading(**r) for r in data.get('sensor_readings', [])],
            location=data.get('location', ''),
        )


@dataclass
class Technician:
    """Technician as provided by the technician directory"""
    technician_id: str
    name: str
    specializations: List[str] = field(default_factory=list)
    is_active: bool = True
    hourly_rate: Optional[float] = None
    unavailable_dates: List[date] = field(default_factory=list)

    def has_skill(self, skill: str) -> bool:
        """Check if technician has a skill"""
        return skill.lower() in [s.lower() for s in self.specializations]

    def is_available_on(self, day: date) -> bool:
        return day not in self.unavailable_dates

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Technician':
        return cls(
            technician_id=str(data['technician_id']),
            name=data.get('name', str(data['technician_id'])),
            specializations=list(data.get('specializations', [])),
            is_active=data.get('is_active', True),
            hourly_rate=data.get('hourly_rate'),
            unavailable_dates=[parse_datetime(d).date() for d in data.get('unavailable_dates', [])],
        )


@dataclass
class SOPEquipmentRequirement:
    """A procedure's dependency on one piece of equipment"""
    equipment_id: str
    criticality: str = "moderate"
    alternative_equipment: List[str] = field(default_factory=list)


@dataclass
class StandardOperatingProcedure:
    """Procedure record as provided by the SOP registry"""
    sop_id: str
    title: str
    is_active: bool = True
    equipment_requirements: List[SOPEquipmentRequirement] = field(default_factory=list)

    def requirement_for(self, equipment_id: str) -> Optional[SOPEquipmentRequirement]:
        for requirement in self.equipment_requirements:
            if requirement.equipment_id == equipment_id:
                return requirement
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StandardOperatingProcedure':
        return cls(
            sop_id=str(data['sop_id']),
            title=data.get('title', str(data['sop_id'])),
            is_active=data.get('is_active', True),
            equipment_requirements=[SOPEquipmentRequirement(**r) for r in data.get('equipment_requirements', [])],
        )


# ========================================
# Schedule components
# ========================================

@dataclass
class WarningSignal:
    """Sensor signal approaching or exceeding its threshold"""
    signal_type: str
    current_value: float
    threshold_value: float
    severity: SignalSeverity = SignalSeverity.INFO


@dataclass
class RequiredPart:
    part_name: str
    part_number: str
    quantity: int = 1
    cost_estimate: float = 0.0


@dataclass
class MaintenanceTask:
    """Single maintenance task within a schedule"""
    task_id: str
    task_name: str
    task_description: str
    estimated_time_minutes: int
    required_skills: List[str] = field(default_factory=list)
    required_tools: List[str] = field(default_factory=list)
    required_parts: List[RequiredPart] = field(default_factory=list)
    safety_requirements: List[str] = field(default_factory=list)

    @property
    def parts_cost(self) -> float:
        return sum(p.cost_estimate * p.quantity for p in self.required_parts)


@dataclass
class TechnicianAssignment:
    technician_id: str
    technician_name: str
    specialization: str
    assigned_tasks: List[str] = field(default_factory=list)
    estimated_hours: float = 0.0


@dataclass
class AffectedSOP:
    sop_id: str
    sop_title: str
    dependency_type: DependencyCriticality
    alternative_equipment: List[str] = field(default_factory=list)
    estimated_downtime_impact: float = 0.0


@dataclass
class RescheduleRecommendation:
    sop_id: str
    recommended_action: str
    alternative_time_slots: List[datetime] = field(default_factory=list)


@dataclass
class SOPImpact:
    """Impact of taking a piece of equipment offline on dependent procedures"""
    affected_sops: List[AffectedSOP] = field(default_factory=list)
    operational_impact_score: float = 0.0
    revenue_impact_estimate: float = 0.0
    rescheduling_recommendations: List[RescheduleRecommendation] = field(default_factory=list)


@dataclass
class CostAnalysis:
    """Reconciled cost breakdown; total always equals the four components"""
    estimated_maintenance_cost: float = 0.0
    parts_cost: float = 0.0
    labor_cost: float = 0.0
    operational_cost: float = 0.0
    downtime_cost: float = 0.0
    total_cost_estimate: float = 0.0
    cost_savings_vs_reactive: float = 0.0

    def is_reconciled(self) -> bool:
        return self.total_cost_estimate == self.parts_cost + self.labor_cost + self.operational_cost + self.downtime_cost


@dataclass
class TimeWindow:
    start_time: str  # HH:MM
    end_time: str
    preference_score: float = 0.5


@dataclass
class SchedulingConstraints:
    business_hours_only: bool = False
    excluded_dates: List[date] = field(default_factory=list)
    preferred_time_windows: List[TimeWindow] = field(default_factory=list)
    minimum_notice_days: int = 0
    technician_availability: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'SchedulingConstraints':
        data = data or {}
        return cls(
            business_hours_only=bool(data.get('business_hours_only', False)),
            excluded_dates=[parse_datetime(d, 'excluded_date').date() for d in data.get('excluded_dates', [])],
            preferred_time_windows=[TimeWindow(**w) for w in data.get('preferred_time_windows', [])],
            minimum_notice_days=int(data.get('minimum_notice_days', 0)),
            technician_availability=dict(data.get('technician_availability', {})),
        )


@dataclass
class ConditionTrigger:
    condition: str
    threshold: float
    automatic_action: str
    requires_approval: bool = True


@dataclass
class TimeTrigger:
    trigger_type: str  # hours_of_operation, calendar_days, cycles_completed
    interval: float
    next_trigger_date: datetime


@dataclass
class PerformanceTrigger:
    performance_metric: str
    degradation_threshold: float
    trend_analysis_period: int


@dataclass
class AutomationTriggers:
    condition_based_triggers: List[ConditionTrigger] = field(default_factory=list)
    time_based_triggers: List[TimeTrigger] = field(default_factory=list)
    performance_based_triggers: List[PerformanceTrigger] = field(default_factory=list)


@dataclass
class PredictiveIndicators:
    failure_probability: float
    remaining_useful_life_days: float
    degradation_trend: DegradationTrend
    key_warning_signals: List[WarningSignal] = field(default_factory=list)
    confidence_level: float = 0.0


@dataclass
class MaintenanceSchedule:
    """Maintenance schedule for exactly one equipment unit"""
    schedule_id: str
    equipment_id: str
    equipment_name: str
    equipment_category: str
    maintenance_type: MaintenanceType
    scheduled_date: datetime
    estimated_duration_hours: float
    priority_level: PriorityLevel
    maintenance_tasks: List[MaintenanceTask] = field(default_factory=list)
    technician_assignments: List[TechnicianAssignment] = field(default_factory=list)
    sop_impact_analysis: SOPImpact = field(default_factory=SOPImpact)
    predictive_indicators: Optional[PredictiveIndicators] = None
    cost_analysis: CostAnalysis = field(default_factory=CostAnalysis)
    scheduling_constraints: SchedulingConstraints = field(default_factory=SchedulingConstraints)
    automation_triggers: AutomationTriggers = field(default_factory=AutomationTriggers)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    status: ScheduleStatus = ScheduleStatus.SCHEDULED
    version: int = 0
    notes: List[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.status]

    @property
    def is_active(self) -> bool:
        return self.status not in (ScheduleStatus.CANCELLED, ScheduleStatus.COMPLETED)

    @property
    def scheduled_end(self) -> datetime:
        return self.scheduled_date + timedelta(hours=self.estimated_duration_hours)

    @property
    def failure_probability(self) -> float:
        return self.predictive_indicators.failure_probability if self.predictive_indicators else 0.0

    def transition_to(self, new_status: ScheduleStatus, when: Optional[datetime] = None):
        """Move to a new lifecycle state

        Raises:
            ValidationError: If the transition is not allowed
        """
        new_status = parse_enum(ScheduleStatus, new_status, 'status')
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise ValidationError(
                f"Schedule {self.schedule_id} cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status
        self.updated_at = when or datetime.now()

    def copy(self) -> 'MaintenanceSchedule':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return serialize(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MaintenanceSchedule':
        indicators = data.get('predictive_indicators')
        sop = data.get('sop_impact_analysis') or {}
        triggers = data.get('automation_triggers') or {}
        return cls(
            schedule_id=data['schedule_id'],
            equipment_id=data['equipment_id'],
            equipment_name=data.get('equipment_name', data['equipment_id']),
            equipment_category=data.get('equipment_category', 'general'),
            maintenance_type=parse_enum(MaintenanceType, data.get('maintenance_type', 'preventive'), 'maintenance_type'),
            scheduled_date=parse_datetime(data['scheduled_date'], 'scheduled_date'),
            estimated_duration_hours=float(data.get('estimated_duration_hours', 2)),
            priority_level=parse_enum(PriorityLevel, data.get('priority_level', 'medium'), 'priority_level'),
            maintenance_tasks=[
                MaintenanceTask(
                    **{k: v for k, v in t.items() if k != 'required_parts'},
                    required_parts=[RequiredPart(**p) for p in t.get('required_parts', [])],
                ) for t in data.get('maintenance_tasks', [])
            ],
            technician_assignments=[TechnicianAssignment(**a) for a in data.get('technician_assignments', [])],
            sop_impact_analysis=SOPImpact(
                affected_sops=[
                    AffectedSOP(**{**a, 'dependency_type': parse_enum(DependencyCriticality, a['dependency_type'], 'dependency_type')})
                    for a in sop.get('affected_sops', [])
                ],
                operational_impact_score=sop.get('operational_impact_score', 0.0),
                revenue_impact_estimate=sop.get('revenue_impact_estimate', 0.0),
                rescheduling_recommendations=[
                    RescheduleRecommendation(
                        sop_id=r['sop_id'],
                        recommended_action=r['recommended_action'],
                        alternative_time_slots=[parse_datetime(s) for s in r.get('alternative_time_slots', [])],
                    ) for r in sop.get('rescheduling_recommendations', [])
                ],
            ),
            predictive_indicators=None if indicators is None else PredictiveIndicators(
                failure_probability=indicators['failure_probability'],
                remaining_useful_life_days=indicators['remaining_useful_life_days'],
                degradation_trend=parse_enum(DegradationTrend, indicators.get('degradation_trend', 'stable'), 'degradation_trend'),
                key_warning_signals=[
                    WarningSignal(**{**s, 'severity': parse_enum(SignalSeverity, s.get('severity', 'info'), 'severity')})
                    for s in indicators.get('key_warning_signals', [])
                ],
                confidence_level=indicators.get('confidence_level', 0.0),
            ),
            cost_analysis=CostAnalysis(**(data.get('cost_analysis') or {})),
            scheduling_constraints=SchedulingConstraints.from_dict(data.get('scheduling_constraints')),
            automation_triggers=AutomationTriggers(
                condition_based_triggers=[ConditionTrigger(**t) for t in triggers.get('condition_based_triggers', [])],
                time_based_triggers=[
                    TimeTrigger(**{**t, 'next_trigger_date': parse_datetime(t['next_trigger_date'])})
                    for t in triggers.get('time_based_triggers', [])
                ],
                performance_based_triggers=[PerformanceTrigger(**t) for t in triggers.get('performance_based_triggers', [])],
            ),
            created_at=parse_datetime(data.get('created_at')),
            updated_at=parse_datetime(data.get('updated_at')),
            status=parse_enum(ScheduleStatus, data.get('status', 'scheduled'), 'status'),
            version=int(data.get('version', 0)),
            notes=list(data.get('notes', [])),
        )


# ========================================
# Historical records (analytics input)
# ========================================

@dataclass
class MaintenanceRecord:
    """Completed maintenance work, as recorded by the work-order system"""
    record_id: str
    equipment_id: str
    maintenance_date: datetime
    maintenance_type: MaintenanceType
    technician_id: Optional[str] = None
    was_failure: bool = False
    successful: bool = True
    downtime_hours: float = 0.0
    repair_hours: float = 0.0
    estimated_hours: float = 0.0
    actual_hours: float = 0.0
    parts_cost: float = 0.0
    labor_cost: float = 0.0
    outsourced: bool = False
    required_skills: List[str] = field(default_factory=list)
    prevented_failure: bool = False
    sop_delay_minutes: float = 0.0
    alternative_used: bool = False
    quality_issue: bool = False

    @property
    def total_cost(self) -> float:
        return self.parts_cost + self.labor_cost

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MaintenanceRecord':
        values = dict(data)
        values['maintenance_date'] = parse_datetime(values['maintenance_date'], 'maintenance_date')
        values['maintenance_type'] = parse_enum(MaintenanceType, values['maintenance_type'], 'maintenance_type')
        return cls(**values)


@dataclass
class PredictionOutcome:
    """A past prediction paired with what actually happened"""
    equipment_id: str
    predicted_at: datetime
    predicted_probability: float
    failure_occurred: bool
    model_id: str = "heuristic-v1"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PredictionOutcome':
        values = dict(data)
        values['predicted_at'] = parse_datetime(values['predicted_at'], 'predicted_at')
        return cls(**values)
