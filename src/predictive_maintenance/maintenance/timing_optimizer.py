"""
Maintenance Timing Optimizer
Chooses when maintenance should happen and how long it will take
"""

from typing import Any, Dict, Optional
from dataclasses import dataclass
from datetime import datetime, timedelta, time as dtime
import logging

from predictive_maintenance.config.settings import settings
from predictive_maintenance.exceptions import ValidationError
from predictive_maintenance.forecasting.failure_probability import FailurePrediction
from predictive_maintenance.maintenance.models import (
    Equipment, MaintenanceStrategy, SchedulingConstraints, parse_enum, serialize
)
from predictive_maintenance.utils.helpers import days_between

logger = logging.getLogger(__name__)

BUSINESS_DAY_START = dtime(8, 0)
BUSINESS_DAY_END = dtime(17, 0)


@dataclass
class TimingDecision:
    """Outcome of the timing optimization"""
    scheduled_date: datetime
    estimated_duration_hours: float
    strategy: MaintenanceStrategy
    days_until: float
    within_horizon: bool
    score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return serialize(self)


def _parse_clock(value: str) -> dtime:
    try:
        hours, minutes = str(value).split(':')
        return dtime(int(hours), int(minutes))
    except ValueError:
        raise ValidationError(f"Invalid time of day {value!r}, expected HH:MM")


class MaintenanceTimingOptimizer:
    """
    Timing strategies

    condition_based: driven by remaining useful life.
    time_based: fixed cadence from the last maintenance.
    hybrid: blends failure probability with time since last maintenance.

    Every strategy respects a minimum lead time from the reference time.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = dict(settings.get('timing', {}))
        if config:
            self.config.update(config)

        self.minimum_lead_days = float(self.config.get('minimum_lead_days', 7))
        self.interval_days = float(self.config.get('maintenance_interval_days', 90))
        self.default_days_since_last = float(self.config.get('default_days_since_last', 60))
        self.condition_rul_fraction = float(self.config.get('condition_rul_fraction', 0.7))
        self.condition_weight = float(self.config.get('hybrid_condition_weight', 0.7))
        self.time_weight = float(self.config.get('hybrid_time_weight', 0.3))
        self.default_horizon_days = float(self.config.get('prediction_horizon_days', 90))
        self.default_strategy = self.config.get('default_strategy', 'hybrid')

    def optimize(self,
                 equipment: Equipment,
                 prediction: FailurePrediction,
                 strategy: Optional[Any] = None,
                 horizon_days: Optional[float] = None,
                 reference_time: Optional[datetime] = None) -> TimingDecision:
        """Compute the scheduled date and duration

        Args:
            equipment: Equipment being scheduled
            prediction: Failure prediction for the equipment
            strategy: Strategy name or MaintenanceStrategy (defaults to hybrid)
            horizon_days: Planning horizon used for the within_horizon flag
            reference_time: "now" for the computation

        Returns:
            TimingDecision
        """
        strategy = parse_enum(MaintenanceStrategy, strategy or self.default_strategy, 'maintenance strategy')
        reference_time = reference_time or datetime.now()
        horizon_days = self.default_horizon_days if horizon_days is None else float(horizon_days)
        if horizon_days <= 0:
            raise ValidationError("prediction horizon must be positive")

        probability = prediction.probability_of_failure
        score = None

        if strategy == MaintenanceStrategy.CONDITION_BASED:
            days_until = max(self.minimum_lead_days,
                             prediction.remaining_useful_life_days * self.condition_rul_fraction)
            duration = 4.0 if probability > 0.5 else 2.0
            scheduled = reference_time + timedelta(days=days_until)

        elif strategy == MaintenanceStrategy.TIME_BASED:
            last = equipment.latest_maintenance() or (reference_time - timedelta(days=self.interval_days))
            scheduled = max(last + timedelta(days=self.interval_days),
                            reference_time + timedelta(days=self.minimum_lead_days))
            days_until = days_between(reference_time, scheduled)
            duration = 3.0

        else:
            last = equipment.latest_maintenance()
            days_since_last = (days_between(last, reference_time) if last is not None
                               else self.default_days_since_last)
            score = probability * self.condition_weight + (days_since_last / self.interval_days) * self.time_weight
            days_until = max(self.minimum_lead_days, (1 - score) * self.interval_days)
            if score > 0.6:
                duration = 5.0
            elif score > 0.3:
                duration = 3.0
            else:
                duration = 2.0
            scheduled = reference_time + timedelta(days=days_until)

        within_horizon = days_until <= horizon_days
        if not within_horizon:
            logger.info(f"{equipment.equipment_id} scheduled {days_until:.1f} days out, beyond the "
                        f"{horizon_days:.0f}-day horizon")

        return TimingDecision(
            scheduled_date=scheduled,
            estimated_duration_hours=duration,
            strategy=strategy,
            days_until=round(days_until, 2),
            within_horizon=within_horizon,
            score=None if score is None else round(score, 4),
        )

    def apply_constraints(self,
                          scheduled_date: datetime,
                          constraints: Optional[SchedulingConstraints],
                          reference_time: Optional[datetime] = None) -> datetime:
        """Shift a date forward until it satisfies the scheduling constraints

        The result is never earlier than the input date.
        """
        if constraints is None:
            return scheduled_date
        reference_time = reference_time or datetime.now()

        notice_days = max(self.minimum_lead_days, float(constraints.minimum_notice_days or 0))
        candidate = max(scheduled_date, reference_time + timedelta(days=notice_days))

        start_of_window = self._preferred_start(constraints)
        if start_of_window is not None:
            aligned = datetime.combine(candidate.date(), start_of_window)
            if aligned < candidate:
                aligned += timedelta(days=1)
            candidate = aligned

        excluded = set(constraints.excluded_dates)
        while candidate.date() in excluded:
            candidate += timedelta(days=1)

        if candidate != scheduled_date:
            logger.debug(f"Constraints moved {scheduled_date.isoformat()} to {candidate.isoformat()}")
        return candidate

    @staticmethod
    def _preferred_start(constraints: SchedulingConstraints) -> Optional[dtime]:
        windows = sorted(constraints.preferred_time_windows,
                         key=lambda w: (-w.preference_score, w.start_time))
        for window in windows:
            start = _parse_clock(window.start_time)
            if not constraints.business_hours_only or BUSINESS_DAY_START <= start < BUSINESS_DAY_END:
                return start
        if constraints.business_hours_only:
            return BUSINESS_DAY_START
        return None
