"""
Predictive Maintenance Triggers

Builds the automation triggers attached to a schedule: condition thresholds
that raise inspections or alerts, time/usage cadences and performance
degradation watches.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta
import logging

from predictive_maintenance.config.settings import settings
from predictive_maintenance.forecasting.failure_probability import FailurePrediction
from predictive_maintenance.maintenance.models import (
    AutomationTriggers, ConditionTrigger, Equipment, PerformanceTrigger, SignalSeverity, TimeTrigger
)

logger = logging.getLogger(__name__)


class AutomationTriggerGenerator:
    """Generate automation triggers for one equipment unit"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = dict(settings.get('triggers', {}))
        if config:
            self.config.update(config)

        self.hours_interval = float(self.config.get('operating_hours_interval', 2000))
        self.hours_per_day = float(self.config.get('operating_hours_per_day', 16.0))
        self.default_conditions: List[Dict[str, Any]] = list(self.config.get('default_condition_triggers', []))
        self.performance: Dict[str, Any] = dict(self.config.get('performance', {}))
        self.calendar_interval_days = float(settings.get('timing.maintenance_interval_days', 90))

    def generate(self,
                 equipment: Equipment,
                 prediction: FailurePrediction,
                 scheduled_date: datetime,
                 reference_time: Optional[datetime] = None) -> AutomationTriggers:
        """Build triggers

        Args:
            equipment: Equipment being scheduled
            prediction: Failure prediction (warning signals feed condition triggers)
            scheduled_date: Date of the planned maintenance
            reference_time: "now" for the computation

        Returns:
            AutomationTriggers
        """
        reference_time = reference_time or datetime.now()
        return AutomationTriggers(
            condition_based_triggers=self._condition_triggers(prediction),
            time_based_triggers=self._time_triggers(equipment, scheduled_date, reference_time),
            performance_based_triggers=self._performance_triggers(),
        )

    def _condition_triggers(self, prediction: FailurePrediction) -> List[ConditionTrigger]:
        triggers = [ConditionTrigger(**c) for c in self.default_conditions]
        known = {t.condition for t in triggers}

        for signal in prediction.key_warning_signals:
            condition = f"{signal.signal_type}_exceeded"
            if condition in known:
                continue
            critical = signal.severity == SignalSeverity.CRITICAL
            triggers.append(ConditionTrigger(
                condition=condition,
                threshold=signal.threshold_value,
                automatic_action='schedule_immediate_inspection' if critical else 'create_maintenance_alert',
                requires_approval=not critical,
            ))
            known.add(condition)
        return triggers

    def _time_triggers(self, equipment: Equipment, scheduled_date: datetime,
                       reference_time: datetime) -> List[TimeTrigger]:
        usage = equipment.total_operating_hours or 0.0
        remaining_hours = self.hours_interval - (usage % self.hours_interval)
        days_to_usage_trigger = remaining_hours / self.hours_per_day

        return [
            TimeTrigger(
                trigger_type='hours_of_operation',
                interval=self.hours_interval,
                next_trigger_date=reference_time + timedelta(days=days_to_usage_trigger),
            ),
            TimeTrigger(
                trigger_type='calendar_days',
                interval=self.calendar_interval_days,
                next_trigger_date=scheduled_date + timedelta(days=self.calendar_interval_days),
            ),
        ]

    def _performance_triggers(self) -> List[PerformanceTrigger]:
        if not self.performance:
            return []
        return [PerformanceTrigger(
            performance_metric=self.performance.get('performance_metric', 'efficiency_degradation'),
            degradation_threshold=float(self.performance.get('degradation_threshold', 0.85)),
            trend_analysis_period=int(self.performance.get('trend_analysis_period', 30)),
        )]
