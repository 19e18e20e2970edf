"""
Failure Probability Estimation
Heuristic failure risk model with a replaceable predictor interface
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging

from predictive_maintenance.config.settings import PredictorConfig, settings
from predictive_maintenance.exceptions import ComputationError, ValidationError
from predictive_maintenance.maintenance.models import (
    DegradationTrend, Equipment, PredictiveIndicators, SignalSeverity, WarningSignal, serialize
)

logger = logging.getLogger(__name__)


@dataclass
class FailurePrediction:
    """Container for failure probability predictions"""
    equipment_id: str
    probability_of_failure: float
    remaining_useful_life_days: float
    degradation_trend: DegradationTrend
    key_warning_signals: List[WarningSignal] = field(default_factory=list)
    confidence_level: float = 0.0
    contributing_factors: Dict[str, float] = field(default_factory=dict)
    predicted_failure_date: Optional[datetime] = None
    prediction_timestamp: Optional[datetime] = None

    def to_indicators(self) -> PredictiveIndicators:
        """Subset stored on a schedule"""
        return PredictiveIndicators(
            failure_probability=self.probability_of_failure,
            remaining_useful_life_days=self.remaining_useful_life_days,
            degradation_trend=self.degradation_trend,
            key_warning_signals=list(self.key_warning_signals),
            confidence_level=self.confidence_level,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return serialize(self)


def validate_prediction(prediction: FailurePrediction, minimum_rul_days: float = 30.0) -> FailurePrediction:
    """Check a prediction from any predictor before it is used downstream

    Raises:
        ComputationError: If probability or RUL is out of range
    """
    p = prediction.probability_of_failure
    if p is None or not 0.0 <= p <= 1.0:
        raise ComputationError(
            f"Failure probability {p} for {prediction.equipment_id} is outside [0, 1]",
            context={'equipment_id': prediction.equipment_id, 'probability': p}
        )
    if prediction.remaining_useful_life_days < minimum_rul_days:
        raise ComputationError(
            f"Remaining useful life {prediction.remaining_useful_life_days} for "
            f"{prediction.equipment_id} is below {minimum_rul_days} days",
            context={'equipment_id': prediction.equipment_id,
                     'remaining_useful_life_days': prediction.remaining_useful_life_days}
        )
    return prediction


class FailurePredictor(ABC):
    """Abstract failure predictor"""

    @abstractmethod
    def predict(self, equipment: Equipment, reference_time: Optional[datetime] = None) -> FailurePrediction:
        """Predict failure risk for one piece of equipment

        Args:
            equipment: Equipment snapshot
            reference_time: Time the prediction is made for (defaults to now)

        Returns:
            FailurePrediction
        """
        pass


class HeuristicFailurePredictor(FailurePredictor):
    """
    Weighted age/usage/maintenance heuristic

    Risk rises with age and usage and falls with the number of maintenance
    events. Missing inputs fall back to configured fleet defaults and lower
    the confidence of the prediction.
    """

    def __init__(self, config: Optional[PredictorConfig] = None):
        self.config = config or settings.get_predictor_config()

    def predict(self, equipment: Equipment, reference_time: Optional[datetime] = None) -> FailurePrediction:
        reference_time = reference_time or datetime.now()
        cfg = self.config
        defaulted = []

        age_years = equipment.age_years(reference_time)
        if age_years is None:
            age_years = cfg.default_age_years
            defaulted.append('age_years')
        elif age_years < 0:
            logger.info(f"Installation date of {equipment.equipment_id} is in the future, using age 0")
            age_years = 0.0

        usage_hours = equipment.total_operating_hours
        if usage_hours is None:
            usage_hours = cfg.default_usage_hours
            defaulted.append('usage_hours')

        events = equipment.maintenance_event_count
        if events is None:
            events = cfg.default_maintenance_events
            defaulted.append('maintenance_events')

        if defaulted:
            logger.debug(f"Using defaults for {equipment.equipment_id}: {', '.join(defaulted)}")

        prediction = self.predict_from_factors(
            equipment.equipment_id, age_years, usage_hours, events,
            reference_time=reference_time, defaulted_inputs=len(defaulted)
        )
        prediction.key_warning_signals = self._warning_signals(equipment)
        return prediction

    def predict_from_factors(self,
                             equipment_id: str,
                             age_years: float,
                             usage_hours: float,
                             maintenance_events: int,
                             reference_time: Optional[datetime] = None,
                             defaulted_inputs: int = 0) -> FailurePrediction:
        """Apply the heuristic to explicit inputs

        Raises:
            ValidationError: On negative usage hours or event counts
        """
        if usage_hours < 0:
            raise ValidationError(f"total_operating_hours cannot be negative for {equipment_id}")
        if maintenance_events < 0:
            raise ValidationError(f"maintenance event count cannot be negative for {equipment_id}")

        reference_time = reference_time or datetime.now()
        cfg = self.config

        age_factor = min(max(age_years, 0.0) / cfg.lifespan_years, 1.0)
        usage_factor = min(usage_hours / cfg.heavy_usage_hours, 1.0)
        maintenance_factor = max(0.0, 1.0 - maintenance_events / cfg.events_for_full_credit)

        raw = (age_factor * cfg.age_weight +
               usage_factor * cfg.usage_weight +
               maintenance_factor * cfg.maintenance_weight) * cfg.probability_scale
        probability = round(raw, 4)

        rul_days = max(cfg.minimum_rul_days, (1 - probability) * cfg.rul_horizon_days)
        confidence = max(cfg.minimum_confidence,
                         round(cfg.base_confidence - cfg.default_input_penalty * defaulted_inputs, 4))

        prediction = FailurePrediction(
            equipment_id=equipment_id,
            probability_of_failure=probability,
            remaining_useful_life_days=rul_days,
            degradation_trend=self._classify_trend(probability),
            confidence_level=confidence,
            contributing_factors={
                'age_factor': round(age_factor, 4),
                'usage_factor': round(usage_factor, 4),
                'maintenance_factor': round(maintenance_factor, 4),
            },
            predicted_failure_date=reference_time + timedelta(days=rul_days),
            prediction_timestamp=reference_time,
        )
        return validate_prediction(prediction, cfg.minimum_rul_days)

    @staticmethod
    def _classify_trend(probability: float) -> DegradationTrend:
        if probability > 0.7:
            return DegradationTrend.RAPID_DECLINE
        if probability > 0.4:
            return DegradationTrend.SLOW_DECLINE
        return DegradationTrend.STABLE

    def _warning_signals(self, equipment: Equipment) -> List[WarningSignal]:
        signals = []
        for reading in equipment.sensor_readings:
            if reading.current_value >= reading.threshold_value:
                severity = SignalSeverity.CRITICAL
            elif reading.current_value >= reading.threshold_value * self.config.warning_ratio:
                severity = SignalSeverity.WARNING
            else:
                severity = SignalSeverity.INFO
            signals.append(WarningSignal(
                signal_type=reading.signal_type,
                current_value=reading.current_value,
                threshold_value=reading.threshold_value,
                severity=severity,
            ))
        return signals
