"""
SOP Dependency Analyzer

Quantifies how taking a piece of equipment offline for maintenance affects the
standard operating procedures that depend on it, and suggests alternatives for
procedures that cannot run without it.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta
import logging

from predictive_maintenance.config.settings import settings
from predictive_maintenance.maintenance.models import (
    AffectedSOP, DependencyCriticality, RescheduleRecommendation, SOPImpact, StandardOperatingProcedure
)
from predictive_maintenance.utils.helpers import round_currency

logger = logging.getLogger(__name__)


class SOPDependencyAnalyzer:
    """Impact of equipment downtime on dependent procedures"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = dict(settings.get('sop_impact', {}))
        if config:
            self.config.update(config)

        self.dollars_per_point = float(self.config.get('dollars_per_impact_point', 50.0))
        self.weights = {
            DependencyCriticality(k): float(v)
            for k, v in self.config.get('criticality_weights', {'critical': 10, 'moderate': 5, 'minimal': 1}).items()
        }
        self.downtime_factors = {
            DependencyCriticality(k): float(v)
            for k, v in self.config.get('downtime_factors', {'critical': 1.0, 'moderate': 0.5, 'minimal': 0.0}).items()
        }
        self.slot_offsets = [float(h) for h in self.config.get('alternative_slot_offsets_hours', [24, 48])]

    def _criticality(self, raw: Any, sop_id: str) -> DependencyCriticality:
        try:
            return DependencyCriticality(str(raw).lower())
        except ValueError:
            logger.warning(f"Unknown dependency criticality {raw!r} on {sop_id}, treating as moderate")
            return DependencyCriticality.MODERATE

    def analyze(self,
                equipment_id: str,
                procedures: List[StandardOperatingProcedure],
                duration_hours: float,
                scheduled_date: datetime) -> SOPImpact:
        """Analyze SOP impact of a maintenance window

        Args:
            equipment_id: Equipment going offline
            procedures: Candidate procedures (inactive or unrelated ones are ignored)
            duration_hours: Length of the maintenance window
            scheduled_date: Start of the maintenance window

        Returns:
            SOPImpact
        """
        affected = []
        recommendations = []
        score = 0.0

        for sop in procedures:
            if not sop.is_active:
                continue
            requirement = sop.requirement_for(equipment_id)
            if requirement is None:
                continue

            criticality = self._criticality(requirement.criticality, sop.sop_id)
            impact = duration_hours * self.downtime_factors[criticality]
            score += impact * self.weights[criticality]

            affected.append(AffectedSOP(
                sop_id=sop.sop_id,
                sop_title=sop.title,
                dependency_type=criticality,
                alternative_equipment=list(requirement.alternative_equipment),
                estimated_downtime_impact=impact,
            ))

            if criticality == DependencyCriticality.CRITICAL:
                recommendations.append(RescheduleRecommendation(
                    sop_id=sop.sop_id,
                    recommended_action='use_alternative',
                    alternative_time_slots=[scheduled_date + timedelta(hours=h) for h in self.slot_offsets],
                ))

        score = round(score, 2)
        if affected:
            logger.info(f"{len(affected)} procedures depend on {equipment_id}, impact score {score}")

        return SOPImpact(
            affected_sops=affected,
            operational_impact_score=score,
            revenue_impact_estimate=round_currency(score * self.dollars_per_point),
            rescheduling_recommendations=recommendations,
        )
