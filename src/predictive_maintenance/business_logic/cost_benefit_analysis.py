"""
Cost-Benefit Analysis for Predictive Maintenance

This module prices a maintenance schedule (parts, labor, overhead and downtime)
and provides the return-on-investment helpers used by fleet analytics.
"""

from typing import Dict, List, Optional
import logging

from predictive_maintenance.config.settings import CostConfig, settings
from predictive_maintenance.exceptions import ComputationError
from predictive_maintenance.maintenance.models import (
    CostAnalysis, MaintenanceTask, SOPImpact, TechnicianAssignment
)
from predictive_maintenance.utils.helpers import round_currency, safe_divide

logger = logging.getLogger(__name__)


class CostEstimator:
    """
    Reconciled cost breakdown for one schedule

    Every component is rounded to cents first; the total is the plain sum of
    the rounded components so the breakdown always reconciles.
    """

    def __init__(self, config: Optional[CostConfig] = None):
        self.config = config or settings.get_cost_config()

    def estimate(self,
                 tasks: List[MaintenanceTask],
                 assignments: List[TechnicianAssignment],
                 sop_impact: SOPImpact,
                 technician_rates: Optional[Dict[str, float]] = None) -> CostAnalysis:
        """Price a schedule

        Args:
            tasks: Schedule tasks (parts cost)
            assignments: Technician assignments (labor hours)
            sop_impact: SOP impact (downtime cost)
            technician_rates: Optional per-technician hourly rate overrides

        Returns:
            CostAnalysis

        Raises:
            ComputationError: If the breakdown does not reconcile
        """
        rates = technician_rates or {}

        parts_cost = round_currency(sum(task.parts_cost for task in tasks))
        labor_cost = round_currency(sum(
            a.estimated_hours * rates.get(a.technician_id, self.config.hourly_rate) for a in assignments
        ))
        operational_cost = round_currency((parts_cost + labor_cost) * self.config.overhead_rate)
        downtime_cost = round_currency(sop_impact.revenue_impact_estimate)
        total = parts_cost + labor_cost + operational_cost + downtime_cost

        analysis = CostAnalysis(
            estimated_maintenance_cost=round_currency(parts_cost + labor_cost),
            parts_cost=parts_cost,
            labor_cost=labor_cost,
            operational_cost=operational_cost,
            downtime_cost=downtime_cost,
            total_cost_estimate=total,
            cost_savings_vs_reactive=round_currency(total * self.config.reactive_cost_multiplier - total),
        )
        self.verify(analysis)
        return analysis

    @staticmethod
    def verify(analysis: CostAnalysis):
        """Raise ComputationError if the total does not equal its components"""
        if not analysis.is_reconciled():
            raise ComputationError(
                "Cost breakdown does not reconcile",
                context={
                    'parts_cost': analysis.parts_cost,
                    'labor_cost': analysis.labor_cost,
                    'operational_cost': analysis.operational_cost,
                    'downtime_cost': analysis.downtime_cost,
                    'total_cost_estimate': analysis.total_cost_estimate,
                }
            )

    def reactive_cost(self, planned_cost: float) -> float:
        """Expected cost of the same work done after a failure"""
        return round_currency(planned_cost * self.config.reactive_cost_multiplier)


def calculate_roi(benefit: float, investment: float) -> float:
    """Return on investment as a percentage, 0 when there is no investment"""
    return round(float(safe_divide(benefit - investment, investment)) * 100, 2)


def calculate_payback_months(investment: float, monthly_net_benefit: float) -> float:
    """Months to recover an investment, inf if it never pays back"""
    if monthly_net_benefit <= 0:
        return float('inf')
    return round(investment / monthly_net_benefit, 1)
