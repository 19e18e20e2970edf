"""
Maintenance Analytics Module
Read-only aggregation of maintenance history, prediction outcomes and schedules
"""

import numpy as np
import pandas as pd
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging

from scipy import stats
from sklearn.metrics import confusion_matrix

from predictive_maintenance.business_logic.cost_benefit_analysis import calculate_payback_months, calculate_roi
from predictive_maintenance.config.settings import AnalyticsConfig, settings
from predictive_maintenance.maintenance.models import (
    DependencyCriticality, MaintenanceRecord, MaintenanceSchedule, PredictionOutcome,
    ScheduleStatus, Technician, serialize
)
from predictive_maintenance.utils.helpers import parse_period, round_currency, safe_divide, stable_digest
from predictive_maintenance.utils.logger import log_execution_time

logger = logging.getLogger(__name__)

RECORD_COLUMNS = [
    'record_id', 'equipment_id', 'maintenance_date', 'maintenance_type', 'technician_id', 'was_failure',
    'successful', 'downtime_hours', 'repair_hours', 'estimated_hours', 'actual_hours', 'parts_cost',
    'labor_cost', 'outsourced', 'required_skills', 'prevented_failure', 'sop_delay_minutes',
    'alternative_used', 'quality_issue',
]

PLANNED_TYPES = ('preventive', 'predictive', 'calibration')


@dataclass
class MaintenanceAnalyticsReport:
    """Append-only analytics record for one period"""
    report_id: str
    period_start: datetime
    period_end: datetime
    generated_at: datetime
    equipment_performance: Dict[str, Any] = field(default_factory=dict)
    maintenance_effectiveness: Dict[str, Any] = field(default_factory=dict)
    predictive_model_performance: Dict[str, Any] = field(default_factory=dict)
    resource_utilization: Dict[str, Any] = field(default_factory=dict)
    sop_integration: Dict[str, Any] = field(default_factory=dict)
    cost_benefit: Dict[str, Any] = field(default_factory=dict)
    improvement_opportunities: List[Dict[str, Any]] = field(default_factory=list)
    benchmarking: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return serialize(self)


def records_to_frame(records: List[MaintenanceRecord]) -> pd.DataFrame:
    """Maintenance records as a DataFrame with a total_cost column"""
    rows = []
    for r in records:
        row = {col: getattr(r, col) for col in RECORD_COLUMNS}
        row['maintenance_type'] = r.maintenance_type.value
        rows.append(row)
    df = pd.DataFrame(rows, columns=RECORD_COLUMNS)
    df['maintenance_date'] = pd.to_datetime(df['maintenance_date'])
    df['total_cost'] = df['parts_cost'].astype(float) + df['labor_cost'].astype(float)
    return df


def _r(value: float, digits: int = 2) -> float:
    return round(float(value), digits)


class MaintenanceAnalyticsAggregator:
    """
    Fleet maintenance analytics

    Every metric is derived from the supplied history. Quantities that are
    not measured (performance rate, average inventory value, downtime cost
    per hour) use the fixed baselines in the ``analytics`` configuration.
    """

    def __init__(self, config: Optional[AnalyticsConfig] = None):
        self.config = config or settings.get_analytics_config()
        self.reactive_multiplier = settings.get_cost_config().reactive_cost_multiplier

    @log_execution_time
    def generate(self,
                 period: Any,
                 records: List[MaintenanceRecord],
                 outcomes: List[PredictionOutcome],
                 schedules: List[MaintenanceSchedule],
                 technicians: Optional[List[Technician]] = None,
                 reference_time: Optional[datetime] = None) -> MaintenanceAnalyticsReport:
        """Generate the analytics report for a period

        Args:
            period: {start_date, end_date} or (start, end)
            records: Maintenance records in the period
            outcomes: Prediction outcomes in the period
            schedules: Schedules in the period
            technicians: Technician roster for specialization matching
            reference_time: Report generation time

        Returns:
            MaintenanceAnalyticsReport
        """
        start, end = parse_period(period)
        reference_time = reference_time or datetime.now()

        records = [r for r in records if start <= r.maintenance_date <= end]
        outcomes = sorted((o for o in outcomes if start <= o.predicted_at <= end),
                          key=lambda o: (o.predicted_at, o.equipment_id))
        schedules = [s for s in schedules if start <= s.scheduled_date <= end]
        df = records_to_frame(records)
        period_days = max((end - start) / timedelta(days=1), 1.0)

        performance = self._equipment_performance(df, schedules, period_days)
        effectiveness = self._maintenance_effectiveness(df, schedules, period_days)
        model = self._model_performance(outcomes)
        resources = self._resource_utilization(df, technicians or [], start, end)
        sop = self._sop_integration(df, schedules)
        cost = self._cost_benefit(df, schedules, period_days)

        report = MaintenanceAnalyticsReport(
            report_id=f"analytics_{start:%Y%m%d}_{end:%Y%m%d}_" + stable_digest(
                [len(records), len(outcomes), sorted(s.schedule_id for s in schedules)], length=8),
            period_start=start,
            period_end=end,
            generated_at=reference_time,
            equipment_performance=performance,
            maintenance_effectiveness=effectiveness,
            predictive_model_performance=model,
            resource_utilization=resources,
            sop_integration=sop,
            cost_benefit=cost,
        )
        has_data = bool(records or outcomes or schedules)
        report.benchmarking = self._benchmarking(performance, effectiveness)
        report.improvement_opportunities = (
            self._improvement_opportunities(performance, effectiveness, model, resources) if has_data else []
        )
        logger.info(f"Analytics {report.report_id}: {len(records)} records, {len(outcomes)} outcomes, "
                    f"{len(schedules)} schedules")
        return report

    # ------------------------------------------------------------------

    def _equipment_performance(self, df: pd.DataFrame, schedules: List[MaintenanceSchedule],
                               period_days: float) -> Dict[str, Any]:
        cfg = self.config
        operating_hours = period_days * cfg.operating_hours_per_day
        mission_hours = cfg.reliability_mission_days * cfg.operating_hours_per_day
        equipment_ids = sorted(set(df['equipment_id']) | {s.equipment_id for s in schedules})

        per_equipment = {}
        for equipment_id in equipment_ids:
            rows = df[df['equipment_id'] == equipment_id]
            failures = int(rows['was_failure'].astype(bool).sum())
            downtime = float(rows['downtime_hours'].sum())
            uptime = max(operating_hours - downtime, 0.0)
            mtbf = uptime / failures if failures else uptime
            mttr = float(rows.loc[rows['was_failure'].astype(bool), 'repair_hours'].mean()) if failures else 0.0
            availability = safe_divide(uptime, operating_hours)
            quality_rate = 1 - safe_divide(rows['quality_issue'].astype(bool).sum(), len(rows)) if len(rows) else 1.0
            reliability = float(np.exp(-mission_hours / mtbf)) if failures and mtbf > 0 else 1.0

            per_equipment[equipment_id] = {
                'overall_equipment_effectiveness': _r(availability * cfg.performance_rate_baseline * quality_rate * 100),
                'mean_time_between_failures': _r(mtbf),
                'mean_time_to_repair': _r(mttr),
                'availability_percentage': _r(availability * 100),
                'reliability': _r(reliability, 4),
                'failures': failures,
                'downtime_hours': _r(downtime),
                'cost_per_operating_hour': _r(safe_divide(rows['total_cost'].sum(), operating_hours), 4),
            }

        def fleet_mean(key: str) -> float:
            values = [m[key] for m in per_equipment.values()]
            return _r(np.mean(values)) if values else 0.0

        return {
            'equipment_count': len(per_equipment),
            'overall_equipment_effectiveness': fleet_mean('overall_equipment_effectiveness'),
            'mean_time_between_failures': fleet_mean('mean_time_between_failures'),
            'mean_time_to_repair': fleet_mean('mean_time_to_repair'),
            'availability_percentage': fleet_mean('availability_percentage'),
            'reliability': fleet_mean('reliability'),
            'cost_per_operating_hour': _r(safe_divide(df['total_cost'].sum(), operating_hours * len(per_equipment)), 4)
            if per_equipment else 0.0,
            'per_equipment': per_equipment,
        }

    def _maintenance_effectiveness(self, df: pd.DataFrame, schedules: List[MaintenanceSchedule],
                                   period_days: float) -> Dict[str, Any]:
        planned = df[df['maintenance_type'].isin(PLANNED_TYPES)]
        preventive = df[df['maintenance_type'] == 'preventive']
        predictive = df[df['maintenance_type'] == 'predictive']
        emergency = df[df['maintenance_type'] == 'emergency']

        def success_rate(rows: pd.DataFrame) -> float:
            return _r(safe_divide(rows['successful'].astype(bool).sum(), len(rows)) * 100) if len(rows) else 0.0

        monthly = {}
        if len(df):
            grouped = df.groupby(df['maintenance_date'].dt.to_period('M'))['total_cost'].sum()
            monthly = {str(month): _r(cost) for month, cost in grouped.items()}

        relevant = [s for s in schedules if s.status != ScheduleStatus.CANCELLED]
        completed = sum(1 for s in relevant if s.status == ScheduleStatus.COMPLETED)

        return {
            'total_maintenance_events': int(len(df)),
            'preventive_maintenance_success_rate': success_rate(preventive),
            'predictive_maintenance_success_rate': success_rate(predictive),
            'planned_maintenance_success_rate': success_rate(planned),
            'failure_prevention_rate': _r(safe_divide(planned['prevented_failure'].astype(bool).sum(), len(planned)) * 100)
            if len(planned) else 0.0,
            'planned_maintenance_ratio': _r(safe_divide(len(planned), len(df)) * 100) if len(df) else 0.0,
            'emergency_events': int(len(emergency)),
            'emergency_frequency_per_30_days': _r(len(emergency) / period_days * 30),
            'average_cost_per_event': _r(df['total_cost'].mean()) if len(df) else 0.0,
            'monthly_cost_trend': monthly,
            'schedule_completion_rate': _r(safe_divide(completed, len(relevant)) * 100) if relevant else 0.0,
        }

    def _model_performance(self, outcomes: List[PredictionOutcome]) -> Dict[str, Any]:
        cfg = self.config
        zero = {
            'predictions_evaluated': 0, 'accuracy': 0.0, 'precision': 0.0, 'recall': 0.0,
            'false_positive_rate': 0.0, 'false_negative_rate': 0.0,
            'drift_detected': False, 'drift_p_value': None, 'accuracy_change': 0.0,
        }
        if not outcomes:
            return zero

        y_true = np.array([int(o.failure_occurred) for o in outcomes])
        probabilities = np.array([o.predicted_probability for o in outcomes])
        y_pred = (probabilities >= cfg.prediction_threshold).astype(int)
        tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()

        drift_p = None
        accuracy_change = 0.0
        drift = False
        half = len(outcomes) // 2
        if half >= 2:
            first, second = slice(0, half), slice(half, None)
            drift_p = float(stats.ks_2samp(probabilities[first], probabilities[second]).pvalue)
            accuracy_first = float(np.mean(y_true[first] == y_pred[first]))
            accuracy_second = float(np.mean(y_true[second] == y_pred[second]))
            accuracy_change = accuracy_second - accuracy_first
            drift = drift_p < cfg.drift_p_value or -accuracy_change > cfg.drift_accuracy_drop
            if drift:
                logger.warning(f"Prediction drift detected (p={drift_p:.4f}, accuracy change {accuracy_change:+.2f})")

        return {
            'predictions_evaluated': len(outcomes),
            'accuracy': _r(safe_divide(tp + tn, len(outcomes)) * 100),
            'precision': _r(safe_divide(tp, tp + fp) * 100),
            'recall': _r(safe_divide(tp, tp + fn) * 100),
            'false_positive_rate': _r(safe_divide(fp, fp + tn) * 100),
            'false_negative_rate': _r(safe_divide(fn, fn + tp) * 100),
            'drift_detected': bool(drift),
            'drift_p_value': None if drift_p is None else _r(drift_p, 4),
            'accuracy_change': _r(accuracy_change * 100),
        }

    def _resource_utilization(self, df: pd.DataFrame, technicians: List[Technician],
                              start: datetime, end: datetime) -> Dict[str, Any]:
        cfg = self.config
        working_days = int(np.busday_count(start.date(), (end + timedelta(days=1)).date()))
        available_hours = working_days * cfg.working_hours_per_day
        roster = {t.technician_id: t for t in technicians}

        in_house = df[~df['outsourced'].astype(bool) & df['technician_id'].notna()]
        per_technician = {}
        for tech_id, rows in in_house.groupby('technician_id'):
            actual = float(rows['actual_hours'].sum())
            tech = roster.get(tech_id)
            if tech is not None:
                matched = sum(1 for skills in rows['required_skills']
                              if not skills or any(tech.has_skill(s) for s in skills))
                match_rate = _r(safe_divide(matched, len(rows)) * 100)
            else:
                match_rate = 0.0
            per_technician[str(tech_id)] = {
                'hours_worked': _r(actual),
                'utilization_rate': _r(safe_divide(actual, available_hours) * 100),
                'efficiency': _r(safe_divide(rows['estimated_hours'].sum(), actual) * 100),
                'specialization_match_rate': match_rate,
                'jobs': int(len(rows)),
            }

        outsourced = df[df['outsourced'].astype(bool)]
        values = [m['utilization_rate'] for m in per_technician.values()]
        return {
            'technicians': per_technician,
            'average_utilization_rate': _r(np.mean(values)) if values else 0.0,
            'available_hours_per_technician': _r(available_hours),
            'parts_cost': _r(df['parts_cost'].sum()),
            'parts_turnover_rate': _r(safe_divide(df['parts_cost'].sum(), cfg.average_inventory_value_baseline), 4),
            'outsourcing_ratio': _r(safe_divide(len(outsourced), len(df)) * 100) if len(df) else 0.0,
            'outsourcing_cost_per_hour': _r(safe_divide(outsourced['labor_cost'].sum(),
                                                        outsourced['actual_hours'].sum())),
        }

    @staticmethod
    def _sop_integration(df: pd.DataFrame, schedules: List[MaintenanceSchedule]) -> Dict[str, Any]:
        affected = [a for s in schedules for a in s.sop_impact_analysis.affected_sops]
        return {
            'schedules_with_sop_impact': sum(1 for s in schedules if s.sop_impact_analysis.affected_sops),
            'affected_procedures': len({a.sop_id for a in affected}),
            'critical_dependencies': sum(1 for a in affected if a.dependency_type == DependencyCriticality.CRITICAL),
            'total_operational_impact_score': _r(sum(s.sop_impact_analysis.operational_impact_score for s in schedules)),
            'total_revenue_impact_estimate': round_currency(sum(s.sop_impact_analysis.revenue_impact_estimate
                                                                for s in schedules)),
            'average_sop_delay_minutes': _r(df['sop_delay_minutes'].mean()) if len(df) else 0.0,
            'alternative_equipment_usage_rate': _r(safe_divide(df['alternative_used'].astype(bool).sum(), len(df)) * 100)
            if len(df) else 0.0,
        }

    def _cost_benefit(self, df: pd.DataFrame, schedules: List[MaintenanceSchedule],
                      period_days: float) -> Dict[str, Any]:
        planned = df[df['maintenance_type'].isin(PLANNED_TYPES)]
        planned_cost = float(planned['total_cost'].sum())
        reactive = df[~df['maintenance_type'].isin(PLANNED_TYPES)]
        prevented = int(planned['prevented_failure'].astype(bool).sum())
        average_planned = float(planned['total_cost'].mean()) if len(planned) else 0.0
        avoided_cost = prevented * average_planned * self.reactive_multiplier
        downtime_cost = float(df['downtime_hours'].sum()) * self.config.downtime_cost_per_hour
        months = period_days / 30.0

        return {
            'total_maintenance_cost': round_currency(df['total_cost'].sum()),
            'planned_maintenance_cost': round_currency(planned_cost),
            'reactive_maintenance_cost': round_currency(reactive['total_cost'].sum()),
            'downtime_cost': round_currency(downtime_cost),
            'failures_prevented': prevented,
            'avoided_failure_cost': round_currency(avoided_cost),
            'return_on_investment': calculate_roi(avoided_cost, planned_cost) if planned_cost else 0.0,
            'payback_period_months': calculate_payback_months(planned_cost, avoided_cost / months)
            if planned_cost and avoided_cost else 0.0,
            'scheduled_cost_estimate': round_currency(sum(s.cost_analysis.total_cost_estimate for s in schedules)),
            'scheduled_savings_vs_reactive': round_currency(sum(s.cost_analysis.cost_savings_vs_reactive
                                                                for s in schedules)),
        }

    def _benchmarking(self, performance: Dict[str, Any], effectiveness: Dict[str, Any]) -> Dict[str, Any]:
        actuals = {
            'overall_equipment_effectiveness': performance['overall_equipment_effectiveness'],
            'mean_time_between_failures': performance['mean_time_between_failures'],
            'availability_percentage': performance['availability_percentage'],
            'preventive_maintenance_success_rate': effectiveness['preventive_maintenance_success_rate'],
        }
        result = {}
        for metric, benchmark in sorted(self.config.benchmarks.items()):
            actual = actuals.get(metric, 0.0)
            result[metric] = {
                'actual': actual,
                'benchmark': float(benchmark),
                'gap': _r(actual - float(benchmark)),
                'meets_benchmark': actual >= float(benchmark),
            }
        return result

    def _improvement_opportunities(self, performance, effectiveness, model, resources) -> List[Dict[str, Any]]:
        benchmarks = self.config.benchmarks
        opportunities = []

        def add(area: str, description: str, impact: float):
            opportunities.append({
                'area': area,
                'description': description,
                'impact_score': _r(min(max(impact, 0.0), 100.0)),
                'priority': 'high' if impact >= 50 else 'medium' if impact >= 20 else 'low',
            })

        availability_target = float(benchmarks.get('availability_percentage', 0))
        if performance['equipment_count'] and performance['availability_percentage'] < availability_target:
            gap = availability_target - performance['availability_percentage']
            add('equipment_availability', f"Availability is {gap:.1f} points below benchmark", gap * 10)

        if effectiveness['emergency_frequency_per_30_days'] > 1:
            add('emergency_reduction', "Emergency work recurs more than once a month; extend predictive coverage",
                effectiveness['emergency_frequency_per_30_days'] * 15)

        if model['predictions_evaluated'] and model['false_negative_rate'] > 20:
            add('prediction_recall', "Missed failures exceed 20%; lower the alert threshold or retrain",
                model['false_negative_rate'])

        if model['drift_detected']:
            add('model_drift', "Prediction distribution or accuracy has shifted; recalibrate the predictor", 60)

        if resources['average_utilization_rate'] > 90:
            add('technician_capacity', "Technicians are above 90% utilization; add capacity",
                resources['average_utilization_rate'] - 40)

        if resources['outsourcing_ratio'] > 20:
            add('in_house_skills', "Outsourcing exceeds 20% of jobs; train in-house technicians",
                resources['outsourcing_ratio'])

        opportunities.sort(key=lambda o: (-o['impact_score'], o['area']))
        for rank, opportunity in enumerate(opportunities, start=1):
            opportunity['rank'] = rank
        return opportunities
