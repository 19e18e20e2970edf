"""
Unit Tests for Maintenance Analytics
"""

import pytest
from datetime import datetime

from predictive_maintenance.config.settings import AnalyticsConfig
from predictive_maintenance.exceptions import ValidationError
from predictive_maintenance.maintenance.maintenance_analytics import MaintenanceAnalyticsAggregator, records_to_frame
from predictive_maintenance.maintenance.models import (
    MaintenanceRecord, MaintenanceSchedule, PredictionOutcome, Technician
)

from conftest import REFERENCE_TIME, scheduled_fixture

PERIOD = {'start_date': '2026-02-01', 'end_date': '2026-02-28'}


def records():
    return [
        MaintenanceRecord.from_dict({
            'record_id': 'R1', 'equipment_id': 'OVEN-001', 'maintenance_date': '2026-02-05T09:00:00',
            'maintenance_type': 'preventive', 'technician_id': 'T-100', 'prevented_failure': True,
            'downtime_hours': 2.0, 'estimated_hours': 2.0, 'actual_hours': 2.0, 'parts_cost': 100.0,
            'labor_cost': 140.0, 'required_skills': ['calibration'],
        }),
        MaintenanceRecord.from_dict({
            'record_id': 'R2', 'equipment_id': 'OVEN-001', 'maintenance_date': '2026-02-12T14:00:00',
            'maintenance_type': 'emergency', 'technician_id': 'T-200', 'was_failure': True,
            'downtime_hours': 6.0, 'repair_hours': 5.0, 'estimated_hours': 4.0, 'actual_hours': 5.0,
            'parts_cost': 300.0, 'labor_cost': 325.0, 'required_skills': ['electrical'],
        }),
        MaintenanceRecord.from_dict({
            'record_id': 'R3', 'equipment_id': 'MIX-001', 'maintenance_date': '2026-02-20T09:00:00',
            'maintenance_type': 'predictive', 'technician_id': 'T-200', 'successful': False,
            'downtime_hours': 1.0, 'estimated_hours': 1.0, 'actual_hours': 1.0, 'labor_cost': 65.0,
            'required_skills': ['mechanical'], 'sop_delay_minutes': 30.0, 'alternative_used': True,
        }),
        MaintenanceRecord.from_dict({
            'record_id': 'R4', 'equipment_id': 'MIX-001', 'maintenance_date': '2026-02-22T09:00:00',
            'maintenance_type': 'corrective', 'outsourced': True, 'downtime_hours': 2.0,
            'actual_hours': 2.0, 'labor_cost': 190.0,
        }),
        MaintenanceRecord.from_dict({
            'record_id': 'R5', 'equipment_id': 'MIX-001', 'maintenance_date': '2026-03-05T09:00:00',
            'maintenance_type': 'emergency', 'was_failure': True, 'labor_cost': 999.0,
        }),
    ]


def outcomes(second_half_correct=False):
    rows = [
        ('2026-02-01T09:00:00', 0.9, True),
        ('2026-02-02T09:00:00', 0.1, False),
        ('2026-02-03T09:00:00', 0.9, second_half_correct),
        ('2026-02-04T09:00:00', 0.1, not second_half_correct),
    ]
    return [PredictionOutcome.from_dict({'equipment_id': 'OVEN-001', 'predicted_at': at,
                                         'predicted_probability': p, 'failure_occurred': failed})
            for at, p, failed in rows]


def technicians():
    return [
        Technician('T-100', 'Alex', ['calibration', 'electrical']),
        Technician('T-200', 'Sam', ['mechanical', 'advanced_repair']),
    ]


@pytest.fixture
def aggregator():
    return MaintenanceAnalyticsAggregator(AnalyticsConfig(benchmarks={
        'availability_percentage': 94.2,
        'overall_equipment_effectiveness': 82.5,
    }))


@pytest.fixture
def report(aggregator):
    schedules = [
        MaintenanceSchedule.from_dict(scheduled_fixture('S-1', 'MIX-001', '2026-02-10T09:00:00', status='completed')),
        MaintenanceSchedule.from_dict(scheduled_fixture('S-2', 'MIX-001', '2026-02-11T09:00:00', status='cancelled')),
    ]
    return aggregator.generate(PERIOD, records(), outcomes(), schedules, technicians(), REFERENCE_TIME)


class TestMaintenanceAnalyticsAggregator:
    """Test cases for MaintenanceAnalyticsAggregator"""

    def test_empty_period(self, aggregator):
        report = aggregator.generate(PERIOD, [], [], [], reference_time=REFERENCE_TIME)

        assert report.equipment_performance['equipment_count'] == 0
        assert report.maintenance_effectiveness['total_maintenance_events'] == 0
        assert report.predictive_model_performance['predictions_evaluated'] == 0
        assert report.predictive_model_performance['drift_detected'] is False
        assert report.cost_benefit['total_maintenance_cost'] == 0.0
        assert report.improvement_opportunities == []
        assert report.report_id.startswith('analytics_20260201_20260228_')

    def test_records_outside_period_ignored(self, report):
        assert report.maintenance_effectiveness['total_maintenance_events'] == 4
        assert report.cost_benefit['total_maintenance_cost'] == 1120.0

    def test_equipment_performance(self, report):
        oven = report.equipment_performance['per_equipment']['OVEN-001']
        mixer = report.equipment_performance['per_equipment']['MIX-001']

        assert report.equipment_performance['equipment_count'] == 2
        assert oven['failures'] == 1
        assert oven['mean_time_between_failures'] == 424.0
        assert oven['mean_time_to_repair'] == 5.0
        assert oven['availability_percentage'] == 98.15
        assert oven['reliability'] == pytest.approx(0.3224, abs=1e-4)
        assert mixer['failures'] == 0
        assert mixer['reliability'] == 1.0
        assert report.equipment_performance['availability_percentage'] == pytest.approx(98.73, abs=0.01)

    def test_maintenance_effectiveness(self, report):
        effectiveness = report.maintenance_effectiveness

        assert effectiveness['preventive_maintenance_success_rate'] == 100.0
        assert effectiveness['predictive_maintenance_success_rate'] == 0.0
        assert effectiveness['planned_maintenance_success_rate'] == 50.0
        assert effectiveness['failure_prevention_rate'] == 50.0
        assert effectiveness['planned_maintenance_ratio'] == 50.0
        assert effectiveness['emergency_events'] == 1
        assert effectiveness['average_cost_per_event'] == 280.0
        assert effectiveness['monthly_cost_trend'] == {'2026-02': 1120.0}
        assert effectiveness['schedule_completion_rate'] == 100.0

    def test_model_performance_and_drift(self, report):
        model = report.predictive_model_performance

        assert model['predictions_evaluated'] == 4
        assert model['accuracy'] == 50.0
        assert model['precision'] == 50.0
        assert model['false_negative_rate'] == 50.0
        assert model['accuracy_change'] == -100.0
        assert model['drift_p_value'] == 1.0
        assert model['drift_detected'] is True

    def test_no_drift_when_accuracy_holds(self, aggregator):
        report = aggregator.generate(PERIOD, [], outcomes(second_half_correct=True), [],
                                     reference_time=REFERENCE_TIME)
        model = report.predictive_model_performance

        assert model['accuracy'] == 100.0
        assert model['drift_detected'] is False

    def test_drift_needs_two_outcomes_per_half(self, aggregator):
        report = aggregator.generate(PERIOD, [], outcomes()[:3], [], reference_time=REFERENCE_TIME)
        assert report.predictive_model_performance['drift_p_value'] is None
        assert report.predictive_model_performance['drift_detected'] is False

    def test_resource_utilization(self, report):
        resources = report.resource_utilization
        sam = resources['technicians']['T-200']

        assert resources['available_hours_per_technician'] == 160.0
        assert resources['technicians']['T-100']['utilization_rate'] == 1.25
        assert sam['hours_worked'] == 6.0
        assert sam['efficiency'] == pytest.approx(83.33, abs=0.01)
        assert sam['specialization_match_rate'] == 50.0
        assert resources['outsourcing_ratio'] == 25.0
        assert resources['outsourcing_cost_per_hour'] == 95.0

    def test_cost_benefit(self, report):
        cost = report.cost_benefit

        assert cost['planned_maintenance_cost'] == 305.0
        assert cost['reactive_maintenance_cost'] == 815.0
        assert cost['downtime_cost'] == 5500.0
        assert cost['failures_prevented'] == 1
        assert cost['avoided_failure_cost'] == 533.75
        assert cost['return_on_investment'] == 75.0

    def test_sop_integration(self, report):
        assert report.sop_integration['average_sop_delay_minutes'] == 7.5
        assert report.sop_integration['alternative_equipment_usage_rate'] == 25.0

    def test_benchmarking(self, report):
        availability = report.benchmarking['availability_percentage']
        assert availability['benchmark'] == 94.2
        assert availability['meets_benchmark'] is True

    def test_improvement_opportunities_ranked(self, report):
        opportunities = report.improvement_opportunities

        assert [o['area'] for o in opportunities] == [
            'model_drift', 'prediction_recall', 'in_house_skills', 'emergency_reduction'
        ]
        assert [o['rank'] for o in opportunities] == [1, 2, 3, 4]
        assert opportunities[0]['priority'] == 'high'
        assert opportunities[-1]['priority'] == 'low'

    def test_report_serializes(self, report):
        data = report.to_dict()
        assert data['period_start'] == '2026-02-01T00:00:00'
        assert data['generated_at'] == REFERENCE_TIME.isoformat()

    def test_invalid_period(self, aggregator):
        with pytest.raises(ValidationError):
            aggregator.generate({'start_date': '2026-02-01'}, [], [], [])


def test_records_to_frame_total_cost():
    df = records_to_frame(records()[:2])
    assert list(df['total_cost']) == [240.0, 625.0]
    assert str(df['maintenance_date'].dtype).startswith('datetime64')
