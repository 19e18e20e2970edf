"""
Unit Tests for the Schedule Builder and Batch Scheduler
"""

import unittest
from datetime import datetime, timedelta

from predictive_maintenance.data_ingestion.repositories import InMemoryEquipmentRegistry, build_in_memory_backend
from predictive_maintenance.exceptions import ComputationError, ConflictError, DependencyError, ValidationError
from predictive_maintenance.forecasting.failure_probability import FailurePrediction, FailurePredictor
from predictive_maintenance.maintenance.models import (
    DegradationTrend, Equipment, MaintenanceType, PriorityLevel, ScheduleStatus
)
from predictive_maintenance.maintenance.scheduler import (
    BatchScheduler, ScheduleBuilder, ScheduleOptions, schedule_id_for, summarize_schedules
)

from conftest import REFERENCE_TIME, fast_scheduling_config, fleet_data

NIGHT_WINDOW = {'preferred_time_windows': [{'start_time': '02:00', 'end_time': '06:00', 'preference_score': 0.9}]}


class FixedPredictor(FailurePredictor):
    """Predictor returning a preset probability"""

    def __init__(self, probability, rul=120.0):
        self.probability = probability
        self.rul = rul

    def predict(self, equipment, reference_time=None):
        return FailurePrediction(equipment_id=equipment.equipment_id, probability_of_failure=self.probability,
                                 remaining_useful_life_days=self.rul, degradation_trend=DegradationTrend.CRITICAL,
                                 confidence_level=0.9)


class BrokenPredictor(FailurePredictor):

    def predict(self, equipment, reference_time=None):
        raise RuntimeError("model file missing")


class FlakyRegistry(InMemoryEquipmentRegistry):
    """Fails the first ``failures`` lookups with DependencyError"""

    def __init__(self, equipment, failures):
        super().__init__(equipment)
        self.failures = failures
        self.calls = 0

    def get_equipment(self, equipment_id, timeout=None):
        self.calls += 1
        if self.calls <= self.failures:
            raise DependencyError("asset registry timed out")
        return super().get_equipment(equipment_id, timeout)


def make_builder(**overrides):
    backend = build_in_memory_backend(fleet_data())
    backend.update(overrides)
    return ScheduleBuilder(config=fast_scheduling_config(), **backend)


class TestScheduleBuilder(unittest.TestCase):
    """Test cases for ScheduleBuilder"""

    def setUp(self):
        self.builder = make_builder()
        self.options = ScheduleOptions.from_dict({'constraints': NIGHT_WINDOW})

    def test_complete_schedule(self):
        schedule = self.builder.build('OVEN-001', self.options, REFERENCE_TIME)

        self.assertEqual(schedule.schedule_id, 'maint_sched_OVEN-001_20260302080000')
        self.assertEqual(schedule.equipment_name, 'Deck Oven 1')
        self.assertEqual(schedule.maintenance_type, MaintenanceType.PREDICTIVE)
        self.assertEqual(schedule.status, ScheduleStatus.SCHEDULED)
        self.assertEqual(schedule.priority_level, PriorityLevel.HIGH)
        self.assertEqual(schedule.scheduled_date, datetime(2026, 3, 16, 2, 0))
        self.assertEqual(schedule.estimated_duration_hours, 5.0)
        self.assertEqual(len(schedule.maintenance_tasks), 4)
        self.assertEqual(schedule.maintenance_tasks[-1].task_id, 'critical_task_OVEN-001')
        self.assertEqual(sorted(a.technician_id for a in schedule.technician_assignments), ['T-100', 'T-200'])
        self.assertAlmostEqual(schedule.predictive_indicators.failure_probability, 0.7867)
        self.assertEqual(schedule.sop_impact_analysis.operational_impact_score, 50.0)
        self.assertEqual(schedule.cost_analysis.downtime_cost, 2500.0)
        self.assertEqual(schedule.cost_analysis.parts_cost, 250.0)
        self.assertTrue(schedule.cost_analysis.is_reconciled())
        self.assertEqual(schedule.notes, [])

    def test_deterministic(self):
        first = self.builder.build('OVEN-001', self.options, REFERENCE_TIME)
        second = self.builder.build('OVEN-001', self.options, REFERENCE_TIME)
        self.assertEqual(first.to_dict(), second.to_dict())

    def test_lead_time_with_default_constraints(self):
        for equipment_id in ('OVEN-001', 'MIX-001', 'FRIDGE-001'):
            schedule = self.builder.build(equipment_id, reference_time=REFERENCE_TIME)
            self.assertGreaterEqual(schedule.scheduled_date, REFERENCE_TIME + timedelta(days=7))

    def test_unassigned_tasks_noted(self):
        schedule = self.builder.build('FRIDGE-001', reference_time=REFERENCE_TIME)
        self.assertIn('Unassigned tasks: task_FRIDGE-001_0', schedule.notes)

    def test_exclusive_assignment_option(self):
        options = ScheduleOptions.from_dict({'exclusive_assignment': True})
        schedule = self.builder.build('OVEN-001', options, REFERENCE_TIME)
        claimed = [t for a in schedule.technician_assignments for t in a.assigned_tasks]
        self.assertEqual(len(claimed), len(set(claimed)))

    def test_injected_predictor_reaches_critical(self):
        builder = make_builder(predictor=FixedPredictor(0.9))
        schedule = builder.build('MIX-001', reference_time=REFERENCE_TIME)

        self.assertEqual(schedule.priority_level, PriorityLevel.CRITICAL)
        self.assertEqual(schedule.maintenance_tasks[-1].task_id, 'critical_task_MIX-001')

    def test_invalid_prediction_is_computation_error(self):
        builder = make_builder(predictor=FixedPredictor(1.5))
        with self.assertRaises(ComputationError):
            builder.create('MIX-001', reference_time=REFERENCE_TIME)

    def test_create_persists_and_audits(self):
        backend = build_in_memory_backend(fleet_data())
        builder = ScheduleBuilder(config=fast_scheduling_config(), **backend)
        stored = builder.create('MIX-001', reference_time=REFERENCE_TIME, actor='planner')

        self.assertEqual(stored.version, 1)
        self.assertEqual(backend['store'].get_schedule(stored.schedule_id).priority_level, PriorityLevel.LOW)
        event = backend['audit_sink'].events[0]
        self.assertEqual((event.event_type, event.subject_id, event.actor),
                         ('schedule_created', stored.schedule_id, 'planner'))

    def test_computation_error_logs_equipment_snapshot(self):
        builder = make_builder(predictor=FixedPredictor(1.5))
        with self.assertLogs('predictive_maintenance.maintenance.scheduler', 'ERROR') as logs:
            with self.assertRaises(ComputationError) as ctx:
                builder.create('MIX-001', reference_time=REFERENCE_TIME)

        self.assertEqual(ctx.exception.context['equipment']['equipment_id'], 'MIX-001')
        self.assertEqual(ctx.exception.context['equipment']['name'], 'Spiral Mixer')
        self.assertEqual(ctx.exception.context['reference_time'], REFERENCE_TIME.isoformat())
        output = '\n'.join(logs.output)
        self.assertIn('total_operating_hours', output)
        self.assertIn('Spiral Mixer', output)

    def test_recreate_never_overwrites_completed_schedule(self):
        backend = build_in_memory_backend(fleet_data())
        builder = ScheduleBuilder(config=fast_scheduling_config(), **backend)
        store = backend['store']
        created = builder.create('MIX-001', reference_time=REFERENCE_TIME)

        for status in (ScheduleStatus.IN_PROGRESS, ScheduleStatus.COMPLETED):
            schedule = store.get_schedule(created.schedule_id)
            schedule.transition_to(status, REFERENCE_TIME)
            store.save_schedule(schedule, expected_version=schedule.version)

        with self.assertRaises(ConflictError):
            builder.create('MIX-001', reference_time=REFERENCE_TIME)

        stored = store.get_schedule(created.schedule_id)
        self.assertEqual(stored.status, ScheduleStatus.COMPLETED)
        self.assertEqual(stored.version, 3)
        self.assertEqual([e.event_type for e in backend['audit_sink'].events], ['schedule_created'])

    def test_transient_dependency_failure_retried(self):
        registry = FlakyRegistry([Equipment.from_dict(e) for e in fleet_data()['equipment']], failures=1)
        builder = make_builder(equipment_registry=registry)

        schedule = builder.build('MIX-001', reference_time=REFERENCE_TIME)
        self.assertEqual(schedule.equipment_id, 'MIX-001')
        self.assertEqual(registry.calls, 2)

    def test_persistent_dependency_failure_raised(self):
        registry = FlakyRegistry([], failures=10)
        builder = make_builder(equipment_registry=registry)

        with self.assertRaises(DependencyError):
            builder.build('MIX-001', reference_time=REFERENCE_TIME)
        self.assertEqual(registry.calls, 2)

    def test_schedule_id(self):
        self.assertEqual(schedule_id_for('A', datetime(2026, 1, 2, 3, 4, 5)), 'maint_sched_A_20260102030405')


class TestBatchScheduler(unittest.TestCase):
    """Test cases for BatchScheduler"""

    def setUp(self):
        self.backend = build_in_memory_backend(fleet_data())
        self.batch = BatchScheduler(ScheduleBuilder(config=fast_scheduling_config(), **self.backend))

    def test_partial_failures_isolated(self):
        result = self.batch.create_schedules(['OVEN-001', 'MISSING', 'OVEN-001', 'MIX-001'],
                                             reference_time=REFERENCE_TIME)

        self.assertEqual([s.equipment_id for s in result.schedules], ['OVEN-001', 'MIX-001'])
        self.assertEqual(result.failures['MISSING']['kind'], 'NotFoundError')
        self.assertEqual(result.summary['total_schedules_created'], 2)
        self.assertEqual(result.summary['high_priority_schedules'], 1)
        self.assertEqual(result.summary['failed_equipment'], 1)
        self.assertEqual(len(self.backend['store'].list_schedules()), 2)

    def test_empty_batch_rejected(self):
        with self.assertRaises(ValidationError):
            self.batch.create_schedules([], reference_time=REFERENCE_TIME)

    def test_unexpected_errors_reported_as_internal(self):
        backend = build_in_memory_backend(fleet_data())
        batch = BatchScheduler(ScheduleBuilder(config=fast_scheduling_config(), predictor=BrokenPredictor(),
                                               **backend))
        result = batch.create_schedules(['MIX-001'], reference_time=REFERENCE_TIME)

        self.assertEqual(result.schedules, [])
        self.assertEqual(result.failures['MIX-001']['kind'], 'InternalError')
        self.assertNotIn('model file', result.failures['MIX-001']['message'])

    def test_summary_over_schedules(self):
        result = self.batch.create_schedules(['OVEN-001', 'MIX-001', 'FRIDGE-001'], reference_time=REFERENCE_TIME)
        summary = summarize_schedules(result.schedules)

        self.assertEqual(summary['total_schedules'], 3)
        self.assertEqual(summary['schedules_by_priority'],
                         {'critical': 0, 'high': 1, 'medium': 1, 'low': 1})
        self.assertEqual(summary['schedules_by_type'], {'predictive': 3})
        self.assertEqual(summary['high_risk_equipment'], ['OVEN-001'])
        self.assertAlmostEqual(summary['total_estimated_cost'],
                               sum(s.cost_analysis.total_cost_estimate for s in result.schedules), places=2)
