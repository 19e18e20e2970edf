"""
Unit Tests for the Fleet Optimizer
"""

import unittest
from datetime import datetime

from predictive_maintenance.data_ingestion.repositories import InMemoryAuditSink, InMemoryPersistenceStore
from predictive_maintenance.exceptions import ConflictError, ValidationError
from predictive_maintenance.maintenance.models import MaintenanceSchedule, MaintenanceType, ScheduleStatus, Technician
from predictive_maintenance.maintenance.optimizer import (
    EXTERNAL_CONTRACTOR_ID, FleetOptimizer, OptimizationObjectives, ProposalApplier, snapshot_fingerprint
)

from conftest import REFERENCE_TIME, scheduled_fixture

PERIOD = {'start_date': '2026-03-09', 'end_date': '2026-03-31'}


def store_with(*records):
    store = InMemoryPersistenceStore()
    for record in records:
        store.save_schedule(MaintenanceSchedule.from_dict(record))
    return store


class InterleavedWriteStore(InMemoryPersistenceStore):
    """Store where another writer bumps MX-2 right after the next window read"""

    interleave = False

    def list_schedules(self, *args, **kwargs):
        listed = super().list_schedules(*args, **kwargs)
        if self.interleave:
            self.interleave = False
            other = self.get_schedule('MX-2')
            other.notes.append('edited by planner')
            self.save_schedule(other, expected_version=other.version)
        return listed


def mixer_pair():
    return (
        scheduled_fixture('MX-1', 'MIX-001', '2026-03-16T09:00:00'),
        scheduled_fixture('MX-2', 'MIX-002', '2026-03-18T09:00:00'),
    )


def unassigned_oven():
    return scheduled_fixture('OV-1', 'OVEN-009', '2026-03-20T09:00:00', category='commercial_oven',
                             maintenance_type='predictive', skills=('hvac',), assigned=False)


class TestOptimizationObjectives(unittest.TestCase):

    def test_weights_normalized(self):
        weights = OptimizationObjectives.from_input({'minimize_cost': 3, 'balance_workload': 1}).weights
        self.assertEqual(weights, {'balance_workload': 0.25, 'minimize_cost': 0.75})

    def test_list_forms(self):
        self.assertEqual(OptimizationObjectives.from_input(['minimize_cost', 'minimize_downtime']).weights,
                         {'minimize_cost': 0.5, 'minimize_downtime': 0.5})
        self.assertEqual(OptimizationObjectives.from_input([{'objective': 'ensure_compliance', 'weight': 2}]).weights,
                         {'ensure_compliance': 1.0})

    def test_invalid_objectives(self):
        for objectives in ({'maximize_profit': 1}, {'minimize_cost': -1}, {'minimize_cost': 0}, 'minimize_cost'):
            with self.assertRaises(ValidationError):
                OptimizationObjectives.from_input(objectives)


class TestFleetOptimizer(unittest.TestCase):
    """Test cases for FleetOptimizer"""

    def test_low_risk_preventive_work_converted_and_batched(self):
        store = store_with(*mixer_pair())
        run = FleetOptimizer(store).optimize(PERIOD, {'minimize_cost': 1.0}, reference_time=REFERENCE_TIME)

        types = [r.recommendation_type for r in run.recommendations]
        self.assertEqual(types[0], 'preventive_to_predictive')
        self.assertIn('batch_processing', types)
        self.assertEqual(len(run.applied_recommendations), 2)
        self.assertEqual(run.changed_schedule_ids, ['MX-1', 'MX-2'])
        self.assertTrue(run.publishable, run.validation['issues'])

        optimized = {s.schedule_id: s for s in run.optimized_schedules}
        self.assertEqual(optimized['MX-1'].maintenance_type, MaintenanceType.PREDICTIVE)
        self.assertEqual(optimized['MX-2'].scheduled_date, datetime(2026, 3, 16, 9, 0))
        self.assertEqual(optimized['MX-2'].status, ScheduleStatus.RESCHEDULED)
        self.assertTrue(all(s.cost_analysis.is_reconciled() for s in run.optimized_schedules))
        self.assertLess(run.change_summary['net_cost_delta'], 0)
        self.assertEqual(run.change_summary['schedules_converted'], 2)
        self.assertGreater(run.recommendations[0].expected_benefits['cost_savings'], 0)

    def test_optimizer_never_writes(self):
        store = store_with(*mixer_pair())
        FleetOptimizer(store).optimize(PERIOD, {'minimize_cost': 1.0}, reference_time=REFERENCE_TIME)

        self.assertEqual([s.version for s in store.list_schedules()], [1, 1])
        self.assertEqual(store.get_schedule('MX-2').scheduled_date, datetime(2026, 3, 18, 9, 0))

    def test_deterministic_run(self):
        store = store_with(*mixer_pair())
        optimizer = FleetOptimizer(store)
        first = optimizer.optimize(PERIOD, {'minimize_cost': 1.0}, reference_time=REFERENCE_TIME)
        second = optimizer.optimize(PERIOD, {'minimize_cost': 1.0}, reference_time=REFERENCE_TIME)

        self.assertTrue(first.optimization_id.startswith('opt_'))
        self.assertEqual(first.optimization_id, second.optimization_id)
        self.assertEqual(first.to_dict(), second.to_dict())

    def test_empty_window(self):
        run = FleetOptimizer(InMemoryPersistenceStore()).optimize(PERIOD, ['minimize_cost'],
                                                                  reference_time=REFERENCE_TIME)
        self.assertEqual(run.recommendations, [])
        self.assertEqual(run.changed_schedule_ids, [])
        self.assertTrue(run.publishable)

    def test_protected_priorities_stay_put(self):
        store = store_with(
            scheduled_fixture('H-1', 'OVEN-001', '2026-03-16T09:00:00', category='oven',
                              maintenance_type='predictive', priority_level='high', probability=0.75),
            scheduled_fixture('H-2', 'FRY-001', '2026-03-16T10:00:00', category='fryer',
                              maintenance_type='predictive', priority_level='high', probability=0.72),
            scheduled_fixture('L-1', 'MIX-001', '2026-03-16T11:00:00', maintenance_type='predictive'),
        )
        run = FleetOptimizer(store).optimize(PERIOD, {'minimize_downtime': 1.0},
                                             constraints={'max_schedules_per_day': 2},
                                             reference_time=REFERENCE_TIME)

        self.assertIn('time_constraints', [b.bottleneck_type for b in run.analysis.bottlenecks])
        self.assertEqual(run.changed_schedule_ids, ['L-1'])
        optimized = {s.schedule_id: s for s in run.optimized_schedules}
        self.assertEqual(optimized['L-1'].scheduled_date, datetime(2026, 3, 9, 11, 0))
        self.assertEqual(optimized['H-1'].scheduled_date, datetime(2026, 3, 16, 9, 0))
        self.assertTrue(run.publishable, run.validation['issues'])

    def test_unassigned_work_blocks_publication(self):
        store = store_with(*mixer_pair(), unassigned_oven())
        run = FleetOptimizer(store).optimize(PERIOD, {'minimize_cost': 1.0}, reference_time=REFERENCE_TIME)

        self.assertEqual(run.analysis.unassigned_tasks, {'OV-1': ['task_OVEN-009_0']})
        self.assertIn('outsourcing', [r.recommendation_type for r in run.recommendations])
        self.assertFalse(run.validation['resource_feasibility'])
        self.assertIn('OV-1 has unassigned tasks', run.validation['issues'])
        self.assertFalse(run.publishable)

    def test_outsourcing_within_cost_allowance(self):
        store = store_with(*mixer_pair(), unassigned_oven())
        run = FleetOptimizer(store).optimize(PERIOD, {'minimize_cost': 1.0},
                                             constraints={'max_cost_increase': 500.0},
                                             reference_time=REFERENCE_TIME)

        oven = next(s for s in run.optimized_schedules if s.schedule_id == 'OV-1')
        self.assertEqual([a.technician_id for a in oven.technician_assignments], [EXTERNAL_CONTRACTOR_ID])
        self.assertEqual(oven.cost_analysis.labor_cost, 95.0)
        self.assertEqual(run.change_summary['tasks_outsourced'], 1)
        self.assertTrue(run.publishable, run.validation['issues'])

    def test_implementation_plan_phases_by_complexity(self):
        run = FleetOptimizer(store_with(*mixer_pair())).optimize(PERIOD, {'minimize_cost': 1.0},
                                                                 reference_time=REFERENCE_TIME)
        phases = run.implementation_plan['phases']

        self.assertEqual([p['name'] for p in phases], ['Low-complexity changes', 'Medium-complexity changes'])
        self.assertEqual(phases[0]['start_date'], datetime(2026, 3, 9, 8, 0))
        self.assertEqual(phases[1]['start_date'], phases[0]['end_date'])

    def test_roster_rates_do_not_leak_between_runs(self):
        store = store_with(*mixer_pair())
        optimizer = FleetOptimizer(store)
        premium = [Technician('T-200', 'Sam Okafor', ['mechanical'], hourly_rate=120.0)]

        first = optimizer.optimize(PERIOD, {'minimize_cost': 1.0}, technicians=premium,
                                   reference_time=REFERENCE_TIME)
        plain = optimizer.optimize(PERIOD, {'minimize_cost': 1.0}, reference_time=REFERENCE_TIME)
        again = optimizer.optimize(PERIOD, {'minimize_cost': 1.0}, technicians=premium,
                                   reference_time=REFERENCE_TIME)
        fresh = FleetOptimizer(store).optimize(PERIOD, {'minimize_cost': 1.0}, reference_time=REFERENCE_TIME)

        self.assertEqual(first.to_dict(), again.to_dict())
        self.assertEqual(plain.to_dict(), fresh.to_dict())
        self.assertFalse(hasattr(optimizer, '_rates'))

    def test_invalid_period(self):
        with self.assertRaises(ValidationError):
            FleetOptimizer(InMemoryPersistenceStore()).optimize(
                {'start_date': '2026-03-31', 'end_date': '2026-03-01'}, ['minimize_cost'])


class TestProposalApplier(unittest.TestCase):
    """Test cases for ProposalApplier"""

    def setUp(self):
        self.store = store_with(*mixer_pair())
        self.sink = InMemoryAuditSink()
        self.applier = ProposalApplier(self.store, self.sink)
        self.run = FleetOptimizer(self.store).optimize(PERIOD, {'minimize_cost': 1.0},
                                                       reference_time=REFERENCE_TIME)

    def test_apply_publishes_changed_schedules(self):
        result = self.applier.apply(self.run, 'supervisor', REFERENCE_TIME)

        self.assertEqual(result['updated_schedules'], ['MX-1', 'MX-2'])
        self.assertEqual(self.store.get_schedule('MX-2').scheduled_date, datetime(2026, 3, 16, 9, 0))
        self.assertEqual(self.store.get_schedule('MX-2').version, 2)
        self.assertEqual(self.sink.events[-1].event_type, 'optimization_applied')

    def test_second_apply_conflicts(self):
        self.applier.apply(self.run, 'supervisor', REFERENCE_TIME)
        with self.assertRaises(ConflictError):
            self.applier.apply(self.run, 'supervisor', REFERENCE_TIME)

    def test_changed_window_conflicts(self):
        schedule = self.store.get_schedule('MX-1')
        schedule.notes.append('edited by planner')
        self.store.save_schedule(schedule, expected_version=schedule.version)

        with self.assertRaises(ConflictError):
            self.applier.apply(self.run, 'supervisor', REFERENCE_TIME)

    def test_approver_required(self):
        with self.assertRaises(ValidationError):
            self.applier.apply(self.run, '', REFERENCE_TIME)

    def test_fingerprint_tracks_versions(self):
        before = snapshot_fingerprint(self.store.list_schedules())
        self.applier.apply(self.run, 'supervisor', REFERENCE_TIME)
        self.assertNotEqual(before, snapshot_fingerprint(self.store.list_schedules()))

    def test_interleaved_write_leaves_nothing_applied(self):
        store = InterleavedWriteStore()
        for record in mixer_pair():
            store.save_schedule(MaintenanceSchedule.from_dict(record))
        run = FleetOptimizer(store).optimize(PERIOD, {'minimize_cost': 1.0}, reference_time=REFERENCE_TIME)
        applier = ProposalApplier(store, self.sink)

        store.interleave = True
        with self.assertRaises(ConflictError):
            applier.apply(run, 'supervisor', REFERENCE_TIME)

        mx1 = store.get_schedule('MX-1')
        self.assertEqual(mx1.version, 1)
        self.assertEqual(mx1.maintenance_type, MaintenanceType.PREVENTIVE)
        self.assertEqual(store.get_schedule('MX-2').version, 2)
        self.assertNotIn('optimization_applied', [e.event_type for e in self.sink.events])
