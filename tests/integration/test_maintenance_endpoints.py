"""
Integration Tests for the Maintenance API Endpoints
"""

import pytest

from predictive_maintenance.api.maintenance_endpoints import create_app
from predictive_maintenance.api.maintenance_service import PredictiveMaintenanceService
from predictive_maintenance.data_ingestion.repositories import build_in_memory_backend

from conftest import REFERENCE_TIME, fleet_data, scheduled_fixture

PERIOD = {'start_date': '2026-03-09', 'end_date': '2026-03-31'}


@pytest.fixture
def client(service):
    app = create_app(service)
    app.config['TESTING'] = True
    return app.test_client()


@pytest.fixture
def mixer_client():
    backend = build_in_memory_backend(fleet_data(schedules=[
        scheduled_fixture('MX-1', 'MIX-001', '2026-03-16T09:00:00'),
        scheduled_fixture('MX-2', 'MIX-002', '2026-03-18T09:00:00'),
    ]))
    service = PredictiveMaintenanceService(clock=lambda: REFERENCE_TIME, **backend)
    return create_app(service).test_client()


class TestPredictionEndpoints:

    def test_predictions(self, client):
        response = client.post('/api/maintenance/predictions', json={'equipment_ids': ['OVEN-001']})
        body = response.get_json()

        assert response.status_code == 200
        assert body['success'] is True
        assert body['data']['predictions'][0]['degradation_trend'] == 'rapid_decline'

    def test_missing_ids_is_bad_request(self, client):
        response = client.post('/api/maintenance/predictions', json={})

        assert response.status_code == 400
        assert response.get_json()['error']['kind'] == 'ValidationError'


class TestScheduleEndpoints:

    def test_create_returns_201(self, client):
        response = client.post('/api/maintenance/schedules',
                               json={'equipment_ids': ['OVEN-001', 'MISSING']})
        body = response.get_json()

        assert response.status_code == 201
        assert body['data']['schedules'][0]['schedule_id'] == 'maint_sched_OVEN-001_20260302080000'
        assert body['data']['failures']['MISSING']['kind'] == 'NotFoundError'

    def test_list_with_filters(self, client):
        client.post('/api/maintenance/schedules', json={'equipment_ids': ['OVEN-001', 'MIX-001']})

        response = client.get('/api/maintenance/schedules?equipment_ids=MIX-001,&include_predictions=true')
        body = response.get_json()

        assert response.status_code == 200
        assert [s['equipment_id'] for s in body['data']['schedules']] == ['MIX-001']
        assert 'MIX-001' in body['data']['predictions']

    def test_invalid_date_range(self, client):
        response = client.get('/api/maintenance/schedules?start_date=2026-03-31&end_date=2026-03-01')
        assert response.status_code == 400

    def test_status_update(self, client):
        created = client.post('/api/maintenance/schedules', json={'equipment_ids': ['MIX-001']}).get_json()
        schedule_id = created['data']['schedules'][0]['schedule_id']

        response = client.patch(f'/api/maintenance/schedules/{schedule_id}/status',
                                json={'status': 'cancelled', 'actor': 'planner'})
        assert response.status_code == 200
        assert response.get_json()['data']['status'] == 'cancelled'

        again = client.post(f'/api/maintenance/schedules/{schedule_id}/status', json={'status': 'scheduled'})
        assert again.status_code == 400

    def test_unknown_schedule(self, client):
        response = client.patch('/api/maintenance/schedules/nope/status', json={'status': 'completed'})
        assert response.status_code == 404


class TestOptimizationEndpoints:

    def test_optimize_apply_conflict(self, mixer_client):
        created = mixer_client.post('/api/maintenance/optimizations',
                                    json={'period': PERIOD, 'objectives': {'minimize_cost': 1.0}})
        assert created.status_code == 201
        optimization_id = created.get_json()['data']['optimization_id']

        applied = mixer_client.post(f'/api/maintenance/optimizations/{optimization_id}/apply',
                                    json={'approved_by': 'supervisor'})
        assert applied.status_code == 200
        assert applied.get_json()['data']['updated_schedules'] == ['MX-1', 'MX-2']

        again = mixer_client.post(f'/api/maintenance/optimizations/{optimization_id}/apply',
                                  json={'approved_by': 'supervisor'})
        assert again.status_code == 409

    def test_bad_objectives(self, mixer_client):
        response = mixer_client.post('/api/maintenance/optimizations',
                                     json={'period': PERIOD, 'objectives': 'cheapest'})
        assert response.status_code == 400


class TestAnalyticsEndpoint:

    def test_empty_period_report(self, client):
        response = client.post('/api/maintenance/analytics',
                               json={'period': {'start_date': '2026-02-01', 'end_date': '2026-02-28'}})
        body = response.get_json()

        assert response.status_code == 200
        assert body['data']['improvement_opportunities'] == []


class TestErrorHandlers:

    def test_unknown_route(self, client):
        response = client.get('/api/maintenance/nothing-here')

        assert response.status_code == 404
        assert response.get_json()['error']['kind'] == 'NotFoundError'

    def test_wrong_method(self, client):
        response = client.delete('/api/maintenance/predictions')
        assert response.status_code == 405
