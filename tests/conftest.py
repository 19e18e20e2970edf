"""
Pytest configuration and shared fixtures for Predictive Maintenance Scheduling Engine tests
"""

import pytest
import sys
import copy
from pathlib import Path
from datetime import datetime

# Add src to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from predictive_maintenance.api.maintenance_service import PredictiveMaintenanceService
from predictive_maintenance.config.settings import SchedulingConfig
from predictive_maintenance.data_ingestion.repositories import build_in_memory_backend

REFERENCE_TIME = datetime(2026, 3, 2, 8, 0)

EQUIPMENT = [
    {
        'equipment_id': 'OVEN-001',
        'name': 'Deck Oven 1',
        'category': 'commercial_oven',
        'installation_date': '2014-03-02T08:00:00',
        'total_operating_hours': 25000,
        'maintenance_history': [{'performed_at': '2025-12-01T09:00:00', 'maintenance_type': 'preventive'}],
        'sensor_readings': [{'signal_type': 'temperature', 'current_value': 88.0, 'threshold_value': 85.0}],
        'location': 'Bakery line A',
    },
    {
        'equipment_id': 'MIX-001',
        'name': 'Spiral Mixer',
        'category': 'mixer',
        'installation_date': '2026-03-02T08:00:00',
        'total_operating_hours': 0,
        'maintenance_history': [
            {'performed_at': '2026-02-23T09:00:00', 'maintenance_type': 'calibration'},
            {'performed_at': '2026-02-24T09:00:00', 'maintenance_type': 'preventive'},
            {'performed_at': '2026-02-25T09:00:00', 'maintenance_type': 'preventive'},
            {'performed_at': '2026-02-26T09:00:00', 'maintenance_type': 'preventive'},
        ],
    },
    {
        'equipment_id': 'FRIDGE-001',
        'name': 'Walk-in Cooler',
        'category': 'refrigeration',
    },
]

TECHNICIANS = [
    {'technician_id': 'T-100', 'name': 'Alex Rivera', 'specializations': ['calibration', 'electrical'],
     'hourly_rate': 70.0},
    {'technician_id': 'T-200', 'name': 'Sam Okafor',
     'specializations': ['mechanical', 'advanced_repair', 'maintenance', 'safety']},
    {'technician_id': 'T-300', 'name': 'Jordan Lee', 'specializations': ['hvac'], 'is_active': False},
]

PROCEDURES = [
    {'sop_id': 'SOP-BAKE', 'title': 'Bread baking', 'equipment_requirements': [
        {'equipment_id': 'OVEN-001', 'criticality': 'critical', 'alternative_equipment': ['OVEN-002']},
    ]},
    {'sop_id': 'SOP-DOUGH', 'title': 'Dough preparation', 'equipment_requirements': [
        {'equipment_id': 'MIX-001', 'criticality': 'moderate'},
        {'equipment_id': 'OVEN-001', 'criticality': 'minimal'},
    ]},
    {'sop_id': 'SOP-OLD', 'title': 'Retired procedure', 'is_active': False, 'equipment_requirements': [
        {'equipment_id': 'OVEN-001', 'criticality': 'critical'},
    ]},
]


def fleet_data(**extra):
    """Fixture mapping accepted by build_in_memory_backend"""
    data = {
        'equipment': copy.deepcopy(EQUIPMENT),
        'technicians': copy.deepcopy(TECHNICIANS),
        'procedures': copy.deepcopy(PROCEDURES),
    }
    data.update(copy.deepcopy(extra))
    return data


def fast_scheduling_config() -> SchedulingConfig:
    """Scheduling config without retry back-off delays"""
    return SchedulingConfig(max_workers=2, request_timeout_seconds=1.0, max_retries=1,
                            retry_backoff_seconds=0.0, default_constraints={'minimum_notice_days': 3})


def scheduled_fixture(schedule_id, equipment_id, scheduled_date, category='mixer',
                      maintenance_type='preventive', priority_level='low', probability=0.1,
                      technician_id='T-200', minutes=60, skills=('mechanical',), assigned=True,
                      status='scheduled'):
    """Stored schedule record with a reconciled cost breakdown"""
    hours = round(minutes / 60, 1)
    labor = round(hours * 65.0, 2)
    operational = round(labor * 0.15, 2)
    task_id = f"task_{equipment_id}_0"
    return {
        'schedule_id': schedule_id,
        'equipment_id': equipment_id,
        'equipment_name': equipment_id,
        'equipment_category': category,
        'maintenance_type': maintenance_type,
        'scheduled_date': scheduled_date,
        'estimated_duration_hours': 2.0,
        'priority_level': priority_level,
        'status': status,
        'maintenance_tasks': [{
            'task_id': task_id,
            'task_name': 'General inspection',
            'task_description': 'Scheduled general inspection',
            'estimated_time_minutes': minutes,
            'required_skills': list(skills),
        }],
        'technician_assignments': [{
            'technician_id': technician_id,
            'technician_name': technician_id,
            'specialization': skills[0],
            'assigned_tasks': [task_id],
            'estimated_hours': hours,
        }] if assigned else [],
        'predictive_indicators': {
            'failure_probability': probability,
            'remaining_useful_life_days': 400.0,
            'degradation_trend': 'stable',
            'confidence_level': 0.85,
        },
        'cost_analysis': {
            'estimated_maintenance_cost': labor if assigned else 0.0,
            'parts_cost': 0.0,
            'labor_cost': labor if assigned else 0.0,
            'operational_cost': operational if assigned else 0.0,
            'downtime_cost': 0.0,
            'total_cost_estimate': (labor + operational) if assigned else 0.0,
            'cost_savings_vs_reactive': 0.0,
        },
    }


@pytest.fixture
def reference_time():
    """Fixed "now" used across tests"""
    return REFERENCE_TIME


@pytest.fixture
def backend():
    """In-memory collaborators loaded with the sample fleet"""
    return build_in_memory_backend(fleet_data())


@pytest.fixture
def service(backend):
    """Service over the sample fleet with a fixed clock"""
    return PredictiveMaintenanceService(clock=lambda: REFERENCE_TIME, **backend)
