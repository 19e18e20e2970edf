"""
Maintenance API Endpoints
Flask blueprint exposing the predictive maintenance service over HTTP
"""

from flask import Flask, Blueprint, current_app, jsonify, request
from typing import Optional
import logging

from predictive_maintenance.api.maintenance_service import PredictiveMaintenanceService, ServiceResponse

logger = logging.getLogger(__name__)

maintenance_api = Blueprint('maintenance_api', __name__, url_prefix='/api/maintenance')

EXTENSION_KEY = 'predictive_maintenance'

ERROR_STATUS = {
    'ValidationError': 400,
    'NotFoundError': 404,
    'ConflictError': 409,
    'ComputationError': 500,
    'InternalError': 500,
    'DependencyError': 503,
}


def _service() -> PredictiveMaintenanceService:
    return current_app.extensions[EXTENSION_KEY]


def _reply(response: ServiceResponse, success_status: int = 200):
    status = success_status if response.success else ERROR_STATUS.get(response.error['kind'], 500)
    return jsonify(response.to_dict()), status


def _body() -> dict:
    return request.get_json(silent=True) or {}


# =============================================================================
# Predictions and Schedules
# =============================================================================

@maintenance_api.route('/predictions', methods=['POST'])
def predict_failures():
    """Failure predictions for a list of equipment ids"""
    return _reply(_service().predict_failures(_body().get('equipment_ids')))


@maintenance_api.route('/schedules', methods=['POST'])
def create_schedules():
    """Create schedules; per-equipment failures are listed in the response"""
    body = _body()
    return _reply(_service().create_schedules(body.get('equipment_ids'), body.get('options')), 201)


@maintenance_api.route('/schedules', methods=['GET'])
def get_schedules():
    """List schedules filtered by equipment ids and date range"""
    ids = request.args.get('equipment_ids')
    start, end = request.args.get('start_date'), request.args.get('end_date')
    date_range = {'start_date': start, 'end_date': end} if start or end else None
    include = request.args.get('include_predictions', 'false').lower() in ('1', 'true', 'yes')
    return _reply(_service().get_schedules(
        equipment_ids=[i for i in ids.split(',') if i] if ids else None,
        date_range=date_range,
        include_predictions=include,
    ))


@maintenance_api.route('/schedules/<schedule_id>/status', methods=['PATCH', 'POST'])
def update_schedule_status(schedule_id: str):
    """Move a schedule to a new lifecycle status"""
    body = _body()
    return _reply(_service().update_schedule_status(schedule_id, body.get('status'),
                                                    actor=body.get('actor', 'api')))


# =============================================================================
# Optimization and Analytics
# =============================================================================

@maintenance_api.route('/optimizations', methods=['POST'])
def optimize():
    """Optimize the schedules in a period"""
    body = _body()
    return _reply(_service().optimize(body.get('period'), body.get('objectives'), body.get('constraints')), 201)


@maintenance_api.route('/optimizations/<optimization_id>/apply', methods=['POST'])
def apply_optimization(optimization_id: str):
    """Publish an optimization run"""
    return _reply(_service().apply_optimization(optimization_id, _body().get('approved_by')))


@maintenance_api.route('/analytics', methods=['POST'])
def generate_analytics():
    """Analytics report for a period"""
    return _reply(_service().generate_analytics(_body().get('period')))


def not_found(error):
    return jsonify({'success': False, 'error': {'kind': 'NotFoundError', 'message': 'Endpoint not found'}}), 404


def method_not_allowed(error):
    return jsonify({'success': False, 'error': {'kind': 'ValidationError', 'message': 'Method not allowed'}}), 405


def register_maintenance_api(app: Flask, service: PredictiveMaintenanceService):
    """Register the blueprint and bind the service it calls"""
    app.extensions[EXTENSION_KEY] = service
    app.register_blueprint(maintenance_api)
    app.register_error_handler(404, not_found)
    app.register_error_handler(405, method_not_allowed)
    logger.info("Maintenance API endpoints registered")


def create_app(service: Optional[PredictiveMaintenanceService] = None) -> Flask:
    """Flask application serving the maintenance API"""
    from predictive_maintenance.api.maintenance_service import create_default_service

    app = Flask(__name__)
    register_maintenance_api(app, service or create_default_service())
    return app
