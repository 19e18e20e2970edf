"""
Maintenance Planning CLI
Runs the service operations over an equipment fixture file
"""

import argparse
import json
import sys
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from predictive_maintenance.api.maintenance_service import PredictiveMaintenanceService, ServiceResponse
from predictive_maintenance.config.settings import Settings
from predictive_maintenance.data_ingestion.repositories import build_in_memory_backend
from predictive_maintenance.exceptions import MaintenanceEngineError
from predictive_maintenance.utils.helpers import parse_datetime
from predictive_maintenance.utils.logger import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID_INPUT = 2


def load_fixture(path: str) -> Dict[str, Any]:
    """Read a YAML or JSON fixture with equipment, technicians and procedures"""
    with open(Path(path), 'r') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Fixture {path} must contain a mapping")
    return data


def _objectives(values: Optional[List[str]]) -> Dict[str, float]:
    """Parse ``name=weight`` pairs; a bare name gets weight 1"""
    objectives = {}
    for item in values or ['minimize_cost']:
        name, _, weight = item.partition('=')
        objectives[name] = float(weight) if weight else 1.0
    return objectives


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='pdm-plan', description='Predictive maintenance planning',
                                     epilog='Set PDM_CONFIG_FILE to merge a YAML configuration over the defaults.')
    parser.add_argument('--data', required=True,
                        help='YAML/JSON fixture with equipment, technicians, procedures and history')
    parser.add_argument('--log-level', type=str, default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level')
    parser.add_argument('--verbose', action='store_true',
                        help='Emit log output to the console')
    parser.add_argument('--reference-time', type=str, default=None,
                        help='ISO timestamp used as "now"')

    subparsers = parser.add_subparsers(dest='command', required=True)

    predict = subparsers.add_parser('predict', help='Predict failures')
    predict.add_argument('equipment_ids', nargs='+')

    schedule = subparsers.add_parser('schedule', help='Create maintenance schedules')
    schedule.add_argument('equipment_ids', nargs='+')
    schedule.add_argument('--strategy', default=None,
                          choices=['condition_based', 'time_based', 'hybrid'])
    schedule.add_argument('--horizon', type=int, default=None, help='Prediction horizon in days')
    schedule.add_argument('--exclusive', action='store_true',
                          help='Give each task to at most one technician')

    optimize = subparsers.add_parser('optimize', help='Optimize scheduled maintenance in a period')
    optimize.add_argument('--start', required=True)
    optimize.add_argument('--end', required=True)
    optimize.add_argument('--objective', action='append', metavar='NAME[=WEIGHT]')
    optimize.add_argument('--max-cost-increase', type=float, default=None)

    analytics = subparsers.add_parser('analytics', help='Generate an analytics report')
    analytics.add_argument('--start', required=True)
    analytics.add_argument('--end', required=True)

    return parser


def run_command(args: argparse.Namespace, service: PredictiveMaintenanceService) -> ServiceResponse:
    now = parse_datetime(args.reference_time, 'reference_time')

    if args.command == 'predict':
        return service.predict_failures(args.equipment_ids, reference_time=now)

    if args.command == 'schedule':
        options = {'exclusive_assignment': args.exclusive}
        if args.strategy:
            options['strategy'] = args.strategy
        if args.horizon is not None:
            options['prediction_horizon_days'] = args.horizon
        return service.create_schedules(args.equipment_ids, options, reference_time=now, actor='cli')

    period = {'start_date': args.start, 'end_date': args.end}
    if args.command == 'optimize':
        constraints = {}
        if args.max_cost_increase is not None:
            constraints['max_cost_increase'] = args.max_cost_increase
        return service.optimize(period, _objectives(args.objective), constraints, reference_time=now)

    return service.generate_analytics(period, reference_time=now)


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function"""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings(overrides={
        'logging': {'level': args.log_level, 'enable_console': args.verbose},
    })
    setup_logging(settings)

    try:
        data = load_fixture(args.data)
        service = PredictiveMaintenanceService(**build_in_memory_backend(data))
        response = run_command(args, service)
    except MaintenanceEngineError as e:
        print(json.dumps({'success': False, 'error': e.to_dict()}), file=sys.stderr)
        return EXIT_INVALID_INPUT
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Could not load fixture {args.data}: {e}")
        print(json.dumps({'success': False, 'error': {'kind': 'ValidationError', 'message': str(e)}}),
              file=sys.stderr)
        return EXIT_INVALID_INPUT

    print(json.dumps(response.to_dict(), indent=2, default=str))
    if response.success:
        return EXIT_OK
    return EXIT_INVALID_INPUT if response.error['kind'] == 'ValidationError' else EXIT_FAILED


if __name__ == '__main__':
    sys.exit(main())
