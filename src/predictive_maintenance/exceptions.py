"""
Error kinds for the Predictive Maintenance Scheduling Engine

Every caller-visible failure carries a machine-readable ``kind`` and a
human-readable message. ``context`` holds the inputs needed to reproduce the
failure and is only ever written to logs, never returned to callers.
"""

from typing import Any, Dict, Optional


class MaintenanceEngineError(Exception):
    """Base class for all engine errors"""

    kind = "MaintenanceEngineError"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, str]:
        """Caller-safe representation"""
        return {'kind': self.kind, 'message': self.message}


class ValidationError(MaintenanceEngineError):
    """Malformed or empty input"""
    kind = "ValidationError"


class NotFoundError(MaintenanceEngineError):
    """Missing equipment, technician, SOP, schedule or run reference"""
    kind = "NotFoundError"


class DependencyError(MaintenanceEngineError):
    """Collaborator unavailable or timed out (transient, retried once)"""
    kind = "DependencyError"


class ComputationError(MaintenanceEngineError):
    """Invariant violated mid-pipeline; fatal for the unit of work"""
    kind = "ComputationError"


class ConflictError(MaintenanceEngineError):
    """Stale optimizer snapshot or schedule version on write"""
    kind = "ConflictError"
