"""
Helper Functions Module
Provides utility functions for the Predictive Maintenance Scheduling Engine
"""

import json
import hashlib
import time
from typing import Any, Callable, Optional, Union
from datetime import datetime, date, timedelta
import numpy as np

from predictive_maintenance.exceptions import DependencyError, ValidationError
from predictive_maintenance.utils.logger import get_logger

logger = get_logger(__name__)

# ========================================
# Numeric Helpers
# ========================================

def safe_divide(numerator: Union[float, np.ndarray],
                denominator: Union[float, np.ndarray],
                default: float = 0.0) -> Union[float, np.ndarray]:
    """Safely divide two numbers or arrays, handling division by zero

    Args:
        numerator: Numerator value(s)
        denominator: Denominator value(s)
        default: Default value for division by zero

    Returns:
        Result of division or default value
    """
    with np.errstate(divide='ignore', invalid='ignore'):
        result = np.divide(numerator, denominator)
        if isinstance(result, np.ndarray):
            result[~np.isfinite(result)] = default
        else:
            result = default if not np.isfinite(result) else float(result)
    return result


def round_currency(amount: float) -> float:
    """Round a monetary amount to cents"""
    return round(float(amount), 2)


# ========================================
# Date Helpers
# ========================================

def parse_datetime(value: Union[str, datetime, date, None], field_name: str = 'date') -> Optional[datetime]:
    """Parse ISO strings, dates and datetimes into a naive datetime

    Raises:
        ValidationError: If the value cannot be parsed
    """
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f"Invalid {field_name}: {value!r}")
    return parsed.replace(tzinfo=None) if parsed.tzinfo else parsed


def parse_period(period: Any) -> tuple:
    """Normalize a {start_date, end_date} mapping or (start, end) pair

    Raises:
        ValidationError: If bounds are missing or reversed
    """
    if isinstance(period, dict):
        start, end = period.get('start_date'), period.get('end_date')
    elif isinstance(period, (tuple, list)) and len(period) == 2:
        start, end = period
    else:
        raise ValidationError("period must provide start_date and end_date")

    start_dt = parse_datetime(start, 'start_date')
    end_dt = parse_datetime(end, 'end_date')
    if start_dt is None or end_dt is None:
        raise ValidationError("period must provide start_date and end_date")
    if end_dt < start_dt:
        raise ValidationError("period end_date precedes start_date")
    return start_dt, end_dt


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days from start to end"""
    return (end - start) / timedelta(days=1)


# ========================================
# Identity Helpers
# ========================================

def stable_digest(payload: Any, length: int = 12) -> str:
    """Deterministic short hash of a JSON-serializable payload"""
    encoded = json.dumps(payload, sort_keys=True, default=str).encode('utf-8')
    return hashlib.sha256(encoded).hexdigest()[:length]


# ========================================
# Collaborator Access
# ========================================

def call_with_retry(func: Callable, *args,
                    max_retries: int = 1,
                    backoff_seconds: float = 0.5,
                    operation: str = 'collaborator call',
                    **kwargs) -> Any:
    """Invoke a collaborator, retrying transient DependencyErrors

    Only DependencyError is retried; every other exception propagates on the
    first attempt.

    Args:
        func: Callable to invoke
        max_retries: Extra attempts after the first
        backoff_seconds: Base delay, doubled per retry
        operation: Label used in log messages

    Returns:
        Whatever func returns
    """
    attempt = 0
    while True:
        try:
            return func(*args, **kwargs)
        except DependencyError as e:
            attempt += 1
            if attempt > max_retries:
                logger.error(f"{operation} failed after {max_retries} retries: {e.message}")
                raise
            delay = backoff_seconds * (2 ** (attempt - 1))
            logger.warning(f"{operation} failed (attempt {attempt}/{max_retries + 1}): {e.message}; retrying in {delay:.2f}s")
            time.sleep(delay)
