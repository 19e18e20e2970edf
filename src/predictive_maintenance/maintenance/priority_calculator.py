"""
Priority Calculator Module
Maps failure probability to a schedule priority level through a severity table
"""

from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass
import logging

from predictive_maintenance.config.settings import settings
from predictive_maintenance.exceptions import ValidationError
from predictive_maintenance.maintenance.models import PriorityLevel, parse_enum

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriorityThreshold:
    """A level applies when probability is strictly above ``above``"""
    level: PriorityLevel
    above: float


class PriorityCalculator:
    """
    Deterministic priority from failure probability

    The table is ordered from most to least severe; the first threshold that
    the probability exceeds wins, otherwise the default level applies.
    """

    def __init__(self,
                 thresholds: Optional[List[Dict[str, Any]]] = None,
                 default_level: Optional[str] = None):
        """Initialize calculator

        Args:
            thresholds: List of {level, above} entries; defaults to configuration
            default_level: Level used when no threshold is exceeded
        """
        raw = thresholds if thresholds is not None else settings.get('priority.thresholds', [])
        self.thresholds: Tuple[PriorityThreshold, ...] = tuple(
            PriorityThreshold(parse_enum(PriorityLevel, t['level'], 'priority level'), float(t['above']))
            for t in raw
        )
        cutoffs = [t.above for t in self.thresholds]
        if cutoffs != sorted(cutoffs, reverse=True):
            raise ValidationError("Priority thresholds must be ordered from most to least severe")

        self.default_level = parse_enum(
            PriorityLevel, default_level or settings.get('priority.default_level', 'low'), 'priority level'
        )

    def calculate(self, failure_probability: float) -> PriorityLevel:
        """Priority level for a failure probability"""
        for threshold in self.thresholds:
            if failure_probability > threshold.above:
                return threshold.level
        return self.default_level

    def rank(self, level: PriorityLevel) -> int:
        """Sort key where 0 is the most severe level"""
        order = [t.level for t in self.thresholds] + [self.default_level]
        return order.index(level) if level in order else len(order)
