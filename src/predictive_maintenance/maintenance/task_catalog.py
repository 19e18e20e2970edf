"""
Task Catalog Generator
Builds the ordered maintenance task list for a piece of equipment
"""

from typing import Any, Dict, List, Optional
import logging

from predictive_maintenance.config.settings import settings
from predictive_maintenance.exceptions import ValidationError
from predictive_maintenance.forecasting.failure_probability import FailurePrediction
from predictive_maintenance.maintenance.models import Equipment, MaintenanceTask, RequiredPart

logger = logging.getLogger(__name__)


class TaskCatalog:
    """
    Category-keyed task table

    The table maps an equipment category to a list of task templates
    ``{name, time, skills[, description, tools, parts, safety]}``. Categories
    missing from the table use the generic templates. High-risk equipment
    gets an extra critical component replacement task.
    """

    def __init__(self, catalog: Optional[Dict[str, Any]] = None):
        self.catalog = dict(settings.get('task_catalog', {}))
        if catalog:
            self.catalog.update(catalog)

        self.categories: Dict[str, List[Dict[str, Any]]] = self.catalog.get('categories', {}) or {}
        self.generic: List[Dict[str, Any]] = self.catalog.get('generic', []) or []
        self.default_tools: List[str] = list(self.catalog.get('default_tools', []))
        self.default_safety: List[str] = list(self.catalog.get('default_safety', []))
        self.critical_threshold = float(self.catalog.get('critical_replacement_threshold', 0.6))
        self.critical_template: Dict[str, Any] = self.catalog.get('critical_replacement', {}) or {}

        if not self.generic:
            raise ValidationError("Task catalog requires a generic task set")

    def templates_for(self, category: str) -> List[Dict[str, Any]]:
        """Task templates for a category, falling back to the generic set"""
        templates = self.categories.get((category or '').lower())
        if not templates:
            logger.debug(f"No task templates for category '{category}', using generic set")
            return self.generic
        return templates

    def generate(self, equipment: Equipment, prediction: FailurePrediction) -> List[MaintenanceTask]:
        """Generate tasks for one schedule

        Args:
            equipment: Equipment being maintained
            prediction: Failure prediction driving the critical replacement rule

        Returns:
            Ordered list of MaintenanceTask with ids unique within the list
        """
        tasks = []
        for index, template in enumerate(self.templates_for(equipment.category)):
            tasks.append(MaintenanceTask(
                task_id=f"task_{equipment.equipment_id}_{index}",
                task_name=template['name'],
                task_description=template.get('description') or f"Scheduled {template['name'].lower()}",
                estimated_time_minutes=int(template['time']),
                required_skills=list(template.get('skills', [])),
                required_tools=list(template.get('tools', self.default_tools)),
                required_parts=[RequiredPart(**p) for p in template.get('parts', [])],
                safety_requirements=list(template.get('safety', self.default_safety)),
            ))

        if prediction.probability_of_failure > self.critical_threshold:
            tasks.append(self._critical_replacement(equipment))
            logger.info(f"Added critical component replacement for {equipment.equipment_id} "
                        f"(p={prediction.probability_of_failure:.2f})")

        return tasks

    def _critical_replacement(self, equipment: Equipment) -> MaintenanceTask:
        template = self.critical_template
        safety = list(template.get('safety', self.default_safety))
        if 'lockout_tagout' not in safety:
            safety.append('lockout_tagout')

        return MaintenanceTask(
            task_id=f"critical_task_{equipment.equipment_id}",
            task_name=template.get('name', 'Critical component replacement'),
            task_description=template.get('description', 'Replace components showing signs of imminent failure'),
            estimated_time_minutes=int(template.get('time', 120)),
            required_skills=list(template.get('skills', ['advanced_repair'])),
            required_tools=list(template.get('tools', ['specialized_tools'])),
            required_parts=[RequiredPart(
                part_name='Replacement component',
                part_number=f"RC-{equipment.equipment_id}-001",
                quantity=1,
                cost_estimate=float(template.get('part_cost', 250.0)),
            )],
            safety_requirements=safety,
        )
