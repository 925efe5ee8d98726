"""Gallery Rule Engine

Evaluates merchant-authored gallery rules against a visitor context:
- conditions: leaf condition matching and AND/OR/NOT groups
- actions: filter, reorder, badge, limit, prioritize and replace executors
- evaluator: priority-ordered rule application
- validation: structural checks for stored rules
- templates: starter rules
"""

from .models import (
    EvaluationContext,
    GlobalSettings,
    MediaItem,
    ProcessedMediaItem,
    Rule,
    RuleEvaluationResult,
)
from .conditions import ConditionStructureError, evaluate_condition, evaluate_condition_group
from .actions import execute_action
from .evaluator import evaluate_rules, evaluate_rules_batch, get_media_ids_in_order, get_visible_media

__all__ = [
    'EvaluationContext',
    'GlobalSettings',
    'MediaItem',
    'ProcessedMediaItem',
    'Rule',
    'RuleEvaluationResult',
    'ConditionStructureError',
    'evaluate_condition',
    'evaluate_condition_group',
    'execute_action',
    'evaluate_rules',
    'evaluate_rules_batch',
    'get_media_ids_in_order',
    'get_visible_media',
]
