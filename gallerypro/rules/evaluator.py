"""
Rule evaluation: runs the active rules for one context, in priority order,
folding the gallery media through the actions of every rule that matches.
"""
import logging
import time
from dataclasses import replace
from typing import List, Sequence

from gallerypro.rules.actions import execute_action
from gallerypro.rules.conditions import MAX_CONDITION_DEPTH, evaluate_condition_group
from gallerypro.rules.models import (
    EvaluationContext,
    EvaluationDebug,
    GlobalSettings,
    ProcessedMediaItem,
    Rule,
    RuleEvaluationResult,
    filter_active_rules,
    sort_rules_by_priority,
)

logger = logging.getLogger(__name__)

FAST_EVALUATION_MS = 16


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def _lift_media(context: EvaluationContext) -> List[ProcessedMediaItem]:
    return [ProcessedMediaItem.lift(item) for item in context.media]


def select_rules(rules: Sequence[Rule], settings: GlobalSettings) -> List[Rule]:
    """Active rules in priority order, capped at the per-evaluation limit."""
    active = filter_active_rules(sort_rules_by_priority(list(rules)))
    return active[:max(0, settings.max_rules_per_evaluation)]


def matches_scope(rule: Rule, context: EvaluationContext) -> bool:
    if rule.scope == "collection" and rule.scope_id:
        if context.collection_id != rule.scope_id:
            return False
    elif rule.scope == "product" and rule.scope_id:
        if context.product.id != rule.scope_id:
            return False

    scope = rule.product_scope
    if scope is not None and context.product.id:
        if scope.mode == "include" and context.product.id not in scope.product_ids:
            return False
        if scope.mode == "exclude" and context.product.id in scope.product_ids:
            return False
    return True


def apply_fallback(media: List[ProcessedMediaItem], behavior: str) -> List[ProcessedMediaItem]:
    if behavior == "show_all":
        return [_with_visibility(item, True) for item in media]
    if behavior == "show_none":
        return [_with_visibility(item, False) for item in media]
    return media


def _with_visibility(item: ProcessedMediaItem, visible: bool) -> ProcessedMediaItem:
    return replace(item, visible=visible)


def finalize_order(media: List[ProcessedMediaItem]) -> List[ProcessedMediaItem]:
    """Visible items first, renumbered in sequence; hidden items get -1."""
    visible = [replace(item, new_position=index)
               for index, item in enumerate(m for m in media if m.visible)]
    hidden = [replace(item, new_position=-1) for item in media if not item.visible]
    return visible + hidden


def _record_rule(media: List[ProcessedMediaItem], rule_id: str) -> None:
    # media items here are fresh copies owned by this evaluation
    for item in media:
        if item.visible and rule_id not in item.applied_rule_ids:
            item.applied_rule_ids = item.applied_rule_ids + [rule_id]


def _run_rules(rules: List[Rule], context: EvaluationContext, debug: EvaluationDebug,
               max_depth: int):
    media = _lift_media(context)
    matched_rules: List[Rule] = []

    for rule in rules:
        debug.rules_evaluated += 1
        if not matches_scope(rule, context):
            continue

        result = evaluate_condition_group(rule.conditions, context, max_depth=max_depth)
        debug.conditions_checked += result.conditions_checked
        if not result.matched:
            continue

        logger.debug(f"Rule {rule.id} ({rule.name}) matched, applying {len(rule.actions)} actions")
        matched_rules.append(rule)
        for action in rule.actions:
            media = execute_action(action, media, context)
            debug.actions_applied += 1
            _record_rule(media, rule.id)

        if rule.stop_processing:
            break

    return media, matched_rules


def evaluate_rules(rules: Sequence[Rule], context: EvaluationContext,
                   settings: GlobalSettings,
                   max_depth: int = MAX_CONDITION_DEPTH) -> RuleEvaluationResult:
    """Evaluate rules against a context and return the processed gallery.

    Every matching active rule applies, lowest priority value first, each
    seeing the media produced by the previous one. Errors raised while
    applying actions propagate to the caller; nothing is partially returned.
    """
    start = time.perf_counter()
    debug = EvaluationDebug()

    if not settings.enable_rules:
        return RuleEvaluationResult(
            media=_lift_media(context),
            matched_rules=[],
            evaluation_time_ms=_elapsed_ms(start),
            used_legacy_fallback=True,
            debug=debug,
        )

    media, matched_rules = _run_rules(select_rules(rules, settings), context, debug, max_depth)

    if not matched_rules:
        media = apply_fallback(media, settings.fallback_behavior)

    return RuleEvaluationResult(
        media=finalize_order(media),
        matched_rules=matched_rules,
        evaluation_time_ms=_elapsed_ms(start),
        used_legacy_fallback=not matched_rules and settings.use_legacy_fallback,
        debug=debug,
    )


def evaluate_rules_batch(rules: Sequence[Rule], contexts: Sequence[EvaluationContext],
                         settings: GlobalSettings) -> List[RuleEvaluationResult]:
    """Evaluate one rule set against many contexts."""
    return [evaluate_rules(rules, context, settings) for context in contexts]


def get_visible_media(result: RuleEvaluationResult) -> List[ProcessedMediaItem]:
    return [item for item in result.media if item.visible]


def get_media_ids_in_order(result: RuleEvaluationResult) -> List[str]:
    return [item.id for item in get_visible_media(result)]


def is_evaluation_fast(result: RuleEvaluationResult) -> bool:
    return result.evaluation_time_ms < FAST_EVALUATION_MS
