"""
Condition matching for gallery rules.

``evaluate_condition`` checks one leaf against the evaluation context and
``evaluate_condition_group`` folds AND / OR / NOT groups over it. Matching
fails closed: unknown types, fields and operators evaluate to False.
"""
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, List, NamedTuple, Optional, Union
from urllib.parse import urlparse

from gallerypro.rules.models import (
    Condition,
    ConditionGroup,
    EvaluationContext,
    parse_datetime,
)

logger = logging.getLogger(__name__)

MAX_CONDITION_DEPTH = 32
MAX_REGEX_LENGTH = 200

CONDITION_TYPES = (
    "variant", "url", "device", "customer", "time", "geo", "inventory",
    "traffic_source", "session", "collection", "product", "ab_test",
)

STRING_OPERATORS = (
    "equals", "not_equals", "contains", "not_contains", "starts_with",
    "ends_with", "matches_regex", "in_list", "not_in_list",
)
NUMBER_OPERATORS = (
    "equals", "not_equals", "greater_than", "greater_than_or_equals",
    "less_than", "less_than_or_equals", "between", "not_between",
)
BOOLEAN_OPERATORS = ("is_true", "is_false")
LIST_OPERATORS = (
    "contains", "not_contains", "contains_any", "contains_all", "is_empty", "is_not_empty",
)
DATE_OPERATORS = ("before", "after", "on", "between", "in_last_n_days", "in_next_n_days")

_NUMBER_ALIASES = {
    "==": "equals",
    "!=": "not_equals",
    ">": "greater_than",
    ">=": "greater_than_or_equals",
    "<": "less_than",
    "<=": "less_than_or_equals",
}


class ConditionStructureError(ValueError):
    """Raised when a condition tree is nested deeper than allowed."""


class GroupResult(NamedTuple):
    matched: bool
    conditions_checked: int


# --- Operator helpers ---------------------------------------------------

def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def compare_string(operator: str, actual: Any, expected: Any) -> bool:
    """Case-insensitive string comparison. A list ``expected`` means any of."""
    if actual is None:
        return False
    actual_text = str(actual)
    lowered = actual_text.lower()
    values = [str(v).lower() for v in _as_list(expected) if v is not None]

    if operator in ("equals", "in_list"):
        return any(lowered == v for v in values)
    if operator in ("not_equals", "not_in_list"):
        return not any(lowered == v for v in values)
    if operator == "contains":
        return any(v in lowered for v in values)
    if operator == "not_contains":
        return not any(v in lowered for v in values)
    if operator == "starts_with":
        return any(lowered.startswith(v) for v in values)
    if operator == "ends_with":
        return any(lowered.endswith(v) for v in values)
    if operator == "matches_regex":
        pattern = str(expected)
        if len(pattern) > MAX_REGEX_LENGTH:
            return False
        try:
            return re.search(pattern, actual_text, re.IGNORECASE) is not None
        except re.error:
            return False
    return False


def compare_number(operator: str, actual: Any, expected: Any, expected_end: Any = None) -> bool:
    operator = _NUMBER_ALIASES.get(operator, operator)
    try:
        actual = float(actual)
        expected = float(expected)
    except (TypeError, ValueError):
        return False

    if operator == "equals":
        return actual == expected
    if operator == "not_equals":
        return actual != expected
    if operator == "greater_than":
        return actual > expected
    if operator == "greater_than_or_equals":
        return actual >= expected
    if operator == "less_than":
        return actual < expected
    if operator == "less_than_or_equals":
        return actual <= expected
    if operator in ("between", "not_between"):
        if expected_end is None:
            return False
        try:
            end = float(expected_end)
        except (TypeError, ValueError):
            return False
        if operator == "between":
            return expected <= actual <= end
        return actual < expected or actual > end
    return False


def compare_boolean(operator: str, actual: bool) -> bool:
    if operator == "is_true":
        return actual is True
    if operator == "is_false":
        return actual is False
    return False


def compare_list(operator: str, actual: List[Any], expected: Any) -> bool:
    actual = list(actual or [])
    present = {str(v).lower() for v in actual}
    values = [str(v).lower() for v in _as_list(expected) if v is not None]

    if operator in ("contains", "contains_any"):
        return any(v in present for v in values)
    if operator == "not_contains":
        return not any(v in present for v in values)
    if operator == "contains_all":
        return all(v in present for v in values)
    if operator == "is_empty":
        return len(actual) == 0
    if operator == "is_not_empty":
        return len(actual) > 0
    return False


def compare_date(operator: str, now: datetime, value: Any, value_end: Any = None) -> bool:
    now = parse_datetime(now)
    if operator in ("in_last_n_days", "in_next_n_days"):
        try:
            window = timedelta(days=float(value))
            wall_clock = datetime.now(timezone.utc)
            if operator == "in_last_n_days":
                return now >= wall_clock - window
            return now <= wall_clock + window
        except (TypeError, ValueError, OverflowError):
            return False

    try:
        target = parse_datetime(value)
    except (TypeError, ValueError):
        return False

    if operator == "before":
        return now < target
    if operator == "after":
        return now > target
    if operator == "on":
        return now.date() == target.astimezone(now.tzinfo).date()
    if operator == "between":
        if not value_end:
            return False
        try:
            end = parse_datetime(value_end)
        except (TypeError, ValueError):
            return False
        return target <= now <= end
    return False


def _missing_value_result(operator: str, negative_operators) -> bool:
    return operator in negative_operators


# --- Per-type evaluators ------------------------------------------------

def _variant(condition: Condition, context: EvaluationContext) -> bool:
    selected_options = context.variant.selected_options
    selected_values = context.variant.selected_values
    if not selected_options and not selected_values:
        return False

    if condition.option_name:
        option_value = selected_options.get(condition.option_name)
        if not option_value:
            return False
        return compare_string(condition.operator, option_value, condition.value)

    candidates = selected_values or list(selected_options.values())
    return any(compare_string(condition.operator, v, condition.value) for v in candidates)


def _url(condition: Condition, context: EvaluationContext) -> bool:
    traffic = context.traffic
    value = None
    if condition.field in ("path", "full_url"):
        value = traffic.path
    elif condition.field == "referrer":
        value = traffic.referrer
    elif condition.field == "param" and condition.param_name:
        value = traffic.custom_params.get(condition.param_name)

    if value is None:
        return _missing_value_result(condition.operator, ("not_contains", "not_equals"))
    return compare_string(condition.operator, value, condition.value)


def _device(condition: Condition, context: EvaluationContext) -> bool:
    if condition.field == "type":
        return compare_string(condition.operator, context.device, condition.value)
    if condition.field == "screen_width":
        return compare_number(condition.operator, context.screen_width, condition.value, condition.value_end)
    if condition.field == "touch_enabled":
        return compare_boolean(condition.operator, context.device in ("mobile", "tablet"))
    return False


def _customer(condition: Condition, context: EvaluationContext) -> bool:
    customer = context.customer
    if condition.field in ("is_logged_in", "has_account"):
        return compare_boolean(condition.operator, customer.is_logged_in)
    if condition.field == "tags":
        return compare_list(condition.operator, customer.tags, condition.value)
    if condition.field == "order_count":
        if customer.order_count is None:
            return False
        return compare_number(condition.operator, customer.order_count, condition.value, condition.value_end)
    if condition.field == "total_spent":
        if customer.total_spent is None:
            return False
        return compare_number(condition.operator, customer.total_spent, condition.value, condition.value_end)
    if condition.field == "email_domain":
        if not customer.email_domain:
            return False
        return compare_string(condition.operator, customer.email_domain, condition.value)
    return False


def _int_items(values) -> List[int]:
    items = []
    for v in values:
        if isinstance(v, bool):
            continue
        try:
            items.append(int(v))
        except (TypeError, ValueError, OverflowError):
            continue
    return items


def _time(condition: Condition, context: EvaluationContext) -> bool:
    time_ctx = context.time
    if condition.field in ("date", "datetime"):
        return compare_date(condition.operator, time_ctx.now, condition.value, condition.value_end)
    if condition.field == "day_of_week":
        if isinstance(condition.value, (list, tuple)):
            return time_ctx.day_of_week in _int_items(condition.value)
        return compare_number(condition.operator, time_ctx.day_of_week, condition.value, condition.value_end)
    if condition.field == "hour":
        return compare_number(condition.operator, time_ctx.hour, condition.value, condition.value_end)
    return False


def _geo(condition: Condition, context: EvaluationContext) -> bool:
    value = None
    if condition.field in ("country", "region", "city"):
        value = getattr(context.geo, condition.field)
    if value is None:
        return _missing_value_result(condition.operator, ("not_equals", "not_in_list"))
    return compare_string(condition.operator, value, condition.value)


def _inventory(condition: Condition, context: EvaluationContext) -> bool:
    inventory = context.inventory
    if condition.field == "total_quantity":
        return compare_number(condition.operator, inventory.total_inventory, condition.value, condition.value_end)
    if condition.field == "variant_quantity":
        variant_id = condition.variant_id or context.variant.id
        if not variant_id:
            return False
        quantity = inventory.variant_inventory.get(variant_id, 0)
        return compare_number(condition.operator, quantity, condition.value, condition.value_end)
    if condition.field == "in_stock":
        return compare_boolean(condition.operator, inventory.in_stock)
    return False


def referrer_domain(referrer: Optional[str]) -> Optional[str]:
    """Host part of a referrer URL without a leading ``www.``."""
    if not referrer:
        return None
    parsed = urlparse(referrer if "//" in referrer else f"//{referrer}")
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host or None


def _traffic_source(condition: Condition, context: EvaluationContext) -> bool:
    traffic = context.traffic
    fields = {
        "utm_source": traffic.utm_source,
        "utm_medium": traffic.utm_medium,
        "utm_campaign": traffic.utm_campaign,
        "utm_content": traffic.utm_content,
        "utm_term": traffic.utm_term,
        "referrer": traffic.referrer,
        "referrer_domain": referrer_domain(traffic.referrer),
    }
    value = fields.get(condition.field)
    if value is None:
        return _missing_value_result(condition.operator, ("not_equals", "not_in_list"))
    return compare_string(condition.operator, value, condition.value)


def _session(condition: Condition, context: EvaluationContext) -> bool:
    session = context.session
    if condition.field == "is_first_visit":
        return compare_boolean(condition.operator, session.is_first_visit)
    if condition.field == "page_views":
        return compare_number(condition.operator, session.page_views, condition.value, condition.value_end)
    if condition.field == "duration_seconds":
        return compare_number(condition.operator, session.duration, condition.value, condition.value_end)
    if condition.field == "viewed_products":
        return compare_list(condition.operator, session.viewed_product_ids, condition.value)
    if condition.field == "viewed_collections":
        return compare_list(condition.operator, session.viewed_collection_ids, condition.value)
    return False


def _collection(condition: Condition, context: EvaluationContext) -> bool:
    if not context.collection_id:
        return _missing_value_result(condition.operator, ("not_equals", "not_contains"))
    # handle/title/tags are not carried in the context; they match on the id
    if condition.field in ("id", "handle", "title", "tags"):
        return compare_string(condition.operator, context.collection_id, condition.value)
    return False


def _product(condition: Condition, context: EvaluationContext) -> bool:
    product = context.product
    if condition.field == "id":
        return compare_string(condition.operator, product.id, condition.value)
    if condition.field in ("handle", "product_type", "vendor"):
        value = getattr(product, condition.field)
        if not value:
            return False
        return compare_string(condition.operator, value, condition.value)
    if condition.field == "tags":
        return compare_list(condition.operator, product.tags, condition.value)
    return False


def _ab_test(condition: Condition, context: EvaluationContext) -> bool:
    try:
        low = int(condition.bucket_min)
        high = int(condition.bucket_max)
    except (TypeError, ValueError, OverflowError):
        return False
    return low <= context.ab_test_bucket <= high


_EVALUATORS = {
    "variant": _variant,
    "url": _url,
    "device": _device,
    "customer": _customer,
    "time": _time,
    "geo": _geo,
    "inventory": _inventory,
    "traffic_source": _traffic_source,
    "session": _session,
    "collection": _collection,
    "product": _product,
    "ab_test": _ab_test,
}


def evaluate_condition(condition: Condition, context: EvaluationContext) -> bool:
    """Evaluate a single leaf condition. Never raises for unknown input."""
    evaluator = _EVALUATORS.get(condition.type)
    if evaluator is None:
        logger.warning(f"Unknown condition type: {condition.type}")
        return False
    return evaluator(condition, context)


def evaluate_condition_group(
    group: ConditionGroup,
    context: EvaluationContext,
    max_depth: int = MAX_CONDITION_DEPTH,
    _depth: int = 0,
) -> GroupResult:
    """Evaluate a group recursively, short-circuiting AND and OR."""
    if _depth >= max_depth:
        raise ConditionStructureError(f"Condition tree exceeds maximum depth of {max_depth}")

    checked = 0

    def evaluate_child(child: Union[Condition, ConditionGroup]) -> bool:
        nonlocal checked
        if isinstance(child, ConditionGroup):
            nested = evaluate_condition_group(child, context, max_depth, _depth + 1)
            checked += nested.conditions_checked
            return nested.matched
        checked += 1
        result = evaluate_condition(child, context)
        return not result if child.negate else result

    if group.operator == "NOT":
        if len(group.conditions) != 1:
            logger.warning(f"NOT group must have exactly one child, got {len(group.conditions)}")
            return GroupResult(False, checked)
        return GroupResult(not evaluate_child(group.conditions[0]), checked)

    if group.operator == "AND":
        for child in group.conditions:
            if not evaluate_child(child):
                return GroupResult(False, checked)
        return GroupResult(True, checked)

    if group.operator == "OR":
        for child in group.conditions:
            if evaluate_child(child):
                return GroupResult(True, checked)
        return GroupResult(False, checked)

    logger.warning(f"Unknown condition group operator: {group.operator}")
    return GroupResult(False, checked)


def matches_group(group: ConditionGroup, context: EvaluationContext) -> bool:
    return evaluate_condition_group(group, context).matched
