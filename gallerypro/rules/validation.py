"""Structural validation of rule payloads before they are stored or evaluated."""
import re
from dataclasses import dataclass, asdict
from typing import Any, Dict, List

from gallerypro.rules.actions import BADGE_POSITIONS, BADGE_STYLE_COLORS
from gallerypro.rules.conditions import CONDITION_TYPES, MAX_REGEX_LENGTH
from gallerypro.rules.models import ACTION_TYPES, RULE_STATUSES, is_condition_group, parse_datetime

MAX_NAME_LENGTH = 100
MAX_PRIORITY = 1000
GROUP_OPERATORS = ("AND", "OR", "NOT")
REORDER_STRATEGIES = (
    "move_to_front", "move_to_back", "move_to_position", "shuffle", "reverse", "sort_by_tag_order",
)
LIMIT_KEEP = ("first", "last", "even_distribution", "matched")
PRIORITIZE_STRATEGIES = ("boost_to_front", "boost_positions", "interleave")
REPLACE_SOURCES = ("static_urls", "metafield", "collection", "product_metafield")
MAX_RELATIVE_DAYS = 36500
AB_TEST_BUCKETS = range(0, 100)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_int_list(value: Any, minimum: int = 0) -> bool:
    return isinstance(value, list) and all(_is_int(v) and v >= minimum for v in value)


@dataclass
class ValidationIssue:
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def _validate_group(group: Any, path: str, issues: List[ValidationIssue]) -> None:
    if not is_condition_group(group):
        issues.append(ValidationIssue(path, "Condition group must have an operator and a conditions list"))
        return

    operator = str(group.get("operator", "")).upper()
    if operator not in GROUP_OPERATORS:
        issues.append(ValidationIssue(f"{path}.operator", f"Unknown group operator: {group.get('operator')}"))
    if operator == "NOT" and len(group["conditions"]) != 1:
        issues.append(ValidationIssue(path, "NOT group must contain exactly one condition"))

    for index, child in enumerate(group["conditions"]):
        child_path = f"{path}.conditions[{index}]"
        if is_condition_group(child):
            _validate_group(child, child_path, issues)
        else:
            _validate_condition(child, child_path, issues)


def _validate_condition(condition: Any, path: str, issues: List[ValidationIssue]) -> None:
    if not isinstance(condition, dict):
        issues.append(ValidationIssue(path, "Condition must be an object"))
        return
    if condition.get("type") not in CONDITION_TYPES:
        issues.append(ValidationIssue(f"{path}.type", f"Unknown condition type: {condition.get('type')}"))
        return
    condition_type = condition["type"]
    operator = condition.get("operator")
    value = condition.get("value")
    if operator == "matches_regex":
        pattern = str(value if value is not None else "")
        if len(pattern) > MAX_REGEX_LENGTH:
            issues.append(ValidationIssue(f"{path}.value", f"Regex pattern must be at most {MAX_REGEX_LENGTH} characters"))
        else:
            try:
                re.compile(pattern)
            except re.error as e:
                issues.append(ValidationIssue(f"{path}.value", f"Invalid regex pattern: {e}"))

    if condition_type == "time" and condition.get("field") == "day_of_week" and isinstance(value, list):
        if not _is_int_list(value) or any(v > 6 for v in value):
            issues.append(ValidationIssue(f"{path}.value", "Days of week must be integers from 0 (Sunday) to 6"))

    if operator in ("in_last_n_days", "in_next_n_days"):
        if not isinstance(value, (int, float)) or isinstance(value, bool) or not 0 <= value <= MAX_RELATIVE_DAYS:
            issues.append(ValidationIssue(f"{path}.value", f"Day count must be a number between 0 and {MAX_RELATIVE_DAYS}"))

    if condition_type == "ab_test":
        for key in ("bucketMin", "bucketMax"):
            if key in condition and not (_is_int(condition[key]) and condition[key] in AB_TEST_BUCKETS):
                issues.append(ValidationIssue(f"{path}.{key}", "A/B test buckets must be integers from 0 to 99"))


def validate_action(action: Any, path: str = "actions[0]") -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    if not isinstance(action, dict):
        return [ValidationIssue(path, "Action must be an object")]

    action_type = action.get("type")
    if action_type not in ACTION_TYPES:
        return [ValidationIssue(f"{path}.type", f"Unknown action type: {action_type}")]

    if action_type == "filter":
        if action.get("mode", "include") not in ("include", "exclude"):
            issues.append(ValidationIssue(f"{path}.mode", "Filter mode must be include or exclude"))
        match_type = action.get("matchType")
        if match_type == "media_type" and action.get("mediaTypes"):
            pass
        elif match_type == "position":
            if not action.get("positions"):
                issues.append(ValidationIssue(f"{path}.positions", "Position filter needs positions"))
            elif not _is_int_list(action["positions"]):
                issues.append(ValidationIssue(f"{path}.positions", "Positions must be a list of non-negative integers"))
        elif match_type not in ("universal", "variant_value") and not action.get("matchValues"):
            issues.append(ValidationIssue(f"{path}.matchValues", "Filter needs at least one match value"))

    elif action_type == "reorder":
        strategy = action.get("strategy")
        if strategy not in REORDER_STRATEGIES:
            issues.append(ValidationIssue(f"{path}.strategy", f"Unknown reorder strategy: {strategy}"))
        elif strategy == "move_to_position" and action.get("position") is None:
            issues.append(ValidationIssue(f"{path}.position", "move_to_position needs a position"))
        elif strategy == "move_to_position" and not (_is_int(action["position"]) and action["position"] >= 0):
            issues.append(ValidationIssue(f"{path}.position", "Position must be a non-negative integer"))
        elif strategy == "sort_by_tag_order" and not action.get("tagOrder"):
            issues.append(ValidationIssue(f"{path}.tagOrder", "sort_by_tag_order needs a tag order"))

    elif action_type == "badge":
        if not str(action.get("text", "")).strip():
            issues.append(ValidationIssue(f"{path}.text", "Badge text is required"))
        if action.get("position", "top-right") not in BADGE_POSITIONS:
            issues.append(ValidationIssue(f"{path}.position", f"Unknown badge position: {action.get('position')}"))
        style = action.get("style", "primary")
        if style not in BADGE_STYLE_COLORS:
            issues.append(ValidationIssue(f"{path}.style", f"Unknown badge style: {style}"))
        elif style == "custom" and not (action.get("backgroundColor") and action.get("textColor")):
            issues.append(ValidationIssue(f"{path}.style", "Custom badge style needs background and text colors"))
        if action.get("target") == "positions" and not _is_int_list(action.get("targetPositions")):
            issues.append(ValidationIssue(f"{path}.targetPositions", "Badge target positions must be a list of non-negative integers"))

    elif action_type == "limit":
        max_images = action.get("maxImages")
        if not isinstance(max_images, int) or isinstance(max_images, bool) or max_images < 1:
            issues.append(ValidationIssue(f"{path}.maxImages", "maxImages must be at least 1"))
        if action.get("keep", "first") not in LIMIT_KEEP:
            issues.append(ValidationIssue(f"{path}.keep", f"Unknown keep strategy: {action.get('keep')}"))

    elif action_type == "prioritize":
        if action.get("strategy", "boost_to_front") not in PRIORITIZE_STRATEGIES:
            issues.append(ValidationIssue(f"{path}.strategy", f"Unknown prioritize strategy: {action.get('strategy')}"))
        if not action.get("matchType") or not action.get("matchValues"):
            issues.append(ValidationIssue(f"{path}.matchValues", "Prioritize needs a match type and match values"))
        boost_amount = action.get("boostAmount")
        if boost_amount is not None and not (_is_int(boost_amount) and boost_amount >= 1):
            issues.append(ValidationIssue(f"{path}.boostAmount", "boostAmount must be an integer of at least 1"))
        ratio = action.get("interleaveRatio")
        if ratio is not None and not (
            isinstance(ratio, dict) and all(_is_int(v) and v >= 0 for v in ratio.values())
        ):
            issues.append(ValidationIssue(f"{path}.interleaveRatio", "interleaveRatio must map prioritized and regular to non-negative integers"))

    elif action_type == "replace":
        source = action.get("source")
        if source not in REPLACE_SOURCES:
            issues.append(ValidationIssue(f"{path}.source", f"Unknown replace source: {source}"))
        elif source == "static_urls" and not action.get("staticUrls"):
            issues.append(ValidationIssue(f"{path}.staticUrls", "static_urls replace needs at least one URL"))
        elif source == "static_urls" and not isinstance(action["staticUrls"], list):
            issues.append(ValidationIssue(f"{path}.staticUrls", "staticUrls must be a list"))
        elif source == "static_urls":
            for index, entry in enumerate(action["staticUrls"]):
                if not isinstance(entry, dict) or not isinstance(entry.get("src"), str) or not entry["src"].strip():
                    issues.append(ValidationIssue(f"{path}.staticUrls[{index}]", "Each static URL needs a src string"))
                elif entry.get("position") is not None and not _is_int(entry["position"]):
                    issues.append(ValidationIssue(f"{path}.staticUrls[{index}].position", "Position must be an integer"))
        elif source in ("metafield", "product_metafield") and not (
            action.get("metafieldNamespace") and action.get("metafieldKey")
        ):
            issues.append(ValidationIssue(path, "Metafield replace needs a namespace and key"))

    return issues


def validate_rule(data: Any) -> List[ValidationIssue]:
    """Return every structural problem found in a raw rule dict."""
    if not isinstance(data, dict):
        return [ValidationIssue("rule", "Rule must be an object")]

    issues: List[ValidationIssue] = []

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        issues.append(ValidationIssue("name", "Rule name is required"))
    elif len(name) > MAX_NAME_LENGTH:
        issues.append(ValidationIssue("name", f"Rule name must be at most {MAX_NAME_LENGTH} characters"))

    if "status" in data and data["status"] not in RULE_STATUSES:
        issues.append(ValidationIssue("status", f"Unknown status: {data['status']}"))

    priority = data.get("priority", 0)
    if not isinstance(priority, int) or isinstance(priority, bool) or not 0 <= priority <= MAX_PRIORITY:
        issues.append(ValidationIssue("priority", f"Priority must be an integer between 0 and {MAX_PRIORITY}"))

    if data.get("conditions") is None:
        issues.append(ValidationIssue("conditions", "Conditions are required"))
    else:
        _validate_group(data["conditions"], "conditions", issues)

    actions = data.get("actions")
    if not isinstance(actions, list) or not actions:
        issues.append(ValidationIssue("actions", "At least one action is required"))
    else:
        for index, action in enumerate(actions):
            issues.extend(validate_action(action, f"actions[{index}]"))

    if data.get("startDate") and data.get("endDate"):
        try:
            if parse_datetime(data["startDate"]) > parse_datetime(data["endDate"]):
                issues.append(ValidationIssue("endDate", "End date must be after start date"))
        except ValueError:
            issues.append(ValidationIssue("startDate", "Dates must be ISO 8601 strings"))

    return issues


def is_valid_rule(data: Any) -> bool:
    return not validate_rule(data)
