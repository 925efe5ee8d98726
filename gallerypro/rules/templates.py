"""
Starter rule templates.

Templates are plain dicts in the stored rule format. ``configOptions`` name
dotted/indexed paths into the rule (``conditions.conditions[0].value``) that
the admin fills in before the rule is created.
"""
import copy
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from gallerypro.rules.models import generate_rule_id

logger = logging.getLogger(__name__)


class TemplateNotFound(KeyError):
    """Raised for an unknown template id."""


TEMPLATE_ALIASES = {"instagram-traffic": "traffic-source-gallery"}

CATEGORY_LABELS = {
    "variant": "Variant Filtering",
    "mobile": "Mobile Optimization",
    "traffic": "Traffic Source",
    "promotion": "Promotions",
    "customer": "Customer Segments",
    "inventory": "Inventory",
    "testing": "A/B Testing",
    "regional": "Regional",
}


def _group(operator: str, *conditions: Dict[str, Any]) -> Dict[str, Any]:
    return {"operator": operator, "conditions": list(conditions)}


def _sale_window() -> Dict[str, str]:
    today = datetime.now(timezone.utc).date()
    return {"value": today.isoformat(), "valueEnd": (today + timedelta(days=7)).isoformat()}


def _build_templates() -> List[Dict[str, Any]]:
    return [
        {
            "id": "variant-filtering",
            "name": "Variant Image Filtering",
            "description": "Show images for selected variant",
            "category": "variant",
            "rule": {
                "name": "Variant Image Filtering",
                "description": "Show images matching the selected variant option",
                "scope": "shop",
                "conditions": _group("AND", {
                    "type": "variant", "operator": "not_equals", "value": "",
                    "optionName": "Color",
                }),
                "actions": [{
                    "type": "filter", "mode": "include", "matchType": "variant_value",
                    "matchValues": [], "matchMode": "any",
                }],
                "priority": 10,
                "stopProcessing": False,
                "status": "active",
            },
            "configOptions": [
                {"path": "conditions.conditions[0].optionName", "label": "Option Name",
                 "type": "text", "defaultValue": "Color", "required": True},
            ],
        },
        {
            "id": "mobile-optimization",
            "name": "Mobile Optimization",
            "description": "Limit images on mobile for faster loading",
            "category": "mobile",
            "rule": {
                "name": "Mobile Gallery Optimization",
                "description": "Show maximum 5 images on mobile devices",
                "scope": "shop",
                "conditions": _group("AND", {
                    "type": "device", "field": "type", "operator": "equals", "value": "mobile",
                }),
                "actions": [{"type": "limit", "maxImages": 5, "keep": "first", "alwaysIncludeFirst": True}],
                "priority": 20,
                "stopProcessing": False,
                "status": "active",
            },
            "configOptions": [
                {"path": "actions[0].maxImages", "label": "Maximum Images",
                 "type": "number", "defaultValue": 5, "required": True},
            ],
        },
        {
            "id": "traffic-source-gallery",
            "name": "Traffic Source Gallery",
            "description": "Prioritize specific images based on traffic source (UTM)",
            "category": "traffic",
            "rule": {
                "name": "Traffic Source Gallery",
                "description": "Prioritize tagged images for visitors from a specific traffic source",
                "scope": "shop",
                "conditions": _group(
                    "OR",
                    {"type": "traffic_source", "field": "utm_source", "operator": "equals", "value": "instagram"},
                    {"type": "url", "field": "referrer", "operator": "contains", "value": "instagram.com"},
                ),
                "actions": [{
                    "type": "prioritize", "strategy": "boost_to_front", "matchType": "media_tag",
                    "matchValues": ["lifestyle", "ugc", "social"],
                }],
                "priority": 15,
                "stopProcessing": False,
                "status": "active",
            },
            "configOptions": [
                {"path": "conditions.conditions[0].value", "label": "UTM Source",
                 "type": "text", "defaultValue": "instagram", "required": True},
                {"path": "conditions.conditions[1].value", "label": "Referrer Domain (optional)",
                 "type": "text", "defaultValue": "instagram.com"},
                {"path": "actions[0].matchValues", "label": "Image Tags to Prioritize",
                 "type": "tags", "defaultValue": ["lifestyle", "ugc", "social"], "required": True},
                {"path": "actions[0].type", "label": "Behavior", "type": "select",
                 "defaultValue": "prioritize", "required": True,
                 "options": [
                     {"value": "prioritize", "label": "Prioritize tagged images (show first)"},
                     {"value": "filter", "label": "Show only tagged images"},
                 ]},
            ],
        },
        {
            "id": "sale-badge",
            "name": "Sale Badge",
            "description": "Add SALE badge during promotional period",
            "category": "promotion",
            "rule": {
                "name": "Sale Badge",
                "description": "Show SALE badge during promotional period",
                "scope": "shop",
                "conditions": _group("AND", {
                    "type": "time", "field": "date", "operator": "between", **_sale_window(),
                }),
                "actions": [{
                    "type": "badge", "text": "SALE", "position": "top-right", "style": "danger",
                    "target": "first", "icon": "tag",
                }],
                "priority": 5,
                "stopProcessing": False,
                "status": "draft",
            },
            "configOptions": [
                {"path": "conditions.conditions[0].value", "label": "Start Date", "type": "date", "required": True},
                {"path": "conditions.conditions[0].valueEnd", "label": "End Date", "type": "date", "required": True},
                {"path": "actions[0].text", "label": "Badge Text", "type": "text",
                 "defaultValue": "SALE", "required": True},
            ],
        },
        {
            "id": "vip-customer",
            "name": "VIP Customer",
            "description": "Show exclusive images to VIP customers",
            "category": "customer",
            "rule": {
                "name": "VIP Customer Gallery",
                "description": "Show exclusive images to VIP tagged customers",
                "scope": "shop",
                "conditions": _group(
                    "AND",
                    {"type": "customer", "field": "is_logged_in", "operator": "is_true", "value": True},
                    {"type": "customer", "field": "tags", "operator": "contains", "value": ["VIP"]},
                ),
                "actions": [
                    {"type": "filter", "mode": "include", "matchType": "media_tag",
                     "matchValues": ["vip", "exclusive"]},
                    {"type": "badge", "text": "VIP EXCLUSIVE", "position": "top-left", "style": "primary",
                     "target": "matched", "matchType": "media_tag", "matchValues": ["exclusive"]},
                ],
                "priority": 8,
                "stopProcessing": False,
                "status": "active",
            },
            "configOptions": [
                {"path": "conditions.conditions[1].value", "label": "Customer Tags",
                 "type": "tags", "defaultValue": ["VIP"], "required": True},
                {"path": "actions[0].matchValues", "label": "Exclusive Image Tags",
                 "type": "tags", "defaultValue": ["vip", "exclusive"], "required": True},
            ],
        },
        {
            "id": "low-stock-alert",
            "name": "Low Stock Alert",
            "description": 'Add "Only X left!" urgency badge',
            "category": "inventory",
            "rule": {
                "name": "Low Stock Alert Badge",
                "description": 'Show "Only X left!" when stock is low',
                "scope": "shop",
                "conditions": _group(
                    "AND",
                    {"type": "inventory", "field": "total_quantity", "operator": "less_than", "value": 10},
                    {"type": "inventory", "field": "in_stock", "operator": "is_true", "value": True},
                ),
                "actions": [{
                    "type": "badge", "text": "Only {{count}} left!", "position": "bottom-left",
                    "style": "warning", "target": "first", "dynamicValues": {"inventoryCount": True},
                }],
                "priority": 3,
                "stopProcessing": False,
                "status": "active",
            },
            "configOptions": [
                {"path": "conditions.conditions[0].value", "label": "Stock Threshold",
                 "type": "number", "defaultValue": 10, "required": True},
                {"path": "actions[0].text", "label": "Badge Text", "type": "text",
                 "defaultValue": "Only {{count}} left!", "required": True},
            ],
        },
        {
            "id": "ab-test-hero",
            "name": "A/B Test Hero",
            "description": "Test different hero images for 50% of traffic",
            "category": "testing",
            "rule": {
                "name": "A/B Test: Lifestyle Hero",
                "description": "Show lifestyle images first for 50% of visitors",
                "scope": "shop",
                "conditions": _group("AND", {
                    "type": "ab_test", "testId": "hero_image_test", "bucketMin": 0, "bucketMax": 49,
                }),
                "actions": [{
                    "type": "prioritize", "strategy": "boost_to_front", "matchType": "media_tag",
                    "matchValues": ["lifestyle"],
                }],
                "priority": 25,
                "stopProcessing": False,
                "status": "active",
                "tags": ["ab-test", "hero_image_test"],
            },
            "configOptions": [
                {"path": "conditions.conditions[0].testId", "label": "Test ID",
                 "type": "text", "defaultValue": "hero_image_test", "required": True},
                {"path": "conditions.conditions[0].bucketMax", "label": "Traffic Percentage",
                 "type": "select", "defaultValue": "49", "required": True,
                 "options": [
                     {"value": "9", "label": "10%"},
                     {"value": "24", "label": "25%"},
                     {"value": "49", "label": "50%"},
                     {"value": "74", "label": "75%"},
                     {"value": "89", "label": "90%"},
                 ]},
                {"path": "actions[0].matchValues", "label": "Images to Prioritize (Variant B)",
                 "type": "tags", "defaultValue": ["lifestyle"], "required": True},
            ],
        },
        {
            "id": "regional-images",
            "name": "Regional Images",
            "description": "Show different images by country",
            "category": "regional",
            "rule": {
                "name": "Regional Images - US Market",
                "description": "Show US-specific images for US visitors",
                "scope": "shop",
                "conditions": _group("AND", {
                    "type": "geo", "field": "country", "operator": "in_list", "value": ["US", "CA"],
                }),
                "actions": [{
                    "type": "prioritize", "strategy": "boost_to_front", "matchType": "media_tag",
                    "matchValues": ["us", "north-america"],
                }],
                "priority": 12,
                "stopProcessing": False,
                "status": "active",
            },
            "configOptions": [
                {"path": "conditions.conditions[0].value", "label": "Countries",
                 "type": "tags", "defaultValue": ["US", "CA"], "required": True},
                {"path": "actions[0].matchValues", "label": "Regional Image Tags",
                 "type": "tags", "defaultValue": ["us", "north-america"], "required": True},
            ],
        },
    ]


def get_all_templates() -> List[Dict[str, Any]]:
    return _build_templates()


def get_template_by_id(template_id: str) -> Optional[Dict[str, Any]]:
    lookup = TEMPLATE_ALIASES.get(template_id, template_id)
    return next((t for t in _build_templates() if t["id"] == lookup), None)


def get_templates_by_category(category: str) -> List[Dict[str, Any]]:
    return [t for t in _build_templates() if t["category"] == category]


def get_template_categories() -> List[Dict[str, Any]]:
    counts: Dict[str, int] = {}
    for template in _build_templates():
        counts[template["category"]] = counts.get(template["category"], 0) + 1
    return [
        {"category": category, "label": label, "count": counts.get(category, 0)}
        for category, label in CATEGORY_LABELS.items()
    ]


def _split_path(path: str) -> List[Any]:
    parts: List[Any] = []
    for part in re.split(r"[.\[\]]+", path):
        if not part:
            continue
        parts.append(int(part) if part.isdigit() else part)
    return parts


def set_nested_value(target: Dict[str, Any], path: str, value: Any) -> None:
    """Set ``value`` at a path like ``conditions.conditions[0].value``."""
    parts = _split_path(path)
    current: Any = target
    for part, next_part in zip(parts, parts[1:]):
        if isinstance(current, list):
            current = current[part]
            continue
        if current.get(part) is None:
            current[part] = [] if isinstance(next_part, int) else {}
        current = current[part]
    current[parts[-1]] = value


def get_nested_value(source: Any, path: str) -> Any:
    current = source
    for part in _split_path(path):
        if current is None:
            return None
        if isinstance(current, list):
            if not isinstance(part, int) or part >= len(current):
                return None
            current = current[part]
        elif isinstance(current, dict):
            current = current.get(part)
        else:
            return None
    return current


def _coerce(option: Dict[str, Any], value: Any) -> Any:
    if option.get("type") == "number" and isinstance(value, str):
        try:
            return int(value) if value.strip().lstrip("-").isdigit() else float(value)
        except ValueError:
            return value
    if option["path"].endswith("bucketMax") and isinstance(value, str) and value.isdigit():
        return int(value)
    if option.get("type") == "tags" and isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return value


def create_rule_from_template(template_id: str, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Create a new rule dict from a template and admin-supplied config."""
    template = get_template_by_id(template_id)
    if template is None:
        raise TemplateNotFound(template_id)

    now = datetime.now(timezone.utc).isoformat()
    rule = copy.deepcopy(template["rule"])
    rule.update({
        "id": generate_rule_id(),
        "createdAt": now,
        "updatedAt": now,
        "templateId": template["id"],
    })

    for option in template["configOptions"]:
        if config and config.get(option["path"]) is not None:
            set_nested_value(rule, option["path"], _coerce(option, config[option["path"]]))

    if template["id"] == "traffic-source-gallery":
        action = rule["actions"][0]
        if action.get("type") == "filter":
            action["mode"] = "include"
            action.pop("strategy", None)

    logger.info(f"Created rule {rule['id']} from template {template['id']}")
    return rule


def validate_template_config(template_id: str, config: Dict[str, Any]) -> Dict[str, Any]:
    """Check required options. An option with a default counts as supplied."""
    template = get_template_by_id(template_id)
    if template is None:
        return {"valid": False, "errors": [f"Template not found: {template_id}"]}

    errors = []
    for option in template["configOptions"]:
        if not option.get("required"):
            continue
        value = config.get(option["path"])
        if (value is None or value == "") and option.get("defaultValue") is None:
            errors.append(f"{option['label']} is required")

    return {"valid": not errors, "errors": errors}
