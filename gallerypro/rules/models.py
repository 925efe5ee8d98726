"""
Core models for the gallery rule engine.

Engine types are plain dataclasses. ``from_dict`` reads the camelCase JSON
shape stored by the admin app and sent by the storefront; ``to_dict`` writes
it back for API responses.
"""
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Union


RULE_STATUSES = ("draft", "active", "paused", "scheduled")
RULE_SCOPES = ("shop", "collection", "product")
FALLBACK_BEHAVIORS = ("default_gallery", "show_all", "show_none")


@dataclass
class MediaItem:
    """A gallery asset as the engine sees it."""
    id: str
    type: str = "image"           # image | video
    src: str = ""
    alt: Optional[str] = None
    position: int = 0             # original index, never mutated
    tags: List[str] = field(default_factory=list)
    variant_values: List[str] = field(default_factory=list)
    universal: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int = 0) -> "MediaItem":
        return cls(
            id=str(data.get("id", f"media_{index + 1}")),
            type=data.get("type", "image"),
            src=data.get("src", ""),
            alt=data.get("alt"),
            position=data.get("position", index),
            tags=list(data.get("tags") or []),
            variant_values=list(data.get("variantValues") or []),
            universal=bool(data.get("universal", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "src": self.src,
            "alt": self.alt,
            "position": self.position,
            "tags": list(self.tags),
            "variantValues": list(self.variant_values),
            "universal": self.universal,
        }


@dataclass(frozen=True)
class BadgeOverlay:
    """Badge drawn on top of a gallery image."""
    text: str
    position: str = "top-right"
    style: str = "primary"
    background_color: Optional[str] = None
    text_color: Optional[str] = None
    icon: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "text": self.text,
            "position": self.position,
            "style": self.style,
            "backgroundColor": self.background_color,
            "textColor": self.text_color,
        }
        if self.icon:
            data["icon"] = self.icon
        return data


@dataclass
class ProcessedMediaItem(MediaItem):
    """MediaItem plus the fields maintained by action executors."""
    visible: bool = True
    new_position: int = 0
    badges: List[BadgeOverlay] = field(default_factory=list)
    applied_rule_ids: List[str] = field(default_factory=list)

    @classmethod
    def lift(cls, item: MediaItem) -> "ProcessedMediaItem":
        """Initial engine state for a raw media item."""
        return cls(
            id=item.id,
            type=item.type,
            src=item.src,
            alt=item.alt,
            position=item.position,
            tags=list(item.tags),
            variant_values=list(item.variant_values),
            universal=item.universal,
            visible=True,
            new_position=item.position,
            badges=[],
            applied_rule_ids=[],
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "visible": self.visible,
            "newPosition": self.new_position,
            "badges": [b.to_dict() for b in self.badges],
            "appliedRuleIds": list(self.applied_rule_ids),
        })
        return data


# --- Conditions ---------------------------------------------------------

@dataclass
class Condition:
    """Leaf condition. Which attributes matter depends on ``type``."""
    type: str
    field: Optional[str] = None
    operator: str = "equals"
    value: Any = None
    value_end: Any = None
    negate: bool = False
    option_name: Optional[str] = None
    param_name: Optional[str] = None
    variant_id: Optional[str] = None
    test_id: Optional[str] = None
    bucket_min: int = 0
    bucket_max: int = 99

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        return cls(
            type=data.get("type", ""),
            field=data.get("field"),
            operator=data.get("operator", "equals"),
            value=data.get("value"),
            value_end=data.get("valueEnd"),
            negate=bool(data.get("negate", False)),
            option_name=data.get("optionName"),
            param_name=data.get("paramName"),
            variant_id=data.get("variantId"),
            test_id=data.get("testId"),
            bucket_min=data.get("bucketMin", 0),
            bucket_max=data.get("bucketMax", 99),
        )


@dataclass
class ConditionGroup:
    """Composite node: AND / OR over children, NOT over exactly one."""
    operator: str = "AND"
    conditions: List[Union[Condition, "ConditionGroup"]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConditionGroup":
        children = []
        for child in data.get("conditions") or []:
            children.append(parse_condition_node(child))
        return cls(operator=str(data.get("operator", "AND")).upper(), conditions=children)


def is_condition_group(data: Any) -> bool:
    """True for the raw dict shape of a group."""
    return (
        isinstance(data, dict)
        and isinstance(data.get("conditions"), list)
        and "operator" in data
        and "type" not in data
    )


def parse_condition_node(data: Dict[str, Any]) -> Union[Condition, ConditionGroup]:
    if is_condition_group(data):
        return ConditionGroup.from_dict(data)
    return Condition.from_dict(data)


# --- Actions ------------------------------------------------------------

@dataclass
class FilterAction:
    mode: str = "include"         # include | exclude
    match_type: str = "media_tag"
    match_values: List[str] = field(default_factory=list)
    match_mode: str = "any"       # any | all
    media_types: Optional[List[str]] = None
    positions: Optional[List[int]] = None
    type: str = "filter"


@dataclass
class ReorderAction:
    strategy: str = "move_to_front"
    match_type: Optional[str] = None
    match_values: Optional[List[str]] = None
    position: Optional[int] = None
    tag_order: Optional[List[str]] = None
    preserve_relative_order: bool = True
    type: str = "reorder"


@dataclass
class BadgeAction:
    text: str = ""
    position: str = "top-right"
    style: str = "primary"
    target: str = "all"           # all | first | last | positions | matched
    target_positions: Optional[List[int]] = None
    match_type: Optional[str] = None
    match_values: Optional[List[str]] = None
    background_color: Optional[str] = None
    text_color: Optional[str] = None
    icon: Optional[str] = None
    dynamic_values: Dict[str, Any] = field(default_factory=dict)
    type: str = "badge"


@dataclass
class LimitAction:
    max_images: int = 5
    keep: str = "first"           # first | last | even_distribution | matched
    always_include_first: bool = False
    match_type: Optional[str] = None
    match_values: Optional[List[str]] = None
    type: str = "limit"


@dataclass
class PrioritizeAction:
    strategy: str = "boost_to_front"  # boost_to_front | boost_positions | interleave
    match_type: str = "media_tag"
    match_values: List[str] = field(default_factory=list)
    boost_amount: Optional[int] = None
    interleave_ratio: Optional[Dict[str, int]] = None
    type: str = "prioritize"


@dataclass
class StaticMedia:
    src: str
    alt: Optional[str] = None
    position: int = 0


@dataclass
class ReplaceAction:
    source: str = "static_urls"   # static_urls | metafield | collection | product_metafield
    static_urls: Optional[List[StaticMedia]] = None
    append_mode: bool = False
    max_images: Optional[int] = None
    metafield_namespace: Optional[str] = None
    metafield_key: Optional[str] = None
    collection_id: Optional[str] = None
    type: str = "replace"


@dataclass
class UnknownAction:
    """Placeholder for an action type the engine does not know."""
    type: str
    params: Dict[str, Any] = field(default_factory=dict)


Action = Union[FilterAction, ReorderAction, BadgeAction, LimitAction,
               PrioritizeAction, ReplaceAction, UnknownAction]

ACTION_TYPES = ("filter", "reorder", "badge", "limit", "prioritize", "replace")


def action_from_dict(data: Dict[str, Any]) -> Action:
    """Build the typed action for a raw action dict."""
    action_type = data.get("type")
    if action_type == "filter":
        return FilterAction(
            mode=data.get("mode", "include"),
            match_type=data.get("matchType", "media_tag"),
            match_values=list(data.get("matchValues") or []),
            match_mode=data.get("matchMode", "any"),
            media_types=data.get("mediaTypes"),
            positions=data.get("positions"),
        )
    if action_type == "reorder":
        return ReorderAction(
            strategy=data.get("strategy", "move_to_front"),
            match_type=data.get("matchType"),
            match_values=data.get("matchValues"),
            position=data.get("position"),
            tag_order=data.get("tagOrder"),
            preserve_relative_order=data.get("preserveRelativeOrder", True) is not False,
        )
    if action_type == "badge":
        return BadgeAction(
            text=data.get("text", ""),
            position=data.get("position", "top-right"),
            style=data.get("style", "primary"),
            target=data.get("target", "all"),
            target_positions=data.get("targetPositions"),
            match_type=data.get("matchType"),
            match_values=data.get("matchValues"),
            background_color=data.get("backgroundColor"),
            text_color=data.get("textColor"),
            icon=data.get("icon"),
            dynamic_values=dict(data.get("dynamicValues") or {}),
        )
    if action_type == "limit":
        return LimitAction(
            max_images=int(data.get("maxImages", 5)),
            keep=data.get("keep", "first"),
            always_include_first=bool(data.get("alwaysIncludeFirst", False)),
            match_type=data.get("matchType"),
            match_values=data.get("matchValues"),
        )
    if action_type == "prioritize":
        return PrioritizeAction(
            strategy=data.get("strategy", "boost_to_front"),
            match_type=data.get("matchType", "media_tag"),
            match_values=list(data.get("matchValues") or []),
            boost_amount=data.get("boostAmount"),
            interleave_ratio=data.get("interleaveRatio"),
        )
    if action_type == "replace":
        static_urls = None
        if data.get("staticUrls") is not None:
            static_urls = [
                StaticMedia(src=u.get("src", ""), alt=u.get("alt"), position=u.get("position", i))
                for i, u in enumerate(data["staticUrls"])
            ]
        return ReplaceAction(
            source=data.get("source", "static_urls"),
            static_urls=static_urls,
            append_mode=bool(data.get("appendMode", False)),
            max_images=data.get("maxImages"),
            metafield_namespace=data.get("metafieldNamespace"),
            metafield_key=data.get("metafieldKey"),
            collection_id=data.get("collectionId"),
        )
    params = {k: v for k, v in data.items() if k != "type"}
    return UnknownAction(type=str(action_type), params=params)


# --- Rules --------------------------------------------------------------

@dataclass
class ProductScope:
    mode: str = "all"             # all | include | exclude
    product_ids: List[str] = field(default_factory=list)


@dataclass
class Rule:
    """A merchant-authored condition -> actions pair."""
    id: str
    name: str
    conditions: ConditionGroup = field(default_factory=ConditionGroup)
    actions: List[Action] = field(default_factory=list)
    priority: int = 0
    status: str = "draft"
    description: str = ""
    scope: str = "shop"
    scope_id: Optional[str] = None
    product_scope: Optional[ProductScope] = None
    stop_processing: bool = False
    tags: List[str] = field(default_factory=list)
    template_id: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rule":
        product_scope = None
        if isinstance(data.get("productScope"), dict):
            scope = data["productScope"]
            product_scope = ProductScope(
                mode=scope.get("mode", "all"),
                product_ids=[str(p) for p in scope.get("productIds") or []],
            )
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            conditions=ConditionGroup.from_dict(data.get("conditions") or {}),
            actions=[action_from_dict(a) for a in data.get("actions") or []],
            priority=data.get("priority", 0),
            status=data.get("status", "draft"),
            description=data.get("description", ""),
            scope=data.get("scope", "shop"),
            scope_id=data.get("scopeId"),
            product_scope=product_scope,
            stop_processing=bool(data.get("stopProcessing", False)),
            tags=list(data.get("tags") or []),
            template_id=data.get("templateId"),
            start_date=data.get("startDate"),
            end_date=data.get("endDate"),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )


def sort_rules_by_priority(rules: List[Any]) -> List[Any]:
    """Stable ascending sort. Works on Rule objects and raw dicts."""
    def key(rule):
        if isinstance(rule, dict):
            return rule.get("priority", 0)
        return rule.priority
    return sorted(rules, key=key)


def filter_active_rules(rules: List[Rule]) -> List[Rule]:
    return [r for r in rules if r.status == "active"]


def generate_rule_id() -> str:
    alphabet = "abcdefghijklmnopqrstuvwxyz0123456789"
    suffix = "".join(random.choice(alphabet) for _ in range(9))
    return f"rule_{int(time.time() * 1000)}_{suffix}"


# --- Evaluation context -------------------------------------------------

@dataclass
class CustomerContext:
    is_logged_in: bool = False
    tags: List[str] = field(default_factory=list)
    order_count: Optional[int] = None
    total_spent: Optional[float] = None
    email_domain: Optional[str] = None


@dataclass
class TrafficContext:
    path: str = "/"
    referrer: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_content: Optional[str] = None
    utm_term: Optional[str] = None
    custom_params: Dict[str, str] = field(default_factory=dict)


@dataclass
class SessionContext:
    is_first_visit: bool = True
    page_views: int = 1
    duration: float = 0
    viewed_product_ids: List[str] = field(default_factory=list)
    viewed_collection_ids: List[str] = field(default_factory=list)


@dataclass
class TimeContext:
    now: datetime
    day_of_week: int              # Sunday = 0
    hour: int

    @classmethod
    def at(cls, now: datetime) -> "TimeContext":
        return cls(now=now, day_of_week=(now.weekday() + 1) % 7, hour=now.hour)


@dataclass
class GeoContext:
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None


@dataclass
class ProductContext:
    id: str = ""
    handle: Optional[str] = None
    product_type: Optional[str] = None
    vendor: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    collection_ids: List[str] = field(default_factory=list)


@dataclass
class VariantContext:
    id: Optional[str] = None
    selected_options: Dict[str, str] = field(default_factory=dict)
    selected_values: List[str] = field(default_factory=list)


@dataclass
class InventoryContext:
    total_inventory: int = 0
    variant_inventory: Dict[str, int] = field(default_factory=dict)
    in_stock: bool = True


def parse_datetime(value: Any) -> datetime:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class EvaluationContext:
    """Visitor and session snapshot for one evaluation."""
    device: str = "desktop"
    screen_width: int = 1920
    customer: CustomerContext = field(default_factory=CustomerContext)
    traffic: TrafficContext = field(default_factory=TrafficContext)
    session: SessionContext = field(default_factory=SessionContext)
    time: TimeContext = field(default_factory=lambda: TimeContext.at(datetime.now(timezone.utc)))
    geo: GeoContext = field(default_factory=GeoContext)
    product: ProductContext = field(default_factory=ProductContext)
    variant: VariantContext = field(default_factory=VariantContext)
    inventory: InventoryContext = field(default_factory=InventoryContext)
    media: List[MediaItem] = field(default_factory=list)
    collection_id: Optional[str] = None
    ab_test_bucket: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvaluationContext":
        """Build a context from a (possibly partial) JSON dict."""
        customer = data.get("customer") or {}
        traffic = data.get("traffic") or {}
        session = data.get("session") or {}
        time_data = data.get("time") or {}
        geo = data.get("geo") or {}
        product = data.get("product") or {}
        variant = data.get("variant") or {}
        inventory = data.get("inventory") or {}

        now = parse_datetime(time_data["now"]) if time_data.get("now") else datetime.now(timezone.utc)
        time_ctx = TimeContext.at(now)
        if time_data.get("dayOfWeek") is not None:
            time_ctx.day_of_week = int(time_data["dayOfWeek"])
        if time_data.get("hour") is not None:
            time_ctx.hour = int(time_data["hour"])

        return cls(
            device=data.get("device", "desktop"),
            screen_width=data.get("screenWidth", 1920),
            customer=CustomerContext(
                is_logged_in=bool(customer.get("isLoggedIn", False)),
                tags=list(customer.get("tags") or []),
                order_count=customer.get("orderCount"),
                total_spent=customer.get("totalSpent"),
                email_domain=customer.get("emailDomain"),
            ),
            traffic=TrafficContext(
                path=traffic.get("path", "/"),
                referrer=traffic.get("referrer"),
                utm_source=traffic.get("utmSource"),
                utm_medium=traffic.get("utmMedium"),
                utm_campaign=traffic.get("utmCampaign"),
                utm_content=traffic.get("utmContent"),
                utm_term=traffic.get("utmTerm"),
                custom_params=dict(traffic.get("customParams") or {}),
            ),
            session=SessionContext(
                is_first_visit=bool(session.get("isFirstVisit", True)),
                page_views=session.get("pageViews", 1),
                duration=session.get("duration", 0),
                viewed_product_ids=list(session.get("viewedProductIds") or []),
                viewed_collection_ids=list(session.get("viewedCollectionIds") or []),
            ),
            time=time_ctx,
            geo=GeoContext(
                country=geo.get("country"),
                region=geo.get("region"),
                city=geo.get("city"),
            ),
            product=ProductContext(
                id=str(product.get("id", "")),
                handle=product.get("handle"),
                product_type=product.get("productType"),
                vendor=product.get("vendor"),
                tags=list(product.get("tags") or []),
                collection_ids=list(product.get("collectionIds") or []),
            ),
            variant=VariantContext(
                id=variant.get("id"),
                selected_options=dict(variant.get("selectedOptions") or {}),
                selected_values=list(variant.get("selectedValues") or []),
            ),
            inventory=InventoryContext(
                total_inventory=inventory.get("totalInventory", 0),
                variant_inventory=dict(inventory.get("variantInventory") or {}),
                in_stock=bool(inventory.get("inStock", True)),
            ),
            media=[MediaItem.from_dict(m, i) for i, m in enumerate(data.get("media") or [])],
            collection_id=data.get("collectionId"),
            ab_test_bucket=data.get("abTestBucket", 0),
        )


# --- Settings and results -----------------------------------------------

@dataclass
class GlobalSettings:
    enable_rules: bool = True
    fallback_behavior: str = "default_gallery"
    max_rules_per_evaluation: int = 50
    use_legacy_fallback: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GlobalSettings":
        data = data or {}
        try:
            raw = data.get("maxRulesPerEvaluation")
            max_rules = 50 if raw is None else int(raw)
        except (TypeError, ValueError, OverflowError):
            max_rules = 50
        fallback = data.get("fallbackBehavior") or "default_gallery"
        return cls(
            enable_rules=data.get("enableRules") is not False,
            fallback_behavior=fallback if fallback in FALLBACK_BEHAVIORS else "default_gallery",
            max_rules_per_evaluation=max_rules,
            use_legacy_fallback=data.get("useLegacyFallback") is not False,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enableRules": self.enable_rules,
            "fallbackBehavior": self.fallback_behavior,
            "maxRulesPerEvaluation": self.max_rules_per_evaluation,
            "useLegacyFallback": self.use_legacy_fallback,
        }


@dataclass
class EvaluationDebug:
    rules_evaluated: int = 0
    conditions_checked: int = 0
    actions_applied: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "rulesEvaluated": self.rules_evaluated,
            "conditionsChecked": self.conditions_checked,
            "actionsApplied": self.actions_applied,
        }


@dataclass
class RuleEvaluationResult:
    media: List[ProcessedMediaItem]
    matched_rules: List[Rule] = field(default_factory=list)
    evaluation_time_ms: float = 0.0
    used_legacy_fallback: bool = False
    debug: EvaluationDebug = field(default_factory=EvaluationDebug)
