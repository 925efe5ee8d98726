"""
Action executors for gallery rules.

Each executor takes the current media list and returns a new one. Items are
copied with ``dataclasses.replace`` so the input list is never mutated.
Length is preserved by every executor except Replace; Limit hides items
instead of dropping them.
"""
import logging
import random
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from gallerypro.rules.models import (
    Action,
    BadgeAction,
    BadgeOverlay,
    EvaluationContext,
    FilterAction,
    LimitAction,
    PrioritizeAction,
    ProcessedMediaItem,
    ReorderAction,
    ReplaceAction,
    UnknownAction,
)

logger = logging.getLogger(__name__)

BADGE_STYLE_COLORS: Dict[str, Tuple[str, str]] = {
    "primary": ("#5c6ac4", "#ffffff"),
    "secondary": ("#6b7280", "#ffffff"),
    "success": ("#10b981", "#ffffff"),
    "warning": ("#f59e0b", "#000000"),
    "danger": ("#ef4444", "#ffffff"),
    "info": ("#3b82f6", "#ffffff"),
    "custom": ("#ffffff", "#000000"),
}

BADGE_POSITIONS = ("top-left", "top-right", "bottom-left", "bottom-right", "center")

Media = List[ProcessedMediaItem]


# --- Matching helpers ---------------------------------------------------

def _has_any_tag(item: ProcessedMediaItem, values: Sequence[str]) -> bool:
    tags = {t.lower() for t in item.tags or []}
    return any(str(v).lower() in tags for v in values)


def _alt_contains(item: ProcessedMediaItem, values: Sequence[str]) -> bool:
    if not item.alt:
        return False
    alt = item.alt.lower()
    return any(str(v).lower() in alt for v in values)


def _has_variant_value(values: Sequence[str], candidates: Sequence[str], require_all: bool = False) -> bool:
    present = {c.lower() for c in candidates}
    if require_all:
        return all(str(v).lower() in present for v in values)
    return any(str(v).lower() in present for v in values)


def matches_filter_criteria(item: ProcessedMediaItem, action: FilterAction,
                            context: EvaluationContext) -> bool:
    match_type = action.match_type
    values = action.match_values or []
    if match_type == "variant_value" and not values:
        # no explicit values: follow the shopper's current selection
        values = context.variant.selected_values

    if match_type == "media_tag":
        return _has_any_tag(item, values)
    if match_type == "variant_value":
        if not item.variant_values:
            # unmapped items follow the shopper's selection, in "any" mode only
            if action.match_mode == "any":
                return _has_variant_value(values, context.variant.selected_values)
            return False
        return _has_variant_value(values, item.variant_values, action.match_mode == "all")
    if match_type == "media_type":
        types = action.media_types if action.media_types is not None else values
        return item.type in types
    if match_type == "position":
        if not action.positions:
            return False
        return item.position in action.positions
    if match_type == "alt_text":
        return _alt_contains(item, values)
    if match_type == "universal":
        return item.universal is True
    return False


def matches_reorder_criteria(item: ProcessedMediaItem, match_type: Optional[str],
                             values: Optional[Sequence[str]]) -> bool:
    if not match_type or not values:
        return False
    if match_type == "media_tag":
        return _has_any_tag(item, values)
    if match_type == "media_type":
        return item.type in values
    if match_type == "alt_text":
        return _alt_contains(item, values)
    if match_type == "position":
        return str(item.position) in [str(v) for v in values]
    return False


def matches_badge_criteria(item: ProcessedMediaItem, action: BadgeAction) -> bool:
    if not action.match_type or not action.match_values:
        return False
    if action.match_type == "media_tag":
        return _has_any_tag(item, action.match_values)
    if action.match_type == "media_type":
        return item.type in action.match_values
    if action.match_type == "alt_text":
        return _alt_contains(item, action.match_values)
    return False


def matches_limit_criteria(item: ProcessedMediaItem, action: LimitAction) -> bool:
    if not action.match_type or not action.match_values:
        return False
    if action.match_type == "media_tag":
        return _has_any_tag(item, action.match_values)
    if action.match_type == "media_type":
        return item.type in action.match_values
    return False


def matches_prioritize_criteria(item: ProcessedMediaItem, action: PrioritizeAction) -> bool:
    values = action.match_values or []
    if action.match_type == "media_tag":
        return _has_any_tag(item, values)
    if action.match_type == "media_type":
        return item.type in values
    if action.match_type == "variant_value":
        if not item.variant_values:
            return False
        return _has_variant_value(values, item.variant_values)
    if action.match_type == "alt_text":
        return _alt_contains(item, values)
    return False


def _partition(items: Media, predicate: Callable[[ProcessedMediaItem], bool]) -> Tuple[Media, Media]:
    matched, unmatched = [], []
    for item in items:
        (matched if predicate(item) else unmatched).append(item)
    return matched, unmatched


def _split_visible(media: Media) -> Tuple[Media, Media]:
    return [m for m in media if m.visible], [m for m in media if not m.visible]


def _renumber(ordered_visible: Media, hidden: Media) -> Media:
    """Rewrite new_position to the visible index and append hidden items."""
    result = [replace(item, new_position=index) for index, item in enumerate(ordered_visible)]
    return result + list(hidden)


# --- Filter -------------------------------------------------------------

def execute_filter(action: FilterAction, media: Media, context: EvaluationContext) -> Media:
    result = []
    for item in media:
        matches = matches_filter_criteria(item, action, context)
        if action.mode == "include":
            result.append(replace(item, visible=matches))
        else:
            result.append(replace(item, visible=item.visible and not matches))
    return result


# --- Reorder ------------------------------------------------------------

def shuffle_items(items: Media) -> Media:
    """Unseeded Fisher-Yates shuffle on a copy."""
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = random.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def _tag_order_index(item: ProcessedMediaItem, tag_order: Sequence[str]) -> int:
    tags = {t.lower() for t in item.tags or []}
    for index, tag in enumerate(tag_order):
        if tag.lower() in tags:
            return index
    return len(tag_order)


def execute_reorder(action: ReorderAction, media: Media, context: EvaluationContext) -> Media:
    visible, hidden = _split_visible(media)
    has_criteria = bool(action.match_type and action.match_values)

    def partition():
        return _partition(
            visible, lambda item: matches_reorder_criteria(item, action.match_type, action.match_values)
        )

    if action.strategy == "move_to_front":
        if has_criteria:
            matched, unmatched = partition()
            visible = matched + unmatched
    elif action.strategy == "move_to_back":
        if has_criteria:
            matched, unmatched = partition()
            visible = unmatched + matched
    elif action.strategy == "move_to_position":
        if has_criteria and action.position is not None:
            matched, unmatched = partition()
            at = max(0, min(int(action.position), len(unmatched)))
            visible = unmatched[:at] + matched + unmatched[at:]
    elif action.strategy == "shuffle":
        visible = shuffle_items(visible)
    elif action.strategy == "reverse":
        visible = list(reversed(visible))
    elif action.strategy == "sort_by_tag_order":
        if action.tag_order:
            visible = sorted(visible, key=lambda item: _tag_order_index(item, action.tag_order))
    else:
        logger.warning(f"Unknown reorder strategy: {action.strategy}")

    return _renumber(visible, hidden)


# --- Badge --------------------------------------------------------------

def format_badge_text(text: str, inventory_count: Optional[int] = None) -> str:
    if inventory_count is None:
        return text
    result = text
    for token in ("{{count}}", "{{COUNT}}", "{{Count}}"):
        result = result.replace(token, str(inventory_count))
    return result


def build_badge(action: BadgeAction, context: EvaluationContext) -> BadgeOverlay:
    inventory_count = None
    if action.dynamic_values.get("inventoryCount"):
        inventory_count = context.inventory.total_inventory
    default_bg, default_fg = BADGE_STYLE_COLORS.get(action.style, BADGE_STYLE_COLORS["primary"])
    return BadgeOverlay(
        text=format_badge_text(action.text, inventory_count),
        position=action.position,
        style=action.style,
        background_color=action.background_color or default_bg,
        text_color=action.text_color or default_fg,
        icon=action.icon,
    )


def execute_badge(action: BadgeAction, media: Media, context: EvaluationContext) -> Media:
    badge = build_badge(action, context)
    visible_ids = [item.id for item in media if item.visible]
    visible_index = {item_id: index for index, item_id in enumerate(visible_ids)}

    def selected(item: ProcessedMediaItem) -> bool:
        index = visible_index[item.id]
        if action.target == "all":
            return True
        if action.target == "first":
            return index == 0
        if action.target == "last":
            return index == len(visible_ids) - 1
        if action.target == "positions":
            return index in (action.target_positions or [])
        if action.target == "matched":
            return matches_badge_criteria(item, action)
        return False

    result = []
    for item in media:
        if item.visible and selected(item):
            result.append(replace(item, badges=list(item.badges) + [badge]))
        else:
            result.append(item)
    return result


# --- Limit --------------------------------------------------------------

def select_even_distribution(items: Media, count: int) -> Media:
    if count >= len(items):
        return list(items)
    step = len(items) / count
    return [items[int(i * step)] for i in range(count)]


def execute_limit(action: LimitAction, media: Media, context: EvaluationContext) -> Media:
    visible, _ = _split_visible(media)
    max_images = max(0, int(action.max_images))
    if len(visible) <= max_images:
        return list(media)

    if action.keep == "last":
        keep = visible[-max_images:] if max_images else []
    elif action.keep == "even_distribution" and max_images:
        keep = select_even_distribution(visible, max_images)
    elif action.keep == "matched" and action.match_type and action.match_values:
        matched, unmatched = _partition(visible, lambda item: matches_limit_criteria(item, action))
        keep = (matched + unmatched)[:max_images]
    else:
        keep = visible[:max_images]

    if action.always_include_first and max_images and visible[0].id not in {item.id for item in keep}:
        keep = [visible[0]] + keep[:max_images - 1]

    keep_ids: Set[str] = {item.id for item in keep}
    return [replace(item, visible=item.visible and item.id in keep_ids) for item in media]


# --- Prioritize ---------------------------------------------------------

def boost_positions(items: Media, matched_ids: Set[str], boost_amount: int) -> Media:
    """Move matched items up by ``boost_amount``, left to right.

    Each move is applied to the sequence produced by the previous one, so
    neighbouring boosted items interact and the outcome depends on order.
    """
    result = list(items)
    i = 0
    while i < len(result):
        if result[i].id in matched_ids:
            target = max(0, i - boost_amount)
            if target != i:
                item = result.pop(i)
                result.insert(target, item)
        i += 1
    return result


def interleave_items(prioritized: Media, regular: Media, ratio: Dict[str, int]) -> Media:
    take_p = max(0, int(ratio.get("prioritized", 1)))
    take_r = max(0, int(ratio.get("regular", 1)))
    result: Media = []
    p_index = r_index = 0
    while p_index < len(prioritized) or r_index < len(regular):
        before = len(result)
        for _ in range(take_p):
            if p_index >= len(prioritized):
                break
            result.append(prioritized[p_index])
            p_index += 1
        for _ in range(take_r):
            if r_index >= len(regular):
                break
            result.append(regular[r_index])
            r_index += 1
        if len(result) == before:
            # a zero ratio on the remaining side; drain what is left
            result.extend(prioritized[p_index:])
            result.extend(regular[r_index:])
            break
    return result


def execute_prioritize(action: PrioritizeAction, media: Media, context: EvaluationContext) -> Media:
    visible, hidden = _split_visible(media)
    matched, unmatched = _partition(visible, lambda item: matches_prioritize_criteria(item, action))

    if action.strategy == "boost_positions":
        ordered = boost_positions(visible, {m.id for m in matched}, action.boost_amount or 1)
    elif action.strategy == "interleave":
        ordered = interleave_items(matched, unmatched, action.interleave_ratio or {"prioritized": 1, "regular": 1})
    else:
        ordered = matched + unmatched

    return _renumber(ordered, hidden)


# --- Replace ------------------------------------------------------------

def execute_replace(action: ReplaceAction, media: Media, context: EvaluationContext) -> Media:
    if action.source != "static_urls":
        logger.warning(
            f"Replace action source '{action.source}' requires server-side data fetching; media left unchanged"
        )
        return list(media)
    if not action.static_urls:
        logger.warning("Replace action has no static URLs; media left unchanged")
        return list(media)

    urls = action.static_urls
    if action.max_images is not None:
        urls = urls[:max(0, int(action.max_images))]

    offset = len(media) if action.append_mode else 0
    static_media = [
        ProcessedMediaItem(
            id=f"static_{offset + index}",
            type="image",
            src=url.src,
            alt=url.alt or "",
            position=url.position,
            visible=True,
            new_position=offset + index,
        )
        for index, url in enumerate(urls)
    ]
    if action.append_mode:
        return list(media) + static_media
    return static_media


_EXECUTORS = {
    "filter": execute_filter,
    "reorder": execute_reorder,
    "badge": execute_badge,
    "limit": execute_limit,
    "prioritize": execute_prioritize,
    "replace": execute_replace,
}


def execute_action(action: Action, media: Media, context: EvaluationContext) -> Media:
    """Dispatch to the executor for ``action.type``; unknown types pass through."""
    executor = None if isinstance(action, UnknownAction) else _EXECUTORS.get(action.type)
    if executor is None:
        logger.warning(f"Unknown action type: {action.type}")
        return list(media)
    return executor(action, media, context)
