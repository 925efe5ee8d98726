"""Builds evaluation contexts for previews and storefront evaluation requests"""

import copy
import logging
import random
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from gallerypro.rules.models import EvaluationContext

logger = logging.getLogger(__name__)

SAMPLE_MEDIA: List[Dict[str, Any]] = [
    {
        "id": "media_1",
        "type": "image",
        "src": "https://example.com/image1.jpg",
        "alt": "Product front view",
        "position": 0,
        "tags": ["hero", "product-shot"],
        "variantValues": ["Red"],
        "universal": False,
    },
    {
        "id": "media_2",
        "type": "image",
        "src": "https://example.com/image2.jpg",
        "alt": "Lifestyle photo",
        "position": 1,
        "tags": ["lifestyle"],
        "variantValues": ["Red", "Blue"],
        "universal": False,
    },
    {
        "id": "media_3",
        "type": "image",
        "src": "https://example.com/image3.jpg",
        "alt": "Product side view",
        "position": 2,
        "tags": ["product-shot"],
        "variantValues": ["Blue"],
        "universal": False,
    },
    {
        "id": "media_4",
        "type": "image",
        "src": "https://example.com/image4.jpg",
        "alt": "Universal product image",
        "position": 3,
        "tags": ["universal"],
        "variantValues": [],
        "universal": True,
    },
    {
        "id": "media_5",
        "type": "video",
        "src": "https://example.com/video.mp4",
        "alt": "Product video",
        "position": 4,
        "tags": ["video"],
        "variantValues": [],
        "universal": True,
    },
]


def sample_media() -> List[Dict[str, Any]]:
    return copy.deepcopy(SAMPLE_MEDIA)


def build_context(partial: Optional[Dict[str, Any]] = None,
                  use_sample_media: bool = True) -> EvaluationContext:
    """
    Fill a partial context with defaults.

    Args:
        partial: camelCase context dict, any section may be missing
        use_sample_media: supply the sample gallery when no media is given

    Returns:
        A complete EvaluationContext
    """
    data = dict(partial or {})
    if not data.get("media") and use_sample_media:
        data["media"] = sample_media()
    if data.get("abTestBucket") is None:
        data["abTestBucket"] = random.randint(0, 99)
    if not (data.get("time") or {}).get("now"):
        data["time"] = {**(data.get("time") or {}), "now": datetime.now(timezone.utc).isoformat()}
    return EvaluationContext.from_dict(data)


def effective_context_summary(context: EvaluationContext) -> Dict[str, Any]:
    """The parts of the context echoed back by the preview endpoint"""
    return {
        "device": context.device,
        "variant": {
            "id": context.variant.id,
            "selectedOptions": dict(context.variant.selected_options),
            "selectedValues": list(context.variant.selected_values),
        },
        "customer": {
            "isLoggedIn": context.customer.is_logged_in,
            "tags": list(context.customer.tags),
            "orderCount": context.customer.order_count,
            "totalSpent": context.customer.total_spent,
        },
        "time": {
            "now": context.time.now.isoformat(),
            "dayOfWeek": context.time.day_of_week,
            "hour": context.time.hour,
        },
    }


def sample_preview_contexts() -> List[Dict[str, Any]]:
    """Named visitor presets for the rule preview panel"""
    return [
        {
            "name": "Mobile visitor from Instagram",
            "context": {
                "device": "mobile",
                "screenWidth": 390,
                "traffic": {
                    "path": "/products/sample",
                    "referrer": "https://www.instagram.com/",
                    "utmSource": "instagram",
                    "utmMedium": "social",
                },
            },
        },
        {
            "name": "VIP customer on desktop",
            "context": {
                "device": "desktop",
                "customer": {"isLoggedIn": True, "tags": ["VIP"], "orderCount": 12, "totalSpent": 2400},
            },
        },
        {
            "name": "Low stock product",
            "context": {
                "inventory": {"totalInventory": 3, "variantInventory": {}, "inStock": True},
            },
        },
        {
            "name": "First-time visitor",
            "context": {
                "session": {"isFirstVisit": True, "pageViews": 1, "duration": 15},
            },
        },
        {
            "name": "US visitor",
            "context": {
                "geo": {"country": "US", "region": "CA"},
            },
        },
    ]
