"""Variant image maps: which media belong to which variant option values"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiosqlite

from gallerypro.api.services.rules_storage import SCHEMA_VERSION, check_payload_size

logger = logging.getLogger(__name__)

MAPPING_SOURCES = ("manual", "ai", "filename", "import")


def default_variant_map() -> Dict[str, Any]:
    return {
        "version": SCHEMA_VERSION,
        "updated_at": datetime.now(timezone.utc).isoformat(),
        "updated_by": "manual",
        "mappings": {},
        "settings": {"fallback": "show_all", "match_mode": "any", "custom_ordering": False},
    }


def apply_variant_mapping(media: List[Dict[str, Any]], variant_map: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Annotate raw media dicts with variantValues, universal and tags.

    Media without an entry in the map are returned unchanged. Tags from the
    map are merged after the media's own tags, without duplicates.
    """
    mappings = (variant_map or {}).get("mappings") or {}
    annotated = []
    for item in media:
        entry = mappings.get(str(item.get("id")))
        if not entry:
            annotated.append(dict(item))
            continue
        tags = list(item.get("tags") or [])
        for tag in entry.get("tags") or []:
            if tag not in tags:
                tags.append(tag)
        annotated.append({
            **item,
            "variantValues": list(entry.get("variants") or []),
            "universal": bool(entry.get("universal", False)),
            "tags": tags,
        })
    return annotated


class MediaMappingStore:
    """Variant image maps for one shop"""

    def __init__(self, db: aiosqlite.Connection, shop: str):
        self.db = db
        self.shop = shop

    async def get_mapping(self, product_id: str) -> Optional[Dict[str, Any]]:
        cursor = await self.db.execute(
            "SELECT payload_json FROM gp_variant_mappings WHERE shop = ? AND product_id = ?",
            (self.shop, product_id)
        )
        row = await cursor.fetchone()
        if not row:
            return None
        try:
            data = json.loads(row[0])
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse variant mapping for {product_id}: {e}")
            return None
        if data.get("version") != SCHEMA_VERSION:
            logger.warning(f"Unknown variant mapping version for {product_id}: {data.get('version')}")
            return None
        return data

    async def save_mapping(self, product_id: str, mapping: Dict[str, Any]) -> Dict[str, Any]:
        now = datetime.now(timezone.utc).isoformat()
        updated = {**default_variant_map(), **mapping, "version": SCHEMA_VERSION, "updated_at": now}
        if updated.get("updated_by") not in MAPPING_SOURCES:
            updated["updated_by"] = "manual"
        value = json.dumps(updated)
        check_payload_size(value)

        await self.db.execute("""
            INSERT INTO gp_variant_mappings (shop, product_id, payload_json, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(shop, product_id) DO UPDATE SET
                payload_json = excluded.payload_json,
                updated_at = excluded.updated_at
        """, (self.shop, product_id, value, now))
        await self.db.commit()
        logger.info(f"Saved variant mapping for product {product_id} ({len(updated['mappings'])} media)")
        return updated

    async def delete_mapping(self, product_id: str) -> bool:
        cursor = await self.db.execute(
            "DELETE FROM gp_variant_mappings WHERE shop = ? AND product_id = ?",
            (self.shop, product_id)
        )
        await self.db.commit()
        return cursor.rowcount > 0
