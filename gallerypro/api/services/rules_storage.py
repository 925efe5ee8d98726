"""Persistence of shop rules and per-product rule overrides"""

import asyncio
import copy
import json
import logging
import weakref
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiosqlite

from gallerypro.rules.models import GlobalSettings, generate_rule_id, sort_rules_by_priority

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
MAX_PAYLOAD_BYTES = 1_500_000
EVALUATION_MODES = ("first_match", "all_matches")


class RuleNotFoundError(KeyError):
    """Raised when a rule id does not exist in the shop document"""


class PayloadTooLargeError(ValueError):
    """Raised when a serialized document exceeds the storage ceiling"""


# write locks per connection, keyed by shop
_shop_locks: "weakref.WeakKeyDictionary[aiosqlite.Connection, Dict[str, asyncio.Lock]]" = weakref.WeakKeyDictionary()


def _shop_lock(db: aiosqlite.Connection, shop: str) -> asyncio.Lock:
    locks = _shop_locks.setdefault(db, {})
    if shop not in locks:
        locks[shop] = asyncio.Lock()
    return locks[shop]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_shop_rules() -> Dict[str, Any]:
    return {
        "version": SCHEMA_VERSION,
        "evaluationMode": "first_match",
        "rules": [],
        "globalSettings": GlobalSettings().to_dict(),
        "updatedAt": _now(),
    }


def default_product_overrides() -> Dict[str, Any]:
    return {
        "version": SCHEMA_VERSION,
        "disableShopRules": False,
        "disabledRuleIds": [],
        "rules": [],
        "updatedAt": _now(),
    }


def parse_shop_rules(value: Optional[str]) -> Optional[Dict[str, Any]]:
    """Normalize a stored shop document, or None when unusable"""
    if not value:
        return None
    try:
        raw = json.loads(value)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse shop rules: {e}")
        return None
    if not isinstance(raw, dict) or raw.get("version") != SCHEMA_VERSION:
        logger.warning(f"Unknown rules schema version: {raw.get('version') if isinstance(raw, dict) else None}")
        return None

    mode = raw.get("evaluationMode")
    return {
        "version": SCHEMA_VERSION,
        "evaluationMode": mode if mode in EVALUATION_MODES else "first_match",
        "rules": raw["rules"] if isinstance(raw.get("rules"), list) else [],
        "globalSettings": GlobalSettings.from_dict(raw.get("globalSettings")).to_dict(),
        "updatedAt": str(raw.get("updatedAt") or _now()),
    }


def parse_product_overrides(value: Optional[str]) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    try:
        raw = json.loads(value)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse product overrides: {e}")
        return None
    if not isinstance(raw, dict) or raw.get("version") != SCHEMA_VERSION:
        logger.warning("Unknown overrides schema version")
        return None

    return {
        "version": SCHEMA_VERSION,
        "disableShopRules": bool(raw.get("disableShopRules")),
        "disabledRuleIds": raw["disabledRuleIds"] if isinstance(raw.get("disabledRuleIds"), list) else [],
        "rules": raw["rules"] if isinstance(raw.get("rules"), list) else [],
        "updatedAt": str(raw.get("updatedAt") or _now()),
    }


def check_payload_size(value: str, limit: int = MAX_PAYLOAD_BYTES) -> None:
    size = len(value.encode("utf-8"))
    if size > limit:
        raise PayloadTooLargeError(f"Payload is {size} bytes, limit is {limit} bytes")


class RulesStorage:
    """Rule documents for one shop, stored as JSON in SQLite"""

    def __init__(self, db: aiosqlite.Connection, shop: str, max_payload_bytes: int = MAX_PAYLOAD_BYTES):
        self.db = db
        self.shop = shop
        self.max_payload_bytes = max_payload_bytes
        self._lock = None

    def _write_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = _shop_lock(self.db, self.shop)
        return self._lock

    # --- Shop document ---------------------------------------------------

    async def get_shop_rules(self) -> Dict[str, Any]:
        cursor = await self.db.execute(
            "SELECT payload_json FROM gp_shop_rules WHERE shop = ?", (self.shop,)
        )
        row = await cursor.fetchone()
        parsed = parse_shop_rules(row[0] if row else None)
        return parsed or default_shop_rules()

    async def save_shop_rules(self, document: Dict[str, Any]) -> Dict[str, Any]:
        async with self._write_lock():
            return await self._save_shop_rules_unlocked(document)

    async def _save_shop_rules_unlocked(self, document: Dict[str, Any]) -> Dict[str, Any]:
        updated = {
            **document,
            "version": SCHEMA_VERSION,
            "rules": sort_rules_by_priority(document.get("rules") or []),
            "updatedAt": _now(),
        }
        value = json.dumps(updated)
        check_payload_size(value, self.max_payload_bytes)

        await self.db.execute("""
            INSERT INTO gp_shop_rules (shop, payload_json, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(shop) DO UPDATE SET
                payload_json = excluded.payload_json,
                updated_at = excluded.updated_at
        """, (self.shop, value, updated["updatedAt"]))
        await self.db.commit()
        logger.info(f"Saved {len(updated['rules'])} rules for shop {self.shop}")
        return updated

    async def get_shop_rule(self, rule_id: str) -> Dict[str, Any]:
        document = await self.get_shop_rules()
        for rule in document["rules"]:
            if rule.get("id") == rule_id:
                return rule
        raise RuleNotFoundError(rule_id)

    async def add_shop_rule(self, rule: Dict[str, Any]) -> Dict[str, Any]:
        async with self._write_lock():
            document = await self.get_shop_rules()
            new_rule = self._stamp_new_rule(rule)
            document["rules"].append(new_rule)
            await self._save_shop_rules_unlocked(document)
            return new_rule

    @staticmethod
    def _stamp_new_rule(rule: Dict[str, Any]) -> Dict[str, Any]:
        now = _now()
        return {
            **rule,
            "id": rule.get("id") or generate_rule_id(),
            "createdAt": rule.get("createdAt") or now,
            "updatedAt": now,
        }

    async def update_shop_rule(self, rule_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        async with self._write_lock():
            document = await self.get_shop_rules()
            for index, rule in enumerate(document["rules"]):
                if rule.get("id") == rule_id:
                    updated = {**rule, **updates, "id": rule_id, "updatedAt": _now()}
                    document["rules"][index] = updated
                    await self._save_shop_rules_unlocked(document)
                    return updated
        raise RuleNotFoundError(rule_id)

    async def delete_shop_rule(self, rule_id: str) -> None:
        async with self._write_lock():
            document = await self.get_shop_rules()
            remaining = [r for r in document["rules"] if r.get("id") != rule_id]
            if len(remaining) == len(document["rules"]):
                raise RuleNotFoundError(rule_id)
            document["rules"] = remaining
            await self._save_shop_rules_unlocked(document)

    async def reorder_shop_rules(self, rule_ids: List[str]) -> Dict[str, Any]:
        """Priority becomes the index in ``rule_ids``; unlisted rules follow"""
        async with self._write_lock():
            document = await self.get_shop_rules()
            by_id = {r.get("id"): r for r in document["rules"]}
            ordered = [by_id[rid] for rid in rule_ids if rid in by_id]
            listed = set(rule_ids)
            ordered.extend(r for r in document["rules"] if r.get("id") not in listed)

            now = _now()
            document["rules"] = [
                {**rule, "priority": index, "updatedAt": now} for index, rule in enumerate(ordered)
            ]
            return await self._save_shop_rules_unlocked(document)

    async def duplicate_shop_rule(self, rule_id: str) -> Dict[str, Any]:
        async with self._write_lock():
            document = await self.get_shop_rules()
            original = next((r for r in document["rules"] if r.get("id") == rule_id), None)
            if original is None:
                raise RuleNotFoundError(rule_id)

            duplicate = copy.deepcopy(original)
            duplicate.update({
                "id": generate_rule_id(),
                "name": f"{original.get('name', 'Rule')} (Copy)",
                "status": "draft",
                "createdAt": None,
            })
            new_rule = self._stamp_new_rule(duplicate)
            document["rules"].append(new_rule)
            await self._save_shop_rules_unlocked(document)
            return new_rule

    async def set_rules_status(self, rule_ids: List[str], status: str) -> int:
        async with self._write_lock():
            document = await self.get_shop_rules()
            targets = set(rule_ids)
            now = _now()
            changed = 0
            for rule in document["rules"]:
                if rule.get("id") in targets:
                    rule["status"] = status
                    rule["updatedAt"] = now
                    changed += 1
            if changed:
                await self._save_shop_rules_unlocked(document)
            return changed

    async def delete_shop_rules(self, rule_ids: List[str]) -> int:
        async with self._write_lock():
            document = await self.get_shop_rules()
            targets = set(rule_ids)
            remaining = [r for r in document["rules"] if r.get("id") not in targets]
            removed = len(document["rules"]) - len(remaining)
            if removed:
                document["rules"] = remaining
                await self._save_shop_rules_unlocked(document)
            return removed

    async def update_global_settings(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        async with self._write_lock():
            document = await self.get_shop_rules()
            merged = {**document["globalSettings"], **updates}
            document["globalSettings"] = GlobalSettings.from_dict(merged).to_dict()
            return await self._save_shop_rules_unlocked(document)

    async def update_evaluation_mode(self, mode: str) -> Dict[str, Any]:
        if mode not in EVALUATION_MODES:
            raise ValueError(f"Unknown evaluation mode: {mode}")
        async with self._write_lock():
            document = await self.get_shop_rules()
            document["evaluationMode"] = mode
            return await self._save_shop_rules_unlocked(document)

    # --- Product overrides -----------------------------------------------

    async def get_product_overrides(self, product_id: str) -> Optional[Dict[str, Any]]:
        cursor = await self.db.execute(
            "SELECT payload_json FROM gp_product_overrides WHERE shop = ? AND product_id = ?",
            (self.shop, product_id)
        )
        row = await cursor.fetchone()
        return parse_product_overrides(row[0] if row else None)

    async def save_product_overrides(self, product_id: str, overrides: Dict[str, Any]) -> Dict[str, Any]:
        updated = {
            **default_product_overrides(),
            **overrides,
            "version": SCHEMA_VERSION,
            "rules": sort_rules_by_priority(overrides.get("rules") or []),
            "updatedAt": _now(),
        }
        value = json.dumps(updated)
        check_payload_size(value, self.max_payload_bytes)

        await self.db.execute("""
            INSERT INTO gp_product_overrides (shop, product_id, payload_json, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(shop, product_id) DO UPDATE SET
                payload_json = excluded.payload_json,
                updated_at = excluded.updated_at
        """, (self.shop, product_id, value, updated["updatedAt"]))
        await self.db.commit()
        return updated

    async def delete_product_overrides(self, product_id: str) -> bool:
        cursor = await self.db.execute(
            "DELETE FROM gp_product_overrides WHERE shop = ? AND product_id = ?",
            (self.shop, product_id)
        )
        await self.db.commit()
        return cursor.rowcount > 0

    async def get_effective_rules(self, product_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Rules that apply to a product: product rules first, then shop rules"""
        document = await self.get_shop_rules()
        shop_rules = document["rules"]
        if not product_id:
            return shop_rules

        overrides = await self.get_product_overrides(product_id)
        if not overrides:
            return shop_rules

        product_rules = overrides["rules"]
        offset = len(product_rules)
        min_shop_priority = min((r.get("priority", 0) for r in shop_rules), default=0)
        shifted = [
            {**rule, "priority": min_shop_priority + index - offset}
            for index, rule in enumerate(product_rules)
        ]

        if overrides["disableShopRules"]:
            return shifted

        disabled = set(overrides["disabledRuleIds"])
        return shifted + [r for r in shop_rules if r.get("id") not in disabled]
