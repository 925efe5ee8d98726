from typing import Optional

import aiosqlite
from fastapi import Depends, Header, Request

from gallerypro.api.db.database import get_db
from gallerypro.api.services.config_service import GalleryProConfig
from gallerypro.api.services.media_mapping import MediaMappingStore
from gallerypro.api.services.rules_storage import RulesStorage


def get_config(request: Request) -> GalleryProConfig:
    """Current config from the service attached at startup"""
    config_service = getattr(request.app.state, "config", None)
    if config_service is None:
        return GalleryProConfig()
    return config_service.config


def get_shop(
    x_shop_domain: Optional[str] = Header(None, alias="X-Shop-Domain"),
    config: GalleryProConfig = Depends(get_config),
) -> str:
    return (x_shop_domain or "").strip() or config.default_shop


async def get_storage(
    shop: str = Depends(get_shop),
    db: aiosqlite.Connection = Depends(get_db),
    config: GalleryProConfig = Depends(get_config),
) -> RulesStorage:
    return RulesStorage(db, shop, max_payload_bytes=config.max_payload_bytes)


async def get_mapping_store(
    shop: str = Depends(get_shop),
    db: aiosqlite.Connection = Depends(get_db),
) -> MediaMappingStore:
    return MediaMappingStore(db, shop)
