import os
import json
import asyncio
from pathlib import Path
from typing import Any, Dict
import logging
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

class GalleryProConfig(BaseModel):
    # General settings
    instance_name: str = "Gallery Pro"
    default_shop: str = "default"

    # Engine limits
    max_rules_per_evaluation: int = Field(50, ge=1, le=500)
    max_condition_depth: int = Field(32, ge=1, le=256)

    # Storage
    max_payload_bytes: int = 1_500_000

    # Preview
    preview_sample_media: bool = True

class ConfigService:
    def __init__(self):
        self.config_path = Path(os.getenv("CONFIG_PATH", "/data/config/config.json"))
        self.config: GalleryProConfig = GalleryProConfig()
        self._lock = None

    async def load_config(self) -> GalleryProConfig:
        """Load configuration from file and environment variables"""
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self.config_path.exists():
                try:
                    with open(self.config_path, 'r') as f:
                        data = json.load(f)
                    self.config = GalleryProConfig(**data)
                    logger.info(f"Loaded config from {self.config_path}")
                except Exception as e:
                    logger.error(f"Failed to load config: {e}")

            self._apply_env_overrides()

            await self._save_config_unlocked()

            return self.config

    async def _save_config_unlocked(self) -> None:
        """Save config without acquiring lock (internal use only)"""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.config_path.with_suffix(".tmp")
            with open(tmp_path, 'w') as f:
                json.dump(self.config.model_dump(), f, indent=2, default=str)
            tmp_path.replace(self.config_path)
            logger.info(f"Saved config to {self.config_path}")
        except Exception as e:
            logger.error(f"Failed to save config: {e}")

    async def save_config(self) -> None:
        """Save current configuration to file"""
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            await self._save_config_unlocked()

    async def update_config(self, updates: Dict[str, Any]) -> GalleryProConfig:
        """Update configuration with new values"""
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            merged = {**self.config.model_dump(), **{k: v for k, v in updates.items() if hasattr(self.config, k)}}
            self.config = GalleryProConfig(**merged)
            await self._save_config_unlocked()
            return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides to config"""
        env_mapping = {
            "GP_DEFAULT_SHOP": "default_shop",
            "GP_MAX_RULES_PER_EVALUATION": ("max_rules_per_evaluation", int),
            "GP_MAX_CONDITION_DEPTH": ("max_condition_depth", int),
            "GP_MAX_PAYLOAD_BYTES": ("max_payload_bytes", int),
            "GP_PREVIEW_SAMPLE_MEDIA": ("preview_sample_media", lambda x: x.lower() == "true"),
        }

        for env_key, config_key in env_mapping.items():
            env_value = os.getenv(env_key)
            if env_value is not None:
                if isinstance(config_key, tuple):
                    attr_name, converter = config_key
                    try:
                        setattr(self.config, attr_name, converter(env_value))
                    except Exception as e:
                        logger.warning(f"Failed to convert env var {env_key}: {e}")
                else:
                    setattr(self.config, config_key, env_value)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key"""
        return getattr(self.config, key, default)

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration as dictionary"""
        return self.config.model_dump()
