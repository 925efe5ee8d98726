"""Rule engine settings API endpoints"""

from typing import Dict, Any
from fastapi import APIRouter, HTTPException, Depends
import logging

from gallerypro.api.dependencies import get_storage
from gallerypro.api.schemas.rules import RuleSettingsResponse, RuleSettingsUpdate
from gallerypro.api.services.rules_storage import PayloadTooLargeError, RulesStorage

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/settings/rules", response_model=RuleSettingsResponse)
async def get_rule_settings(storage: RulesStorage = Depends(get_storage)) -> Dict[str, Any]:
    """Get global rule settings and the evaluation mode"""
    try:
        document = await storage.get_shop_rules()
        return {
            "globalSettings": document["globalSettings"],
            "evaluationMode": document["evaluationMode"],
        }
    except Exception as e:
        logger.error(f"Failed to get rule settings: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/settings/rules", response_model=RuleSettingsResponse)
async def update_rule_settings(
    updates: RuleSettingsUpdate,
    storage: RulesStorage = Depends(get_storage)
) -> Dict[str, Any]:
    """Update settings with partial data"""
    try:
        document = None
        if updates.global_settings is not None:
            changes = updates.global_settings.model_dump(by_alias=True, exclude_none=True)
            document = await storage.update_global_settings(changes)
        if updates.evaluation_mode is not None:
            document = await storage.update_evaluation_mode(updates.evaluation_mode)
        if document is None:
            document = await storage.get_shop_rules()

        logger.info(f"Updated rule settings for shop {storage.shop}")
        return {
            "globalSettings": document["globalSettings"],
            "evaluationMode": document["evaluationMode"],
        }
    except PayloadTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to update rule settings: {e}")
        raise HTTPException(status_code=500, detail=str(e))
