from fastapi import APIRouter, HTTPException, Depends
from typing import Dict, Any, List
import logging

from gallerypro.api.dependencies import get_mapping_store
from gallerypro.api.schemas.rules import ApplyMappingRequest, VariantMappingPayload
from gallerypro.api.services.media_mapping import MediaMappingStore, apply_variant_mapping
from gallerypro.api.services.rules_storage import PayloadTooLargeError

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/{product_id}")
async def get_mapping(
    product_id: str,
    store: MediaMappingStore = Depends(get_mapping_store)
) -> Dict[str, Any]:
    """Get the variant image map for a product"""
    try:
        mapping = await store.get_mapping(product_id)
        if mapping is None:
            raise HTTPException(status_code=404, detail="Variant mapping not found")
        return mapping
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get variant mapping: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.put("/{product_id}")
async def save_mapping(
    product_id: str,
    payload: VariantMappingPayload,
    store: MediaMappingStore = Depends(get_mapping_store)
) -> Dict[str, Any]:
    try:
        return await store.save_mapping(product_id, payload.model_dump(exclude_none=True))
    except PayloadTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to save variant mapping: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.delete("/{product_id}")
async def delete_mapping(
    product_id: str,
    store: MediaMappingStore = Depends(get_mapping_store)
) -> Dict[str, str]:
    try:
        if not await store.delete_mapping(product_id):
            raise HTTPException(status_code=404, detail="Variant mapping not found")
        return {"message": "Variant mapping deleted"}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to delete variant mapping: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{product_id}/apply")
async def apply_mapping(
    product_id: str,
    request: ApplyMappingRequest,
    store: MediaMappingStore = Depends(get_mapping_store)
) -> Dict[str, List[Dict[str, Any]]]:
    """Annotate a media list with the product's variant image map"""
    try:
        mapping = await store.get_mapping(product_id)
        return {"media": apply_variant_mapping(request.media, mapping)}
    except Exception as e:
        logger.error(f"Failed to apply variant mapping: {e}")
        raise HTTPException(status_code=500, detail=str(e))
