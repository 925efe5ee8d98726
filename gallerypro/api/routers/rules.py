from fastapi import APIRouter, HTTPException, Depends, Body
from typing import List, Dict, Any
import logging

from gallerypro.api.dependencies import get_config, get_storage
from gallerypro.api.schemas.rules import (
    BulkRuleRequest,
    BulkRuleResponse,
    FromTemplateRequest,
    PreviewRequest,
    PreviewResponse,
    ProductOverridesPayload,
    ReorderRequest,
    RuleValidationResponse,
    SampleContext,
    ShopRulesResponse,
    TemplateCategoryResponse,
    TemplateResponse,
)
from gallerypro.api.services.config_service import GalleryProConfig
from gallerypro.api.services.context_builder import (
    build_context,
    effective_context_summary,
    sample_preview_contexts,
)
from gallerypro.api.services.rules_storage import PayloadTooLargeError, RuleNotFoundError, RulesStorage
from gallerypro.rules import ConditionStructureError, GlobalSettings, Rule, evaluate_rules
from gallerypro.rules.actions import BADGE_POSITIONS, BADGE_STYLE_COLORS
from gallerypro.rules.conditions import (
    BOOLEAN_OPERATORS,
    CONDITION_TYPES,
    DATE_OPERATORS,
    LIST_OPERATORS,
    NUMBER_OPERATORS,
    STRING_OPERATORS,
)
from gallerypro.rules.models import ACTION_TYPES, FALLBACK_BEHAVIORS, RULE_STATUSES
from gallerypro.rules.templates import (
    TemplateNotFound,
    create_rule_from_template,
    get_all_templates,
    get_template_categories,
    validate_template_config,
)
from gallerypro.rules.validation import (
    GROUP_OPERATORS,
    LIMIT_KEEP,
    PRIORITIZE_STRATEGIES,
    REORDER_STRATEGIES,
    REPLACE_SOURCES,
    validate_rule,
)

logger = logging.getLogger(__name__)

router = APIRouter()

RULE_METADATA = {
    "conditionTypes": list(CONDITION_TYPES),
    "groupOperators": list(GROUP_OPERATORS),
    "operators": {
        "string": list(STRING_OPERATORS),
        "number": list(NUMBER_OPERATORS),
        "boolean": list(BOOLEAN_OPERATORS),
        "list": list(LIST_OPERATORS),
        "date": list(DATE_OPERATORS),
    },
    "actionTypes": list(ACTION_TYPES),
    "reorderStrategies": list(REORDER_STRATEGIES),
    "limitKeep": list(LIMIT_KEEP),
    "prioritizeStrategies": list(PRIORITIZE_STRATEGIES),
    "replaceSources": list(REPLACE_SOURCES),
    "badgePositions": list(BADGE_POSITIONS),
    "badgeStyles": list(BADGE_STYLE_COLORS),
    "statuses": list(RULE_STATUSES),
    "fallbackBehaviors": list(FALLBACK_BEHAVIORS),
}


def _ensure_valid(rule: Dict[str, Any]) -> None:
    issues = validate_rule(rule)
    if issues:
        raise HTTPException(
            status_code=400,
            detail={"message": "Rule validation failed", "errors": [i.to_dict() for i in issues]}
        )


def _too_large(e: PayloadTooLargeError) -> HTTPException:
    logger.warning(f"Rejected oversized rules payload: {e}")
    return HTTPException(status_code=413, detail=str(e))


@router.get("/meta")
async def get_rule_metadata() -> Dict[str, Any]:
    """Get metadata for rule builder dropdowns"""
    return RULE_METADATA

# --- Templates -------------------------------------------------------------

@router.get("/templates", response_model=List[TemplateResponse])
async def list_templates() -> List[Dict[str, Any]]:
    """Get all rule templates"""
    return get_all_templates()

@router.get("/templates/categories", response_model=List[TemplateCategoryResponse])
async def list_template_categories() -> List[Dict[str, Any]]:
    return get_template_categories()

@router.post("/from-template")
async def create_from_template(
    request: FromTemplateRequest,
    storage: RulesStorage = Depends(get_storage)
) -> Dict[str, Any]:
    """Create a rule from a template, optionally saving it"""
    try:
        check = validate_template_config(request.template_id, request.config)
        rule = create_rule_from_template(request.template_id, request.config)
        if not check["valid"]:
            raise HTTPException(
                status_code=400,
                detail={"message": "Invalid template config", "errors": check["errors"]}
            )
        _ensure_valid(rule)
        if request.save:
            rule = await storage.add_shop_rule(rule)
        return rule
    except TemplateNotFound:
        raise HTTPException(status_code=404, detail="Template not found")
    except PayloadTooLargeError as e:
        raise _too_large(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to create rule from template: {e}")
        raise HTTPException(status_code=500, detail=str(e))

# --- Shop rules ------------------------------------------------------------

@router.get("/", response_model=ShopRulesResponse)
async def get_shop_rules(storage: RulesStorage = Depends(get_storage)) -> Dict[str, Any]:
    """Get the rules document for the current shop"""
    try:
        return await storage.get_shop_rules()
    except Exception as e:
        logger.error(f"Failed to get rules: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/")
async def create_rule(
    rule: Dict[str, Any] = Body(...),
    storage: RulesStorage = Depends(get_storage)
) -> Dict[str, Any]:
    """Validate and add a rule"""
    try:
        _ensure_valid(rule)
        return await storage.add_shop_rule(rule)
    except PayloadTooLargeError as e:
        raise _too_large(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to create rule: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/validate", response_model=RuleValidationResponse)
async def validate_rule_payload(rule: Any = Body(...)) -> Dict[str, Any]:
    """Check a rule without saving it"""
    issues = validate_rule(rule)
    return {"valid": not issues, "errors": [i.to_dict() for i in issues]}

@router.post("/reorder", response_model=ShopRulesResponse)
async def reorder_rules(
    request: ReorderRequest,
    storage: RulesStorage = Depends(get_storage)
) -> Dict[str, Any]:
    """Set rule priorities from an ordered list of ids"""
    try:
        return await storage.reorder_shop_rules(request.rule_ids)
    except Exception as e:
        logger.error(f"Failed to reorder rules: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/bulk", response_model=BulkRuleResponse)
async def bulk_update_rules(
    request: BulkRuleRequest,
    storage: RulesStorage = Depends(get_storage)
) -> Dict[str, Any]:
    """Activate, pause or delete several rules at once"""
    try:
        if request.action == "delete":
            affected = await storage.delete_shop_rules(request.rule_ids)
        else:
            status = "active" if request.action == "activate" else "paused"
            affected = await storage.set_rules_status(request.rule_ids, status)
        logger.info(f"Bulk {request.action} affected {affected} rules")
        return {"action": request.action, "affected": affected}
    except Exception as e:
        logger.error(f"Failed bulk rule update: {e}")
        raise HTTPException(status_code=500, detail=str(e))

# --- Preview ---------------------------------------------------------------

@router.get("/preview", response_model=List[SampleContext])
async def get_preview_contexts() -> List[Dict[str, Any]]:
    """Sample visitor contexts for the preview panel"""
    return sample_preview_contexts()

@router.post("/preview", response_model=PreviewResponse)
async def preview_rules(
    request: PreviewRequest,
    storage: RulesStorage = Depends(get_storage),
    config: GalleryProConfig = Depends(get_config)
) -> Dict[str, Any]:
    """Evaluate rules against a context and return the processed gallery"""
    try:
        context = build_context(request.context, use_sample_media=config.preview_sample_media)

        if request.rules is None:
            rules_data = await storage.get_effective_rules(context.product.id or None)
        else:
            for rule in request.rules:
                _ensure_valid(rule)
            rules_data = request.rules

        if request.settings is not None:
            settings = GlobalSettings.from_dict(request.settings.model_dump(by_alias=True))
        else:
            document = await storage.get_shop_rules()
            settings = GlobalSettings.from_dict(document["globalSettings"])
        settings.max_rules_per_evaluation = min(
            settings.max_rules_per_evaluation, config.max_rules_per_evaluation
        )

        rules = [Rule.from_dict(r) for r in rules_data]
        result = evaluate_rules(rules, context, settings, max_depth=config.max_condition_depth)
        logger.debug(
            f"Preview matched {len(result.matched_rules)} rules in {result.evaluation_time_ms:.2f}ms"
        )

        return {
            "result": {
                "media": [item.to_dict() for item in result.media],
                "matchedRules": [{"id": r.id, "name": r.name} for r in result.matched_rules],
                "evaluationTimeMs": result.evaluation_time_ms,
                "usedLegacyFallback": result.used_legacy_fallback,
            },
            "debug": result.debug.to_dict(),
            "context": effective_context_summary(context),
        }
    except ConditionStructureError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to preview rules: {e}")
        raise HTTPException(status_code=500, detail=str(e))

# --- Product overrides -----------------------------------------------------

@router.get("/products/{product_id}/overrides")
async def get_product_overrides(
    product_id: str,
    storage: RulesStorage = Depends(get_storage)
) -> Dict[str, Any]:
    try:
        overrides = await storage.get_product_overrides(product_id)
        if overrides is None:
            raise HTTPException(status_code=404, detail="Product overrides not found")
        return overrides
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get product overrides: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.put("/products/{product_id}/overrides")
async def save_product_overrides(
    product_id: str,
    payload: ProductOverridesPayload,
    storage: RulesStorage = Depends(get_storage)
) -> Dict[str, Any]:
    """Replace the rule overrides for one product"""
    try:
        for rule in payload.rules:
            _ensure_valid(rule)
        return await storage.save_product_overrides(product_id, payload.model_dump(by_alias=True))
    except PayloadTooLargeError as e:
        raise _too_large(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to save product overrides: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.delete("/products/{product_id}/overrides")
async def delete_product_overrides(
    product_id: str,
    storage: RulesStorage = Depends(get_storage)
) -> Dict[str, str]:
    try:
        if not await storage.delete_product_overrides(product_id):
            raise HTTPException(status_code=404, detail="Product overrides not found")
        return {"message": "Product overrides deleted"}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to delete product overrides: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/products/{product_id}/effective")
async def get_effective_rules(
    product_id: str,
    storage: RulesStorage = Depends(get_storage)
) -> Dict[str, Any]:
    """Rules that would apply to a product, in evaluation order"""
    try:
        rules = await storage.get_effective_rules(product_id)
        return {"productId": product_id, "rules": rules, "total": len(rules)}
    except Exception as e:
        logger.error(f"Failed to get effective rules: {e}")
        raise HTTPException(status_code=500, detail=str(e))

# --- Single rule -----------------------------------------------------------

@router.get("/{rule_id}")
async def get_rule(rule_id: str, storage: RulesStorage = Depends(get_storage)) -> Dict[str, Any]:
    """Get a specific rule by ID"""
    try:
        return await storage.get_shop_rule(rule_id)
    except RuleNotFoundError:
        raise HTTPException(status_code=404, detail="Rule not found")
    except Exception as e:
        logger.error(f"Failed to get rule: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.put("/{rule_id}")
async def update_rule(
    rule_id: str,
    updates: Dict[str, Any] = Body(...),
    storage: RulesStorage = Depends(get_storage)
) -> Dict[str, Any]:
    """Update an existing rule"""
    try:
        existing = await storage.get_shop_rule(rule_id)
        _ensure_valid({**existing, **updates})
        return await storage.update_shop_rule(rule_id, updates)
    except RuleNotFoundError:
        raise HTTPException(status_code=404, detail="Rule not found")
    except PayloadTooLargeError as e:
        raise _too_large(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to update rule: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.delete("/{rule_id}")
async def delete_rule(rule_id: str, storage: RulesStorage = Depends(get_storage)) -> Dict[str, str]:
    """Delete a rule"""
    try:
        await storage.delete_shop_rule(rule_id)
        return {"message": "Rule deleted successfully"}
    except RuleNotFoundError:
        raise HTTPException(status_code=404, detail="Rule not found")
    except Exception as e:
        logger.error(f"Failed to delete rule: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{rule_id}/duplicate")
async def duplicate_rule(rule_id: str, storage: RulesStorage = Depends(get_storage)) -> Dict[str, Any]:
    """Duplicate an existing rule as a draft"""
    try:
        return await storage.duplicate_shop_rule(rule_id)
    except RuleNotFoundError:
        raise HTTPException(status_code=404, detail="Rule not found")
    except PayloadTooLargeError as e:
        raise _too_large(e)
    except Exception as e:
        logger.error(f"Failed to duplicate rule: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{rule_id}/enable")
async def enable_rule(rule_id: str, storage: RulesStorage = Depends(get_storage)) -> Dict[str, str]:
    """Activate a rule"""
    try:
        if not await storage.set_rules_status([rule_id], "active"):
            raise HTTPException(status_code=404, detail="Rule not found")
        return {"message": "Rule enabled"}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to enable rule: {e}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{rule_id}/disable")
async def disable_rule(rule_id: str, storage: RulesStorage = Depends(get_storage)) -> Dict[str, str]:
    """Pause a rule"""
    try:
        if not await storage.set_rules_status([rule_id], "paused"):
            raise HTTPException(status_code=404, detail="Rule not found")
        return {"message": "Rule disabled"}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to disable rule: {e}")
        raise HTTPException(status_code=500, detail=str(e))
