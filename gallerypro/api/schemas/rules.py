from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from enum import Enum


class RuleStatus(str, Enum):
    """Rule status enumeration"""
    draft = "draft"
    active = "active"
    paused = "paused"
    scheduled = "scheduled"


class FallbackBehavior(str, Enum):
    """What the gallery does when no rule matches"""
    default_gallery = "default_gallery"
    show_all = "show_all"
    show_none = "show_none"


class EvaluationMode(str, Enum):
    first_match = "first_match"
    all_matches = "all_matches"


class BulkAction(str, Enum):
    activate = "activate"
    pause = "pause"
    delete = "delete"


class GlobalSettingsModel(BaseModel):
    """Engine-wide settings for a shop"""
    enable_rules: bool = Field(True, alias="enableRules")
    fallback_behavior: FallbackBehavior = Field(FallbackBehavior.default_gallery, alias="fallbackBehavior")
    max_rules_per_evaluation: int = Field(50, ge=1, le=500, alias="maxRulesPerEvaluation")
    use_legacy_fallback: bool = Field(True, alias="useLegacyFallback")

    class Config:
        populate_by_name = True
        use_enum_values = True


class GlobalSettingsUpdate(BaseModel):
    """Partial settings update"""
    enable_rules: Optional[bool] = Field(None, alias="enableRules")
    fallback_behavior: Optional[FallbackBehavior] = Field(None, alias="fallbackBehavior")
    max_rules_per_evaluation: Optional[int] = Field(None, ge=1, le=500, alias="maxRulesPerEvaluation")
    use_legacy_fallback: Optional[bool] = Field(None, alias="useLegacyFallback")

    class Config:
        populate_by_name = True
        use_enum_values = True


class RuleSettingsUpdate(BaseModel):
    global_settings: Optional[GlobalSettingsUpdate] = Field(None, alias="globalSettings")
    evaluation_mode: Optional[EvaluationMode] = Field(None, alias="evaluationMode")

    class Config:
        populate_by_name = True
        use_enum_values = True


class RuleSettingsResponse(BaseModel):
    global_settings: GlobalSettingsModel = Field(..., alias="globalSettings")
    evaluation_mode: EvaluationMode = Field(..., alias="evaluationMode")

    class Config:
        populate_by_name = True
        use_enum_values = True


class ShopRulesResponse(BaseModel):
    """The stored rules document for a shop"""
    version: int = 1
    evaluation_mode: EvaluationMode = Field(EvaluationMode.first_match, alias="evaluationMode")
    rules: List[Dict[str, Any]] = Field(default_factory=list)
    global_settings: GlobalSettingsModel = Field(default_factory=GlobalSettingsModel, alias="globalSettings")
    updated_at: Optional[str] = Field(None, alias="updatedAt")

    class Config:
        populate_by_name = True
        use_enum_values = True


class ValidationIssueModel(BaseModel):
    field: str
    message: str


class RuleValidationResponse(BaseModel):
    valid: bool
    errors: List[ValidationIssueModel] = Field(default_factory=list)


class ReorderRequest(BaseModel):
    rule_ids: List[str] = Field(..., alias="ruleIds", description="Rule ids in the new evaluation order")

    class Config:
        populate_by_name = True


class BulkRuleRequest(BaseModel):
    action: BulkAction
    rule_ids: List[str] = Field(..., alias="ruleIds")

    @validator('rule_ids')
    def validate_rule_ids(cls, v):
        if not v:
            raise ValueError("At least one rule id is required")
        return v

    class Config:
        populate_by_name = True
        use_enum_values = True


class BulkRuleResponse(BaseModel):
    action: str
    affected: int


class FromTemplateRequest(BaseModel):
    template_id: str = Field(..., alias="templateId")
    config: Dict[str, Any] = Field(default_factory=dict, description="Values keyed by config option path")
    save: bool = Field(True, description="Add the created rule to the shop's rules")

    class Config:
        populate_by_name = True


class TemplateConfigOption(BaseModel):
    path: str
    label: str
    type: str
    default_value: Optional[Any] = Field(None, alias="defaultValue")
    required: bool = False
    options: Optional[List[Dict[str, str]]] = None

    class Config:
        populate_by_name = True


class TemplateResponse(BaseModel):
    id: str
    name: str
    description: str
    category: str
    rule: Dict[str, Any]
    config_options: List[TemplateConfigOption] = Field(default_factory=list, alias="configOptions")

    class Config:
        populate_by_name = True


class TemplateCategoryResponse(BaseModel):
    category: str
    label: str
    count: int


class ProductOverridesPayload(BaseModel):
    disable_shop_rules: bool = Field(False, alias="disableShopRules")
    disabled_rule_ids: List[str] = Field(default_factory=list, alias="disabledRuleIds")
    rules: List[Dict[str, Any]] = Field(default_factory=list)

    class Config:
        populate_by_name = True


class PreviewRequest(BaseModel):
    """Rules are optional; without them the shop's effective rules are used"""
    rules: Optional[List[Dict[str, Any]]] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    settings: Optional[GlobalSettingsModel] = None


class MatchedRuleSummary(BaseModel):
    id: str
    name: str


class PreviewResult(BaseModel):
    media: List[Dict[str, Any]]
    matched_rules: List[MatchedRuleSummary] = Field(..., alias="matchedRules")
    evaluation_time_ms: float = Field(..., alias="evaluationTimeMs")
    used_legacy_fallback: bool = Field(..., alias="usedLegacyFallback")

    class Config:
        populate_by_name = True


class PreviewResponse(BaseModel):
    result: PreviewResult
    debug: Optional[Dict[str, Any]] = None
    context: Dict[str, Any]


class SampleContext(BaseModel):
    name: str
    context: Dict[str, Any]


class VariantMappingPayload(BaseModel):
    """Variant image map for one product"""
    mappings: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    settings: Optional[Dict[str, Any]] = None
    updated_by: str = "manual"


class ApplyMappingRequest(BaseModel):
    media: List[Dict[str, Any]]
