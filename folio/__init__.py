"""Folio: policy registry and action pipeline for document intake."""

from folio.baseline_config import DEFAULT_BASELINE_FIELDS, BaselineConfigService
from folio.models import (
    Policy,
    PolicyAction,
    BaselineField,
    BaselineConfig,
    ActionType,
    PipelineResult,
)
from folio.pipeline import ActionPipeline
from folio.policy_loader import PolicyCache, PolicyLoader

__all__ = [
    "ActionPipeline",
    "PolicyLoader",
    "PolicyCache",
    "BaselineConfigService",
    "DEFAULT_BASELINE_FIELDS",
    "Policy",
    "PolicyAction",
    "BaselineField",
    "BaselineConfig",
    "ActionType",
    "PipelineResult",
]
