"""Dependent-field form engine."""

from .derived import DerivedFieldCalculator, DistanceTotal, IntervalDuration, TravelCost
from .engine import ChangeResult, FormEngine
from .enrichment import (
    EnrichmentAdapter,
    EnrichmentRequest,
    LookupState,
    LookupStatus,
    MergePolicy,
    merge_partial,
)
from .exceptions import ConfigurationError, FormEngineError, LookupNotFound, UnknownFieldError
from .masks import MaskCodec, MaskKind, MaskResult, get_mask_codec
from .rules import DependencyRule, InactivePolicy, RuleEvaluation, RuleEvaluator
from .schema import FieldSpec, FormDefinition, FormMode
from .state import FieldErrors, FormState
from .wizard import (
    StepChanged,
    SubmissionStatus,
    SubmitOutcome,
    SubmitOutcomeKind,
    SubmitResult,
    Wizard,
    WizardStep,
)

__all__ = [
    # Engine
    "FormEngine",
    "ChangeResult",
    "FormDefinition",
    "FieldSpec",
    "FormMode",
    "FormState",
    "FieldErrors",
    # Masks
    "MaskCodec",
    "MaskKind",
    "MaskResult",
    "get_mask_codec",
    # Rules
    "DependencyRule",
    "InactivePolicy",
    "RuleEvaluation",
    "RuleEvaluator",
    # Derived fields
    "DerivedFieldCalculator",
    "IntervalDuration",
    "DistanceTotal",
    "TravelCost",
    # Enrichment
    "EnrichmentAdapter",
    "EnrichmentRequest",
    "LookupState",
    "LookupStatus",
    "MergePolicy",
    "merge_partial",
    # Wizard
    "Wizard",
    "WizardStep",
    "StepChanged",
    "SubmissionStatus",
    "SubmitOutcome",
    "SubmitOutcomeKind",
    "SubmitResult",
    # Errors
    "FormEngineError",
    "ConfigurationError",
    "UnknownFieldError",
    "LookupNotFound",
]
