"""Photography contest call extraction and suitability analysis pipeline.

Public API -- all symbols that tests and external code import live here.
Internally the code is split across focused submodules; this file
re-exports the stable public surface so ``from festival_pipeline import X`` works.
"""

from .abort import AbortCoordinator, CancelToken
from .batch import BatchSuitabilityAnalyzer, clamp_score
from .config import Settings, load_settings
from .confirmation import ConfirmationDecision, ConfirmationGate, DeadlineDisplay
from .conversion import convert_document, create_document_converter
from .errors import (
    AbortedByUser,
    ExtractionError,
    InferenceError,
    InvalidInputComposition,
    PersistenceError,
    PipelineError,
    ServiceConfigurationError,
    TransientNetworkError,
    ValidationError,
)
from .events import BatchEvent, EventChannel, ExtractionProgress
from .extraction import ExtractionCoordinator, quality_warning_for
from .inference import GeminiInferenceService, InferenceService, StructuredPayload
from .interaction import (
    ConfirmChoice,
    ConsoleInteraction,
    ScriptedInteraction,
    UserInteraction,
    WarningChoice,
)
from .models import (
    GENERAL_TOPIC,
    AnalysisContext,
    Batch,
    BatchItem,
    BatchItemInput,
    BatchItemStatus,
    BatchStatus,
    ContentKind,
    ExtractionResult,
    InputBlob,
    ItemAnalysis,
    NormalizedContent,
    Operation,
    OperationKind,
    OperationStatus,
    Outcome,
    OutcomeTag,
    QualityWarning,
    SmartAnalysis,
    SourceAttribution,
    StructuredRecord,
)
from .normalizer import ContentNormalizer, load_blob
from .session import PipelineSession
from .store import JsonRecordStore, MemoryRecordStore, RecordStore
from .structuring import StructuredInfoExtractor

__all__ = [
    # Models
    "Operation",
    "OperationKind",
    "OperationStatus",
    "ContentKind",
    "InputBlob",
    "NormalizedContent",
    "QualityWarning",
    "ExtractionResult",
    "SourceAttribution",
    "StructuredRecord",
    "SmartAnalysis",
    "AnalysisContext",
    "GENERAL_TOPIC",
    "BatchItemInput",
    "BatchItemStatus",
    "BatchItem",
    "BatchStatus",
    "Batch",
    "ItemAnalysis",
    "Outcome",
    "OutcomeTag",
    # Errors
    "PipelineError",
    "AbortedByUser",
    "TransientNetworkError",
    "ServiceConfigurationError",
    "InvalidInputComposition",
    "ValidationError",
    "PersistenceError",
    "ExtractionError",
    "InferenceError",
    # Config
    "Settings",
    "load_settings",
    # Cancellation
    "AbortCoordinator",
    "CancelToken",
    # Stages
    "ContentNormalizer",
    "load_blob",
    "create_document_converter",
    "convert_document",
    "ExtractionCoordinator",
    "quality_warning_for",
    "StructuredInfoExtractor",
    "ConfirmationGate",
    "ConfirmationDecision",
    "DeadlineDisplay",
    "BatchSuitabilityAnalyzer",
    "clamp_score",
    # Collaborators
    "InferenceService",
    "GeminiInferenceService",
    "StructuredPayload",
    "RecordStore",
    "JsonRecordStore",
    "MemoryRecordStore",
    "UserInteraction",
    "ConsoleInteraction",
    "ScriptedInteraction",
    "WarningChoice",
    "ConfirmChoice",
    # Events
    "EventChannel",
    "BatchEvent",
    "ExtractionProgress",
    # Session
    "PipelineSession",
]
