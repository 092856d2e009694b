"""Goal-aware suggestion pipeline: relevance, extraction, status detection."""

from .config import PipelineConfig, resolve_state_dir
from .errors import (
    IllegalTransition,
    OracleError,
    OracleRateLimited,
    OracleTimeout,
    OracleUnavailable,
    QuestlogError,
    ValidationFailed,
)
from .extractor import SuggestionExtractor
from .oracle import OracleClient, TextOracle
from .orchestrator import AnalysisReport, SuggestionOrchestrator
from .registry import SuggestionRegistry, same_content
from .relevance import RelevanceMatcher
from .status import StatusTransitionDetector
from .storage import GoalStorage
from .telemetry import DiscardReason, DiscardTracker
from .types import (
    ContentUnit,
    GoalEntity,
    GoalStatus,
    GoalSuggestion,
    Priority,
    RelevanceContext,
    RelevanceResult,
    RelevantSubGoal,
    SourceKind,
    StatusChangeResult,
    SubGoal,
    SubGoalStatus,
    Suggestion,
    SuggestionSnapshot,
    TaskSuggestion,
)
from .validator import SchemaValidator

__all__ = [
    # Configuration
    "PipelineConfig",
    "resolve_state_dir",
    # Errors
    "QuestlogError",
    "OracleError",
    "OracleUnavailable",
    "OracleTimeout",
    "OracleRateLimited",
    "ValidationFailed",
    "IllegalTransition",
    # Components
    "OracleClient",
    "TextOracle",
    "SchemaValidator",
    "RelevanceMatcher",
    "SuggestionExtractor",
    "StatusTransitionDetector",
    "SuggestionRegistry",
    "SuggestionOrchestrator",
    "AnalysisReport",
    "GoalStorage",
    "DiscardReason",
    "DiscardTracker",
    "same_content",
    # Types
    "ContentUnit",
    "SourceKind",
    "GoalEntity",
    "GoalStatus",
    "SubGoal",
    "SubGoalStatus",
    "Priority",
    "RelevanceResult",
    "RelevantSubGoal",
    "RelevanceContext",
    "TaskSuggestion",
    "GoalSuggestion",
    "Suggestion",
    "StatusChangeResult",
    "SuggestionSnapshot",
]
