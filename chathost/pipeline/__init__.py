"""
Message pipeline for chathost.

Ordered stages over a per-event context, followed by command dispatch.
"""

from chathost.pipeline.context import PipelineContext
from chathost.pipeline.orchestrator import Pipeline
from chathost.pipeline.stages import (
    AccessFilterStage,
    AllowedCommandsStage,
    CaptureStage,
    ErrorRecoveryStage,
    GameStateStage,
    LoadingReactionStage,
    MediaFetchStage,
    Stage,
)

__all__ = [
    "PipelineContext",
    "Pipeline",
    "Stage",
    "CaptureStage",
    "ErrorRecoveryStage",
    "AccessFilterStage",
    "GameStateStage",
    "AllowedCommandsStage",
    "LoadingReactionStage",
    "MediaFetchStage",
]
