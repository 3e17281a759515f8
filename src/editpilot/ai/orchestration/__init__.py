"""Orchestration types and response normalization for the agent loop.

The runner lives in :mod:`editpilot.ai.orchestration.runner`.
"""

from .responses import StreamAccumulator, normalize_response
from .types import (
    AgentContext,
    Message,
    ModelResponse,
    ParsedToolCall,
    ProjectFile,
    ResponseShape,
    SelectionRange,
    TurnConfig,
    TurnInput,
    TurnOutput,
    TurnState,
)

__all__ = [
    "AgentContext",
    "Message",
    "ModelResponse",
    "ParsedToolCall",
    "ProjectFile",
    "ResponseShape",
    "SelectionRange",
    "StreamAccumulator",
    "TurnConfig",
    "TurnInput",
    "TurnOutput",
    "TurnState",
    "normalize_response",
]
