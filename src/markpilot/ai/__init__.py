"""Language-model client, command pipeline and tool wiring."""

from .client import AIClient, ChatCompletionResult, ClientSettings
from .pipeline import CommandPipeline, CommandResult, PipelineState

__all__ = [
    "AIClient",
    "ChatCompletionResult",
    "ClientSettings",
    "CommandPipeline",
    "CommandResult",
    "PipelineState",
]
