"""Query orchestration: the model/tool loop and its event stream."""

from querydesk.orchestrator.cancellation import CancellationToken
from querydesk.orchestrator.loop import ChatContext, OrchestrationLoop

__all__ = ["CancellationToken", "ChatContext", "OrchestrationLoop"]
