"""Orchestration loop: drives one chat request from validation to summary.

A request goes through two phases:

1. ``prepare()`` runs before any response is sent. It validates the body,
   picks the active user question, checks the session, probes the tool
   launcher and resolves the connection string. Every failure here is a
   QueryDeskError the route turns into a JSON ``{error}`` response, and no
   tool server has been started yet.

2. ``run()`` is an async generator of events. It opens the tool gateway,
   calls the model up to ``max_steps`` times, executes requested tools and
   yields events in order. Failures become a single ErrorEvent. The gateway
   handle is closed exactly once on every exit path, including the consumer
   abandoning the generator or its task being cancelled mid-step.

Example:
    loop = OrchestrationLoop(config, store, management)
    ctx = await loop.prepare(body, access_token)
    async for event in loop.run(ctx, token):
        send(event.to_dict())
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

import anyio

from querydesk.config import PoolerConfig, QueryDeskConfig
from querydesk.errors import (
    InternalError,
    MissingCredentialError,
    NotAuthenticatedError,
    QueryDeskError,
)
from querydesk.orchestrator.cancellation import CancellationToken
from querydesk.orchestrator.events import (
    STEP_INITIAL,
    STEP_TOOL_RESULT,
    ConversationSummary,
    ErrorEvent,
    OrchestrationEvent,
    StepProgress,
    TextUpdate,
    ToolCall,
    ToolExecution,
)
from querydesk.orchestrator.llm import (
    FINISH_TOOL_CALLS,
    AnthropicChatModel,
    ChatModel,
    build_transcript,
)
from querydesk.orchestrator.request import parse_chat_request
from querydesk.orchestrator.system_prompt import build_system_prompt
from querydesk.services.connection_resolver import resolve_connection_string
from querydesk.services.credential_store import CredentialStore
from querydesk.services.tool_gateway import McpToolGateway, ToolGateway, ToolHandle, probe_launcher
from querydesk.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[str], ToolGateway]
ModelFactory = Callable[[str], ChatModel]
LauncherProbe = Callable[[], Awaitable[Any]]


class ConnectionSource(Protocol):
    """Where templated connection strings come from (the Management API)."""

    async def get_connection_string(self, project_ref: str, access_token: str) -> str:
        ...

    async def get_region(self, project_ref: str, access_token: str) -> str | None:
        ...


@dataclass(frozen=True)
class ChatContext:
    """Everything run() needs, produced by prepare().

    Attributes:
        instance_ref: Project the conversation is about.
        api_key: LLM provider key from the request.
        query: Most recent user message.
        messages: Conversation as role/content dicts.
        connection_string: Resolved connection string (contains the password).
    """

    instance_ref: str
    api_key: str
    query: str
    messages: list[dict[str, Any]]
    connection_string: str

    def __repr__(self) -> str:
        return f"ChatContext(instance_ref={self.instance_ref!r}, messages={len(self.messages)})"


class OrchestrationLoop:
    """Runs chat requests against the model and the tool gateway.

    Holds no per-request state: concurrent requests share only the
    credential store.
    """

    def __init__(
        self,
        config: QueryDeskConfig,
        store: CredentialStore,
        connections: ConnectionSource,
        gateway_factory: GatewayFactory | None = None,
        model_factory: ModelFactory | None = None,
        launcher_probe: LauncherProbe | None = None,
    ) -> None:
        """Initialize the loop with its collaborators.

        Args:
            config: Application configuration.
            store: Credential store holding project passwords.
            connections: Source of templated connection strings.
            gateway_factory: instance_ref -> ToolGateway. Defaults to McpToolGateway.
            model_factory: api_key -> ChatModel. Defaults to AnthropicChatModel.
            launcher_probe: Checks the tool launcher before streaming.
                Defaults to probing ``config.gateway.command``.
        """
        self._config = config
        self._store = store
        self._connections = connections
        self._gateway_factory = gateway_factory or (
            lambda ref: McpToolGateway(config.gateway, ref)
        )
        self._model_factory = model_factory or (
            lambda key: AnthropicChatModel(key, config.agent)
        )
        self._launcher_probe = launcher_probe or (
            lambda: probe_launcher(config.gateway.command)
        )

    @property
    def max_steps(self) -> int:
        return self._config.agent.max_steps

    async def prepare(self, payload: Any, access_token: str | None) -> ChatContext:
        """Validate the request and resolve everything needed to stream.

        Args:
            payload: Raw JSON body.
            access_token: Session access token, None when not signed in.

        Returns:
            ChatContext for run().

        Raises:
            ValidationError: Malformed body.
            NoUserMessageError: No user message in the conversation.
            NotAuthenticatedError: No session access token.
            MissingCredentialError: No password stored for the project.
            MissingReferenceError: No connection string for the project.
            LauncherNotFoundError: The tool launcher is not installed.
            ManagementAPIError: Project lookup failed.
        """
        request = parse_chat_request(payload)
        query = request.active_query()

        if not access_token:
            raise NotAuthenticatedError()

        ref = request.project_ref
        if not self._store.has_password(ref):
            raise MissingCredentialError(instance_ref=ref)

        await self._launcher_probe()

        base = await self._connections.get_connection_string(ref, access_token)
        region = await self._connections.get_region(ref, access_token)
        pooler = self._config.pooler
        if region:
            pooler = PoolerConfig(region_host=f"aws-0-{region}", domain=pooler.domain)
        connection_string = resolve_connection_string(base, ref, self._store, pooler)

        return ChatContext(
            instance_ref=ref,
            api_key=request.api_key,
            query=query,
            messages=[m.model_dump(include={"role", "content"}) for m in request.messages],
            connection_string=connection_string,
        )

    async def run(
        self,
        ctx: ChatContext,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[OrchestrationEvent]:
        """Stream the conversation for a prepared request.

        Args:
            ctx: Output of prepare().
            cancel: Token set when the client disconnects.

        Yields:
            TextUpdate, ToolExecution and StepProgress per step, then one
            ConversationSummary, or one ErrorEvent on failure.
        """
        cancel = cancel or CancellationToken()
        started = time.perf_counter()
        step_number = 0
        tool_call_count = 0
        outcome = "abandoned"
        handle: ToolHandle | None = None

        try:
            handle = await self._gateway_factory(ctx.instance_ref).open(ctx.connection_string)
            model = self._model_factory(ctx.api_key)
            tools = [{"name": name, **schema} for name, schema in handle.list_tools().items()]
            system = build_system_prompt(ctx.instance_ref)
            transcript = build_transcript(ctx.messages, ctx.query)
            step_type = STEP_INITIAL

            while True:
                if cancel.cancelled:
                    outcome = f"cancelled ({cancel.reason})"
                    logger.info(
                        "Chat run for %s cancelled before step %d",
                        ctx.instance_ref, step_number + 1,
                    )
                    return

                step = await model.step(system, transcript, tools)
                step_number += 1

                if step.text:
                    yield TextUpdate(step_number=step_number, content=step.text)

                calls: list[ToolCall] = []
                tool_results: list[dict[str, Any]] = []
                for requested in step.tool_calls:
                    result = await handle.invoke(requested.name, requested.input)
                    calls.append(ToolCall(
                        tool_name=requested.name,
                        args=requested.input,
                        result=result.text,
                        is_error=result.is_error,
                    ))
                    tool_results.append({
                        "type": "tool_result",
                        "tool_use_id": requested.id,
                        "content": result.text,
                        "is_error": result.is_error,
                    })
                tool_call_count += len(calls)

                if calls:
                    yield ToolExecution(
                        step_number=step_number,
                        tool_calls=tuple(calls),
                        finish_reason=step.finish_reason,
                    )
                yield StepProgress(
                    step_number=step_number,
                    step_type=step_type,
                    tools_used=tuple(call.tool_name for call in calls),
                    finish_reason=step.finish_reason,
                )

                if (
                    not calls
                    or step.finish_reason != FINISH_TOOL_CALLS
                    or step_number >= self.max_steps
                ):
                    break

                transcript.append({"role": "assistant", "content": step.content})
                transcript.append({"role": "user", "content": tool_results})
                step_type = STEP_TOOL_RESULT

            outcome = "completed"
            yield ConversationSummary(step_count=step_number, tool_call_count=tool_call_count)

        except QueryDeskError as e:
            outcome = f"error {e.code}"
            logger.error("Chat run for %s failed: %s", ctx.instance_ref, e.message)
            yield ErrorEvent(error=e.message, error_code=e.code)
        except Exception as e:
            outcome = "error"
            logger.exception("Unexpected error in chat run for %s", ctx.instance_ref)
            error = InternalError(sanitize_error_message(str(e)) or None)
            yield ErrorEvent(error=error.message, error_code=error.code)
        finally:
            if handle is not None:
                try:
                    # Runs even when the consumer's task is being cancelled.
                    with anyio.CancelScope(shield=True):
                        await handle.close()
                except Exception:
                    logger.warning("Error closing tool gateway for %s", ctx.instance_ref, exc_info=True)
            logger.info(
                "Chat run for %s %s: steps=%d tool_calls=%d elapsed=%dms",
                ctx.instance_ref, outcome, step_number, tool_call_count,
                int((time.perf_counter() - started) * 1000),
            )
