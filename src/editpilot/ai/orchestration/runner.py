"""Agent runner: the bounded tool-calling loop for one user turn.

Each call to :meth:`AgentRunner.run` owns its conversation log, tool
context and edit accumulator. Nothing is shared between turns, so one
runner instance can serve concurrent requests.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping, Protocol, Sequence

from ..client import AIClientError
from ..intent import infer_intent
from ..prompts import build_system_prompt
from ..tools.base import EventSink, ToolContext
from ..tools.registry import ToolDispatcher, tool_definitions
from .responses import StreamAccumulator, normalize_response
from .types import Message, ModelResponse, ParsedToolCall, TurnConfig, TurnInput, TurnOutput, TurnState

__all__ = [
    "AgentRunner",
    "ITERATION_LIMIT_MESSAGE",
    "ModelClient",
    "parse_tool_arguments",
]

LOGGER = logging.getLogger(__name__)

ITERATION_LIMIT_MESSAGE = "Agent reached maximum iteration limit"


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


class ModelClient(Protocol):
    """Protocol for chat clients. :class:`~editpilot.ai.client.AIClient` and
    :class:`~editpilot.ai.client.GatewayClient` conform to it."""

    def build_payload(
        self,
        messages: Iterable[Mapping[str, Any]],
        *,
        tools: Iterable[Any] | None = None,
        tool_choice: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        stream: bool = False,
    ) -> dict[str, Any]:
        ...

    def stream_chat(self, payload: Mapping[str, Any]) -> AsyncIterator[Mapping[str, Any]]:
        ...

    async def complete_chat(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        ...


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def parse_tool_arguments(call: ParsedToolCall) -> dict[str, Any]:
    """Parse a tool call's JSON arguments, substituting ``{}`` when malformed."""

    arguments = call.arguments
    if not arguments or arguments.strip() in ("", "{}"):
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as exc:
        LOGGER.warning("Malformed arguments for tool %s (call %s): %s", call.name, call.call_id, exc)
        return {}
    if not isinstance(parsed, dict):
        LOGGER.warning(
            "Arguments for tool %s must be a JSON object, got %s", call.name, type(parsed).__name__
        )
        return {}
    return parsed


@dataclass(slots=True)
class _TurnSession:
    messages: list[Message]
    dispatcher: ToolDispatcher
    state: TurnState = TurnState.IDLE
    final_text: str = ""
    iterations: int = 0
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Runner
# -----------------------------------------------------------------------------


class AgentRunner:
    """Drives the conversation between the model and the edit tools.

    Example:
        >>> runner = AgentRunner(client)
        >>> output = await runner.run(turn_input, emit=stream.send)
        >>> output.edits
    """

    def __init__(
        self,
        client: ModelClient,
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the runner.

        Args:
            client: Chat client used for every LLM round-trip.
            tools: Tool definitions sent to the model; defaults to the built-in tools.
            sleep: Coroutine used for the inter-call delay.
        """
        self._client = client
        self._tools = tuple(tools) if tools is not None else tuple(tool_definitions())
        self._sleep = sleep

    @property
    def client(self) -> ModelClient:
        return self._client

    async def run(self, turn: TurnInput, emit: EventSink) -> TurnOutput:
        """Execute one turn and emit its protocol events.

        The loop ends when the model finishes without tool calls, when the
        upstream request fails, when the model returns neither a final answer
        nor tool calls, or after ``turn.config.max_iterations`` round-trips.
        A ``done`` event carrying the collected text and edits is emitted in
        every case except cancellation.

        Args:
            turn: Prompt, document snapshot, history and limits.
            emit: Sink receiving ``status``, ``assistant_partial``, ``tool``,
                ``edits``, ``error`` and ``done`` events.

        Returns:
            TurnOutput describing the terminal state.
        """
        intent = infer_intent(turn.prompt)
        tool_context = ToolContext(agent_context=turn.context, intent=intent, emit=emit)
        session = _TurnSession(
            messages=self._seed_messages(turn),
            dispatcher=ToolDispatcher(tool_context),
        )
        LOGGER.debug("Starting turn with intent %s", intent.to_dict())
        emit("status", {"state": "started"})

        try:
            await self._run_loop(session, turn.config, emit)
        except AIClientError as exc:
            self._fail(session, emit, str(exc))
        except Exception as exc:
            LOGGER.exception("Turn failed with unexpected error")
            self._fail(session, emit, f"Agent error: {exc}")

        edits = tuple(tool_context.collected_edits)
        emit("done", {"text": session.final_text, "edits": [edit.to_dict() for edit in edits]})
        return TurnOutput(
            text=session.final_text,
            edits=edits,
            state=session.state,
            iterations=session.iterations,
            error=session.error,
            metadata=dict(session.metadata),
        )

    def _seed_messages(self, turn: TurnInput) -> list[Message]:
        context = turn.context
        system_prompt = build_system_prompt(
            context.numbered_content,
            context.text_from_editor,
            context.selection_range,
            context.project_files,
            context.current_file_path,
        )
        history = [message for message in turn.history if message.role != "system"]
        return [Message.system(system_prompt), *history, Message.user(turn.prompt)]

    async def _run_loop(self, session: _TurnSession, config: TurnConfig, emit: EventSink) -> None:
        while session.iterations < config.max_iterations:
            session.iterations += 1
            session.state = TurnState.REQUESTING
            LOGGER.debug("Turn iteration %d/%d", session.iterations, config.max_iterations)

            response = await self._request(session.messages, config, emit)
            if response.text:
                session.final_text = response.text

            if response.complete and not response.has_tool_calls:
                session.state = TurnState.COMPLETE
                return

            if response.has_tool_calls:
                session.state = TurnState.TOOL_DISPATCH
                await self._dispatch_tools(session, response)
                if config.tool_call_delay > 0:
                    await self._sleep(config.tool_call_delay)
                continue

            LOGGER.warning(
                "Model returned neither a final answer nor tool calls (finish_reason=%s); ending turn",
                response.finish_reason,
            )
            session.metadata["protocol_anomaly"] = True
            session.state = TurnState.COMPLETE
            return

        LOGGER.warning("Turn reached max iterations (%d)", config.max_iterations)
        session.state = TurnState.ITERATION_EXHAUSTED
        session.error = ITERATION_LIMIT_MESSAGE
        session.metadata["max_iterations_reached"] = True
        emit("error", {"message": ITERATION_LIMIT_MESSAGE})

    async def _request(self, messages: Sequence[Message], config: TurnConfig, emit: EventSink) -> ModelResponse:
        payload = self._client.build_payload(
            [message.to_chat_param() for message in messages],
            tools=self._tools,
            tool_choice="auto",
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            stream=config.streaming_enabled,
        )
        if not config.streaming_enabled:
            response = normalize_response(await self._client.complete_chat(payload))
            if response.text:
                emit("assistant_partial", {"text": response.text})
            return response

        accumulator = StreamAccumulator()
        async for chunk in self._client.stream_chat(payload):
            delta = accumulator.feed(chunk)
            if delta:
                emit("assistant_partial", {"text": delta})
        if accumulator.chunk_count == 0:
            raise AIClientError("No valid response received from LLM stream")
        return normalize_response(accumulator.result())

    async def _dispatch_tools(self, session: _TurnSession, response: ModelResponse) -> None:
        session.messages.append(response.to_message())
        for call in response.tool_calls:
            arguments = parse_tool_arguments(call)
            content = await session.dispatcher.execute(call.name, arguments, call_id=call.call_id)
            session.messages.append(Message.tool(content, call.call_id))

    def _fail(self, session: _TurnSession, emit: EventSink, message: str) -> None:
        LOGGER.error("Turn failed at iteration %d: %s", session.iterations, message)
        session.state = TurnState.ERRORED
        session.error = message
        emit("error", {"message": message})
