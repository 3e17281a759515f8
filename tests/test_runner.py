"""Tests for the agent runner's bounded tool-calling loop."""

from __future__ import annotations

import json

import pytest

from editpilot.ai.client import AIClientError
from editpilot.ai.orchestration.runner import ITERATION_LIMIT_MESSAGE, AgentRunner, parse_tool_arguments
from editpilot.ai.orchestration.types import Message, ParsedToolCall, TurnConfig, TurnInput, TurnState
from tests.helpers import FakeModelClient, text_chunks, tool_call_chunks, wrapped_body


REPLACE_LINE_2 = {
    "edits": [{"editType": "replace", "position": {"line": 2}, "content": "Line two", "originalLineCount": 1}]
}


@pytest.fixture
def turn(agent_context) -> TurnInput:
    return TurnInput(prompt="fix line 2", context=agent_context)


# =============================================================================
# Direct shape
# =============================================================================


@pytest.mark.asyncio
async def test_text_only_response_completes_in_one_iteration(turn, recorder) -> None:
    client = FakeModelClient([text_chunks("Hel", "lo")])

    output = await AgentRunner(client).run(turn, recorder)

    assert output.state is TurnState.COMPLETE
    assert output.text == "Hello"
    assert output.iterations == 1
    assert output.edits == ()
    assert recorder.names() == ["status", "assistant_partial", "assistant_partial", "done"]
    assert recorder.of("status")[0] == {"state": "started"}
    assert recorder.of("done")[0] == {"text": "Hello", "edits": []}


@pytest.mark.asyncio
async def test_tool_call_then_answer_collects_edits(turn, recorder) -> None:
    client = FakeModelClient([tool_call_chunks("propose_edits", REPLACE_LINE_2), text_chunks("Done.")])

    output = await AgentRunner(client).run(turn, recorder)

    assert output.state is TurnState.COMPLETE
    assert output.iterations == 2
    assert [edit.line for edit in output.edits] == [2]
    assert recorder.names() == ["status", "tool", "tool", "edits", "assistant_partial", "done"]
    done = recorder.of("done")[0]
    assert done["text"] == "Done."
    assert done["edits"][0]["position"] == {"line": 2}

    second_messages = client.payloads[1]["messages"]
    assistant, tool_message = second_messages[-2], second_messages[-1]
    assert assistant["role"] == "assistant"
    assert assistant["tool_calls"][0]["function"]["name"] == "propose_edits"
    assert tool_message == {
        "role": "tool",
        "content": "Accepted 1 total edit(s): 1 edit(s) for main.tex",
        "tool_call_id": "call_1",
    }


@pytest.mark.asyncio
async def test_request_payload_carries_config_and_history(agent_context, recorder) -> None:
    client = FakeModelClient([text_chunks("ok")])
    turn = TurnInput(
        prompt="fix line 2",
        context=agent_context,
        history=(Message.system("stale"), Message.user("hi"), Message.assistant("hello")),
        config=TurnConfig(temperature=0.3, max_tokens=1024),
    )

    await AgentRunner(client).run(turn, recorder)

    payload = client.payloads[0]
    roles = [message["role"] for message in payload["messages"]]
    assert roles == ["system", "user", "assistant", "user"]
    assert "1: line 1" in payload["messages"][0]["content"]
    assert payload["messages"][-1]["content"] == "fix line 2"
    assert payload["temperature"] == 0.3
    assert payload["max_tokens"] == 1024
    assert payload["tool_choice"] == "auto"
    assert payload["stream"] is True
    assert [tool["function"]["name"] for tool in payload["tools"]] == ["get_context", "propose_edits"]


@pytest.mark.asyncio
async def test_malformed_tool_arguments_are_replaced_with_empty_object(turn, recorder) -> None:
    client = FakeModelClient([tool_call_chunks("propose_edits", "{not json"), text_chunks("Sorry.")])

    output = await AgentRunner(client).run(turn, recorder)

    assert output.state is TurnState.COMPLETE
    tool_message = client.payloads[1]["messages"][-1]
    assert tool_message["role"] == "tool"
    assert json.loads(tool_message["content"])["code"] == "no_edits"


@pytest.mark.asyncio
async def test_tool_call_delay_sleeps_between_iterations(agent_context, recorder) -> None:
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    client = FakeModelClient([tool_call_chunks("get_context", {}), text_chunks("ok")])
    turn = TurnInput(prompt="fix it", context=agent_context, config=TurnConfig(tool_call_delay=0.25))

    await AgentRunner(client, sleep=fake_sleep).run(turn, recorder)

    assert sleeps == [0.25]


# =============================================================================
# Wrapped shape and non-streaming
# =============================================================================


@pytest.mark.asyncio
async def test_non_streaming_wrapped_responses(agent_context, recorder) -> None:
    call = {"id": "w1", "type": "function", "function": {"name": "propose_edits", "arguments": json.dumps(REPLACE_LINE_2)}}
    client = FakeModelClient(
        [
            wrapped_body(tool_calls=[call], finish_reason="tool_calls"),
            wrapped_body("Replaced line 2."),
        ]
    )
    turn = TurnInput(prompt="fix line 2", context=agent_context, config=TurnConfig(streaming_enabled=False))

    output = await AgentRunner(client).run(turn, recorder)

    assert output.state is TurnState.COMPLETE
    assert output.text == "Replaced line 2."
    assert len(output.edits) == 1
    assert client.payloads[0]["stream"] is False
    assert recorder.of("assistant_partial") == [{"text": "Replaced line 2."}]


# =============================================================================
# Termination
# =============================================================================


@pytest.mark.asyncio
async def test_iteration_limit_emits_error_then_done(agent_context, recorder) -> None:
    client = FakeModelClient(
        [tool_call_chunks("propose_edits", REPLACE_LINE_2, call_id=f"call_{i}") for i in range(3)]
    )
    turn = TurnInput(prompt="fix line 2", context=agent_context, config=TurnConfig(max_iterations=3))

    output = await AgentRunner(client).run(turn, recorder)

    assert output.state is TurnState.ITERATION_EXHAUSTED
    assert output.iterations == 3
    assert output.error == ITERATION_LIMIT_MESSAGE
    assert output.metadata["max_iterations_reached"] is True
    assert len(output.edits) == 3
    assert recorder.names()[-2:] == ["error", "done"]
    assert recorder.of("error") == [{"message": ITERATION_LIMIT_MESSAGE}]
    assert len(recorder.of("done")[0]["edits"]) == 3


@pytest.mark.asyncio
async def test_upstream_error_ends_turn_with_error_and_done(turn, recorder) -> None:
    client = FakeModelClient([AIClientError("LLM API error (500): boom", status_code=500)])

    output = await AgentRunner(client).run(turn, recorder)

    assert output.state is TurnState.ERRORED
    assert output.error == "LLM API error (500): boom"
    assert recorder.names() == ["status", "error", "done"]


@pytest.mark.asyncio
async def test_empty_stream_is_an_error(turn, recorder) -> None:
    client = FakeModelClient([[]])

    output = await AgentRunner(client).run(turn, recorder)

    assert output.state is TurnState.ERRORED
    assert recorder.of("error") == [{"message": "No valid response received from LLM stream"}]


@pytest.mark.asyncio
async def test_unfinished_response_without_tool_calls_ends_turn(turn, recorder) -> None:
    client = FakeModelClient([text_chunks("thinking", finish_reason="tool_calls")])

    output = await AgentRunner(client).run(turn, recorder)

    assert output.state is TurnState.COMPLETE
    assert output.metadata["protocol_anomaly"] is True
    assert output.iterations == 1
    assert "error" not in recorder.names()


@pytest.mark.asyncio
async def test_edits_from_earlier_iterations_survive_an_error(turn, recorder) -> None:
    client = FakeModelClient(
        [tool_call_chunks("propose_edits", REPLACE_LINE_2), AIClientError("LLM request failed: reset")]
    )

    output = await AgentRunner(client).run(turn, recorder)

    assert output.state is TurnState.ERRORED
    assert len(recorder.of("done")[0]["edits"]) == 1


# =============================================================================
# Helpers
# =============================================================================


@pytest.mark.parametrize(
    ("arguments", "expected"),
    [
        ('{"filePath": "a.tex"}', {"filePath": "a.tex"}),
        ("", {}),
        ("{}", {}),
        ("{broken", {}),
        ("[1, 2]", {}),
    ],
)
def test_parse_tool_arguments(arguments: str, expected: dict) -> None:
    call = ParsedToolCall(call_id="c", name="get_context", arguments=arguments)

    assert parse_tool_arguments(call) == expected
