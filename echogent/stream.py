"""Streamed model invocation as an ordered sequence of typed chunks."""

import uuid
from dataclasses import dataclass
from typing import Iterator

from .report import ConfigError, TransportError
from .transcript import ToolCall


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallChunk:
    call: ToolCall


@dataclass(frozen=True)
class StepFinish:
    finish_reason: str | None


Chunk = TextDelta | ToolCallChunk | StepFinish


class ToolCallAccumulator:
    """Reassemble tool calls from streamed fragments, keyed by index."""

    def __init__(self):
        self._calls: dict[int, dict] = {}

    def add(self, fragment) -> None:
        index = getattr(fragment, "index", None)
        if index is None:
            index = len(self._calls)
        entry = self._calls.setdefault(index, {"id": "", "name": "", "arguments": ""})
        if getattr(fragment, "id", None):
            entry["id"] = fragment.id
        fn = getattr(fragment, "function", None)
        if fn is not None:
            if getattr(fn, "name", None):
                entry["name"] = fn.name
            if getattr(fn, "arguments", None):
                entry["arguments"] += fn.arguments

    def calls(self) -> list[ToolCall]:
        result = []
        for index in sorted(self._calls):
            entry = self._calls[index]
            if not entry["name"]:
                continue
            result.append(
                ToolCall(
                    id=entry["id"] or f"call_{uuid.uuid4().hex[:12]}",
                    name=entry["name"],
                    arguments=entry["arguments"] or "{}",
                )
            )
        return result


def stream_llm(
    messages: list[dict],
    tools: list[dict],
    *,
    model: str,
    api_base: str | None,
    api_key: str | None,
    max_output_tokens: int,
    temperature: float | None = None,
) -> Iterator[Chunk]:
    """Run one model step, yielding chunks as they arrive.

    Text deltas are yielded immediately. Tool calls are only complete once
    the stream ends, so they follow the last text delta, then a single
    StepFinish closes the step.

    Raises ConfigError when the endpoint rejects the credential and
    TransportError for any other failure, including mid-stream ones.
    """
    import litellm

    litellm.suppress_debug_info = True

    kwargs = dict(
        model=model,
        messages=messages,
        max_tokens=max_output_tokens,
        stream=True,
        api_key=api_key,
    )
    if tools:
        kwargs["tools"] = tools
        kwargs["tool_choice"] = "auto"
    if api_base:
        kwargs["api_base"] = api_base
    if temperature is not None:
        kwargs["temperature"] = temperature

    accumulator = ToolCallAccumulator()
    finish_reason = None
    try:
        response = litellm.completion(**kwargs)
        for chunk in response:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta
            if delta is not None:
                if delta.content:
                    yield TextDelta(delta.content)
                for fragment in getattr(delta, "tool_calls", None) or ():
                    accumulator.add(fragment)
            if choice.finish_reason:
                finish_reason = choice.finish_reason
    except litellm.AuthenticationError as e:
        raise ConfigError(f"model endpoint rejected the API key: {e}")
    except Exception as e:
        raise TransportError(f"LLM call failed: {e}")

    for call in accumulator.calls():
        yield ToolCallChunk(call)
    yield StepFinish(finish_reason)
