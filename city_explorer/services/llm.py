from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence
import logging
import time
import json
from datetime import datetime, timezone

import openai
from openai import AsyncOpenAI

from ..config import CONFIG
from ..errors import GatewayError
from ..chat.models import FunctionCall, Message, ToolCall


@dataclass
class ProbeResult:
    finish_reason: Optional[str]
    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)


@dataclass
class StreamChunk:
    content: str = ""
    finish_reason: Optional[str] = None


def _as_gateway_error(e: openai.OpenAIError) -> GatewayError:
    status = getattr(e, "status_code", None)
    message = getattr(e, "message", None) or str(e) or "OpenAI request failed unexpectedly"
    return GatewayError(message, status=status)


def _log_call(fn: str, start_time: float, ok: bool, extra: Optional[Dict[str, Any]] = None) -> None:
    latency_ms = (time.monotonic() - start_time) * 1000
    log_data = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "tool": "openai",
        "fn": fn,
        "latency_ms": f"{latency_ms:.2f}",
        "ok": ok,
    }
    if extra:
        log_data.update(extra)
    logging.info(json.dumps(log_data))


class OpenAIGateway:
    """Chat completions in two flavours: a tool-call probe and a token stream."""

    def __init__(self, client: AsyncOpenAI, model: Optional[str] = None, system_prompt: Optional[str] = None) -> None:
        self._client = client
        self.model = model or CONFIG.openai_model
        self.system_prompt = system_prompt

    def _wire_messages(self, messages: Sequence[Message]) -> List[Dict[str, Any]]:
        wire = [m.to_wire() for m in messages]
        if self.system_prompt:
            wire.insert(0, {"role": "system", "content": self.system_prompt})
        return wire

    async def probe(self, messages: Sequence[Message], tools: Sequence[Dict[str, Any]]) -> ProbeResult:
        start_time = time.monotonic()
        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                messages=self._wire_messages(messages),
                tools=list(tools),
                tool_choice="auto",
            )
        except openai.OpenAIError as e:
            _log_call("probe", start_time, False)
            raise _as_gateway_error(e)

        if not completion.choices:
            _log_call("probe", start_time, False)
            raise GatewayError("OpenAI returned no choices")
        choice = completion.choices[0]
        tool_calls = [
            ToolCall(
                id=tc.id,
                function=FunctionCall(name=tc.function.name, arguments=tc.function.arguments or ""),
            )
            for tc in (choice.message.tool_calls or [])
        ]
        _log_call("probe", start_time, True, {"finish_reason": choice.finish_reason, "tool_calls": len(tool_calls)})
        return ProbeResult(
            finish_reason=choice.finish_reason,
            content=choice.message.content,
            tool_calls=tool_calls,
        )

    async def stream(
        self,
        messages: Sequence[Message],
        tools: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> AsyncIterator[StreamChunk]:
        start_time = time.monotonic()
        kwargs: Dict[str, Any] = {}
        if tools:
            # Tool definitions must accompany a transcript that contains tool calls.
            kwargs = {"tools": list(tools), "tool_choice": "none"}
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=self._wire_messages(messages),
                stream=True,
                **kwargs,
            )
            try:
                async for part in response:
                    if not part.choices:
                        continue
                    choice = part.choices[0]
                    token = (choice.delta.content if choice.delta else None) or ""
                    yield StreamChunk(content=token, finish_reason=choice.finish_reason)
            finally:
                await response.close()
        except openai.OpenAIError as e:
            _log_call("stream", start_time, False)
            raise _as_gateway_error(e)
        _log_call("stream", start_time, True)
