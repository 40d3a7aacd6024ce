"""Agent Gateway client - the hosted conversational agent.

The agent is opaque: we send (text, thread, resource) and get back reply
text, tool invocations, tool results and a finish reason. Its memory lives
on the agent side, keyed by thread/resource.

Security: NEVER log message text or reply text. Only lengths and tool ids.
"""

from __future__ import annotations

import os
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, model_validator

from intakebot.observability.logging import get_logger
from intakebot.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_AGENT_ID = "azumiAgent"
DEFAULT_MAX_STEPS = 10


class AgentGatewayError(Exception):
    """Raised when the agent backend fails or returns an unusable response."""

    pass


def _flatten_payload(data: Any) -> Any:
    # Some agent runtimes wrap each entry as {"type": ..., "payload": {...}}
    if isinstance(data, dict) and isinstance(data.get("payload"), dict):
        return {**data["payload"], **{k: v for k, v in data.items() if k != "payload"}}
    return data


class ToolCall(BaseModel):
    """One tool invocation made by the agent during the turn."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    tool_name: str = Field("tool", alias="toolName")
    args: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, data: Any) -> Any:
        return _flatten_payload(data)


class ToolResult(BaseModel):
    """Result of a tool invocation."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    tool_name: str = Field("tool", alias="toolName")
    result: Any = None

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, data: Any) -> Any:
        return _flatten_payload(data)

    def result_field(self, name: str) -> Any:
        return self.result.get(name) if isinstance(self.result, dict) else None


class AgentReply(BaseModel):
    """Response contract of the Agent Gateway. `text` may be empty."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    text: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list, alias="toolCalls")
    tool_results: list[ToolResult] = Field(default_factory=list, alias="toolResults")
    finish_reason: str | None = Field(None, alias="finishReason")
    reasoning_text: str | None = Field(None, alias="reasoningText")
    steps: list[Any] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _none_to_defaults(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            for key in ("text", "toolCalls", "toolResults", "steps"):
                if data.get(key) is None:
                    data.pop(key, None)
        return data

    def recovered_text(self) -> str | None:
        """Text the agent produced somewhere other than the final `text`.

        Some turns end on a tool step: the reasoning text or the last step
        carrying text is then the best user-visible answer.
        """
        if self.reasoning_text and self.reasoning_text.strip():
            return self.reasoning_text.strip()
        for step in reversed(self.steps):
            if not isinstance(step, dict):
                continue
            content = step.get("content")
            if isinstance(content, list):
                content = " ".join(
                    c.get("text", "") if isinstance(c, dict) else str(c) for c in content
                )
            response = step.get("response")
            candidates = (
                step.get("text"),
                response.get("text") if isinstance(response, dict) else None,
                content,
            )
            for value in candidates:
                if isinstance(value, str) and value.strip():
                    return value.strip()
        return None

    @property
    def last_tool_name(self) -> str | None:
        if self.tool_results:
            return self.tool_results[-1].tool_name
        if self.tool_calls:
            return self.tool_calls[-1].tool_name
        return None

    def extract_phone(self) -> str | None:
        """Phone the agent used in a tool call or got back from a tool."""
        for call in self.tool_calls:
            phone = call.args.get("phone")
            if isinstance(phone, str) and phone.strip():
                return phone
        for result in self.tool_results:
            phone = result.result_field("phone")
            if isinstance(phone, str) and phone.strip():
                return phone
        return None

    def tool_succeeded(self, tool_name: str) -> bool:
        return any(
            r.tool_name == tool_name and r.result_field("success") is True
            for r in self.tool_results
        )


def _get_config() -> dict[str, Any]:
    """Gateway config from environment.

    Required:
    - AGENT_GATEWAY_URL: base URL of the agent server

    Optional:
    - AGENT_GATEWAY_API_KEY: bearer token
    - AGENT_ID: agent identifier (default: azumiAgent)
    - AGENT_MAX_STEPS: max tool/LLM steps per turn (default: 10)
    - AGENT_GATEWAY_TIMEOUT: seconds; unset means no timeout
    """
    base_url = os.environ.get("AGENT_GATEWAY_URL", "")
    if not base_url:
        raise RuntimeError("Missing agent config: AGENT_GATEWAY_URL required")

    timeout_raw = os.environ.get("AGENT_GATEWAY_TIMEOUT", "")
    return {
        "base_url": base_url.rstrip("/"),
        "api_key": os.environ.get("AGENT_GATEWAY_API_KEY", ""),
        "agent_id": os.environ.get("AGENT_ID", DEFAULT_AGENT_ID),
        "max_steps": int(os.environ.get("AGENT_MAX_STEPS", str(DEFAULT_MAX_STEPS))),
        "timeout": float(timeout_raw) if timeout_raw else None,
    }


class AgentGatewayClient:
    """HTTP client for the hosted agent's generate endpoint."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        api_key: str | None = None,
        agent_id: str | None = None,
        max_steps: int | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        config = _get_config() if base_url is None else {
            "base_url": base_url.rstrip("/"),
            "api_key": api_key or "",
            "agent_id": agent_id or DEFAULT_AGENT_ID,
            "max_steps": max_steps or DEFAULT_MAX_STEPS,
            "timeout": None,
        }
        self._url = f"{config['base_url']}/api/agents/{config['agent_id']}/generate"
        self._api_key = config["api_key"]
        self._max_steps = config["max_steps"]
        self._http = http_client or httpx.AsyncClient(timeout=config["timeout"])

    async def generate(self, text: str, *, thread_id: str, resource_id: str) -> AgentReply:
        """Run one agent turn.

        Raises:
            AgentGatewayError: On transport failure, non-2xx or malformed body.
        """
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        body = {
            "messages": [{"role": "user", "content": text}],
            "threadId": thread_id,
            "resourceId": resource_id,
            "maxSteps": self._max_steps,
        }

        log_ctx = safe_log_context(thread_id=thread_id, text_len=len(text))
        logger.info("agent generate started", extra={"extra_fields": log_ctx})

        try:
            response = await self._http.post(self._url, json=body, headers=headers)
            response.raise_for_status()
            reply = AgentReply.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "agent generate failed",
                extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
            )
            raise AgentGatewayError(f"agent generate failed: {type(e).__name__}") from e

        logger.info(
            "agent generate finished",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx,
                    reply_len=len(reply.text),
                    tool_calls=len(reply.tool_calls),
                    tool_results=len(reply.tool_results),
                    finish_reason=reply.finish_reason,
                )
            },
        )
        return reply

    async def aclose(self) -> None:
        await self._http.aclose()
