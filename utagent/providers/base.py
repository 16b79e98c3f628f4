"""Shared machinery for the wire-protocol adapters.

Each adapter translates provider-neutral turns and tool descriptors into one
provider's request body, and the provider's response (or SSE stream) back into
an :class:`~utagent.messages.AssistantTurn`. Transport, status handling and
SSE line framing live here; adapters only implement the translation.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Iterable, Iterator, Mapping, Sequence

import httpx

from utagent.errors import AgentError, ConfigurationError, ProtocolError, TransportError, wrap_transport_error
from utagent.messages import AssistantTurn, ToolCall, ToolDescriptor, Turn, UserTurn
from utagent.streaming import StreamHandler

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 120.0
DEFAULT_CONNECT_TIMEOUT_S = 30.0
_LOG_BODY_CHARS = 2000

# Raised by parse_response / consume_stream when JSON has the wrong shape.
_MALFORMED = (AttributeError, KeyError, TypeError, ValueError)


def iter_sse_data(lines: Iterable[str]) -> Iterator[dict[str, Any]]:
    """Yield the JSON payload of each ``data:`` line in an SSE stream.

    Stops at ``[DONE]``. Lines that are not data lines, and data that is not
    a JSON object, are skipped.
    """
    for line in lines:
        if not line:
            continue
        raw = line.strip()
        if not raw.startswith("data:"):
            continue
        body = raw[5:].strip()
        if not body:
            continue
        if body == "[DONE]":
            return
        try:
            chunk = json.loads(body)
        except json.JSONDecodeError:
            logger.debug("SSE_SKIP unparseable data line: %s", body[:200])
            continue
        if isinstance(chunk, dict):
            yield chunk


@dataclass
class _PendingCall:
    id: str = ""
    name: str = ""
    fragments: list[str] = field(default_factory=list)
    arguments: dict[str, Any] | None = None


class ToolCallAccumulator:
    """Buffer streamed tool-call pieces per stream-local index.

    Calls are only materialized by :meth:`finish`, after the stream ends.
    """

    def __init__(self) -> None:
        self._slots: dict[int, _PendingCall] = {}

    def _slot(self, index: int) -> _PendingCall:
        return self._slots.setdefault(index, _PendingCall())

    def start(self, index: int, call_id: str | None = None, name: str | None = None) -> None:
        slot = self._slot(index)
        if call_id:
            slot.id = call_id
        if name:
            slot.name = name

    def add_fragment(self, index: int, fragment: str | None) -> None:
        if fragment:
            self._slot(index).fragments.append(fragment)

    def set_arguments(self, index: int, arguments: Mapping[str, Any] | None) -> None:
        self._slot(index).arguments = dict(arguments or {})

    def __bool__(self) -> bool:
        return bool(self._slots)

    def finish(self) -> list[ToolCall]:
        calls: list[ToolCall] = []
        for index in sorted(self._slots):
            slot = self._slots[index]
            if not slot.name:
                logger.warning("STREAM_TOOL_CALL_DROPPED index=%d reason=missing name", index)
                continue
            arguments = slot.arguments
            if arguments is None:
                arguments = parse_arguments("".join(slot.fragments))
                if arguments is None:
                    logger.warning(
                        "STREAM_TOOL_CALL_DROPPED index=%d tool=%s reason=incomplete arguments",
                        index,
                        slot.name,
                    )
                    continue
            calls.append(ToolCall(id=slot.id, name=slot.name, arguments=arguments))
        return calls


def parse_arguments(raw: str | Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Parse tool-call arguments; ``None`` if they are not a JSON object."""
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _truncate(text: str, limit: int = _LOG_BODY_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class LlmAdapter(ABC):
    """One wire protocol: request building, response parsing and SSE decoding."""

    name: ClassVar[str]
    default_model: ClassVar[str]
    default_base_url: ClassVar[str]

    def __init__(
        self,
        api_key: str,
        *,
        model: str | None = None,
        base_url: str | None = None,
        temperature: float | None = None,
        timeout: float = DEFAULT_TIMEOUT_S,
        max_tokens: int | None = None,
        custom_headers: Mapping[str, str] | None = None,
        log_requests: bool = False,
        client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError(f"{self.name} adapter requires an API key")
        self.api_key = api_key
        self.model = model or self.default_model
        self.base_url = self.normalize_base_url(base_url)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.custom_headers = dict(custom_headers or {})
        self.log_requests = log_requests
        self.timeout = httpx.Timeout(timeout, connect=min(DEFAULT_CONNECT_TIMEOUT_S, timeout))
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=self.timeout)

    # -- adapter-specific ----------------------------------------------

    @classmethod
    def normalize_base_url(cls, base_url: str | None) -> str:
        """Base URL requests are built on, without a trailing slash."""
        url = (base_url or cls.default_base_url).strip()
        return url.rstrip("/")

    @abstractmethod
    def endpoint(self, stream: bool) -> str:
        """Full request URL for a blocking or streaming call."""

    @abstractmethod
    def headers(self) -> dict[str, str]:
        """Authentication and version headers for this provider."""

    @abstractmethod
    def build_payload(
        self,
        turns: Sequence[Turn],
        tools: Sequence[ToolDescriptor],
        stream: bool,
    ) -> dict[str, Any]:
        """Translate turns and tool descriptors into the provider's request body."""

    @abstractmethod
    def parse_response(self, data: dict[str, Any]) -> AssistantTurn:
        """Translate a non-streaming response body into an assistant turn.

        Shape errors (``AttributeError``, ``KeyError``, ``TypeError``,
        ``ValueError``) are reported by :meth:`chat` as ProtocolError.
        """

    @abstractmethod
    def consume_stream(
        self,
        events: Iterator[dict[str, Any]],
        handler: StreamHandler,
    ) -> tuple[str, list[ToolCall]]:
        """Drive ``handler.on_token`` and return the final text and tool calls."""

    def loggable_url(self, url: str) -> str:
        """URL as written to logs, with any secrets masked."""
        return url

    # -- contract --------------------------------------------------------

    def chat(self, turns: Sequence[Turn], tools: Sequence[ToolDescriptor] = ()) -> AssistantTurn:
        """Send one request and return the model's reply.

        Raises:
            TransportError: network failure or non-2xx status.
            ProtocolError: body is not JSON or violates the provider schema.
        """
        url = self.endpoint(stream=False)
        payload = self.build_payload(turns, tools, stream=False)
        self._log_request(url, payload)
        try:
            response = self._client.post(url, headers=self._all_headers(), json=payload, timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise wrap_transport_error(exc) from exc
        if not response.is_success:
            raise TransportError(
                f"{self.name} returned HTTP {response.status_code}: {_truncate(response.text, 500)}",
                status_code=response.status_code,
                body=response.text,
            )
        if self.log_requests:
            logger.info("LLM_RESPONSE adapter=%s body=%s", self.name, _truncate(response.text))
        try:
            data = response.json()
        except ValueError as exc:
            raise ProtocolError(f"{self.name} returned a non-JSON body: {_truncate(response.text, 200)}", original=exc) from exc
        if not isinstance(data, dict):
            raise ProtocolError(f"{self.name} returned {type(data).__name__}, expected an object")
        try:
            return self.parse_response(data)
        except _MALFORMED as exc:
            raise ProtocolError(f"{self.name} response violates the expected schema: {exc}", original=exc) from exc

    def chat_stream(
        self,
        turns: Sequence[Turn],
        tools: Sequence[ToolDescriptor],
        handler: StreamHandler,
    ) -> None:
        """Stream one reply through ``handler``.

        Failures are reported via ``handler.on_error``; nothing is raised.
        Tool calls are delivered after the stream ends, then ``on_complete``.
        """
        url = self.endpoint(stream=True)
        payload = self.build_payload(turns, tools, stream=True)
        self._log_request(url, payload)
        headers = {**self._all_headers(), "Accept": "text/event-stream"}
        try:
            with self._client.stream("POST", url, headers=headers, json=payload, timeout=self.timeout) as response:
                if not response.is_success:
                    body = response.read().decode("utf-8", errors="replace")
                    raise TransportError(
                        f"{self.name} returned HTTP {response.status_code}: {_truncate(body, 500)}",
                        status_code=response.status_code,
                        body=body,
                    )
                text, calls = self.consume_stream(iter_sse_data(response.iter_lines()), handler)
        except AgentError as exc:
            logger.warning("LLM_STREAM_FAILED adapter=%s %s: %s", self.name, type(exc).__name__, exc)
            handler.on_error(exc)
            return
        except httpx.HTTPError as exc:
            logger.warning("LLM_STREAM_FAILED adapter=%s %s: %s", self.name, type(exc).__name__, exc)
            handler.on_error(wrap_transport_error(exc))
            return
        except _MALFORMED as exc:
            logger.warning("LLM_STREAM_FAILED adapter=%s malformed event: %s", self.name, exc)
            handler.on_error(ProtocolError(f"{self.name} sent a malformed stream event: {exc}", original=exc))
            return
        for call in calls:
            handler.on_tool_call(call)
        handler.on_complete(text, tuple(calls))

    def test_connection(self) -> bool:
        """Send a trivial request; ``False`` if the provider cannot be reached."""
        try:
            self.chat([UserTurn("Hi")])
        except AgentError as exc:
            logger.warning("LLM_CONNECTION_FAILED adapter=%s: %s", self.name, exc)
            return False
        return True

    def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "LlmAdapter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -- internals -----------------------------------------------------

    def _all_headers(self) -> dict[str, str]:
        return {**self.headers(), **self.custom_headers}

    def _log_request(self, url: str, payload: dict[str, Any]) -> None:
        logger.debug("LLM_CALL adapter=%s model=%s url=%s", self.name, self.model, self.loggable_url(url))
        if self.log_requests:
            logger.info(
                "LLM_REQUEST adapter=%s url=%s body=%s",
                self.name,
                self.loggable_url(url),
                _truncate(json.dumps(payload)),
            )
