from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import requests

from .errors import UpstreamRelayFailure

RAW_PREVIEW_CHARS = 100

logger = logging.getLogger("llamaterm.llm")


class LlmClient:
    """
    Minimal HTTP client for a chat endpoint speaking the OpenAI-compatible or
    flat ``{"content": ...}`` dialect.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: Optional[float] = None,
        api_key: str = "",
        model: str = "",
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.api_key = api_key
        self.model = model

    def chat(self, messages: List[Dict[str, str]]) -> Any:
        """
        POST the context payload and return the decoded JSON body.

        Raises UpstreamRelayFailure for transport errors, error statuses and
        bodies that are not JSON.
        """
        payload: Dict[str, Any] = {
            "messages": messages,
            # Some servers need this.
            "mode": "chat",
        }
        if self.model:
            payload["model"] = self.model

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = requests.post(
                self.url,
                headers=headers,
                data=json.dumps(payload),
                timeout=self.timeout,
            )
        # ValueError covers bad URLs and header values http.client cannot encode.
        except (requests.RequestException, OSError, ValueError) as exc:
            raise UpstreamRelayFailure(str(exc)) from exc
        if response.status_code >= 400:
            raise UpstreamRelayFailure(
                f"Server returned {response.status_code}: {response.text}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamRelayFailure(f"Invalid JSON in response body: {exc}") from exc


@dataclass(frozen=True)
class ChatCompletionReply:
    """``{"choices": [{"message": {"content": ...}}]}``"""

    text: str


@dataclass(frozen=True)
class FlatContentReply:
    """``{"content": ...}``"""

    text: str


@dataclass(frozen=True)
class UnrecognizedReply:
    raw: Any

    @property
    def text(self) -> str:
        dump = json.dumps(self.raw, separators=(",", ":"), ensure_ascii=False)
        return "Error: Could not parse LLM response. Raw: " + dump[:RAW_PREVIEW_CHARS] + "..."


Reply = Union[ChatCompletionReply, FlatContentReply, UnrecognizedReply]


def _decode_chat_completion(body: Any) -> Optional[Reply]:
    if not isinstance(body, dict):
        return None
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    message = first.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if not isinstance(content, str):
        return None
    return ChatCompletionReply(text=content)


def _decode_flat_content(body: Any) -> Optional[Reply]:
    if not isinstance(body, dict):
        return None
    content = body.get("content")
    if not isinstance(content, str) or not content:
        return None
    return FlatContentReply(text=content)


# Tried in order; the first decoder to recognise the body wins.
REPLY_SHAPES: Tuple[Callable[[Any], Optional[Reply]], ...] = (
    _decode_chat_completion,
    _decode_flat_content,
)


def decode_reply(body: Any) -> Reply:
    for decoder in REPLY_SHAPES:
        reply = decoder(body)
        if reply is not None:
            return reply
    logger.warning("Unrecognised LLM response shape: %s", type(body).__name__)
    return UnrecognizedReply(raw=body)
