from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from .errors import UpstreamRelayFailure, ValidationError
from .llm import LlmClient, decode_reply
from .settings import API_KEY_KEY, LLM_URL_KEY, MODEL_NAME_KEY, SettingsStore
from .storage import Message, MessageStore

UNCONFIGURED_MESSAGE = (
    "Error: Local Llama URL not configured. Use `/config <url>` to set it. "
    "Example: `/config http://localhost:8080/v1/chat/completions`"
)

logger = logging.getLogger("llamaterm.relay")

ClientFactory = Callable[..., LlmClient]


class RelayEngine:
    """
    Turns one user message into a persisted exchange with the configured LLM.

    Every upstream failure is written to the history as assistant content; only
    validation and storage errors are raised to the caller. Exchanges are
    serialised so concurrent callers never interleave their turns.
    """

    def __init__(
        self,
        messages: MessageStore,
        settings: SettingsStore,
        *,
        timeout: Optional[float] = None,
        client_factory: ClientFactory = LlmClient,
    ) -> None:
        self.messages = messages
        self.settings = settings
        self.timeout = timeout
        self.client_factory = client_factory
        self._lock = threading.Lock()

    def relay(self, user_text: str) -> Message:
        if not isinstance(user_text, str) or not user_text.strip():
            raise ValidationError("Message must not be empty.", field="message")

        with self._lock:
            # The user's turn is committed before anything can fail upstream.
            self.messages.append("user", user_text)

            url_setting = self.settings.get(LLM_URL_KEY)
            if url_setting is None:
                logger.info("No LLM URL configured; replying with setup instructions.")
                content = UNCONFIGURED_MESSAGE
            else:
                content = self._ask(url_setting.value)

            reply = self.messages.append("assistant", content)
        return reply

    def _ask(self, url: str) -> str:
        context = [message.to_context() for message in self.messages.list_all()]
        client = self.client_factory(
            url,
            timeout=self.timeout,
            api_key=self._optional_setting(API_KEY_KEY),
            model=self._optional_setting(MODEL_NAME_KEY),
        )
        logger.info("Relaying %d messages to %s", len(context), url)
        try:
            body = client.chat(context)
        except UpstreamRelayFailure as exc:
            logger.warning("LLM request to %s failed: %s", url, exc)
            return f"Error connecting to LLM at {url}: {exc}"
        return decode_reply(body).text

    def _optional_setting(self, key: str) -> str:
        setting = self.settings.get(key)
        return setting.value if setting else ""
