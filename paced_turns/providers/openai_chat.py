"""OpenAI-compatible chat client used for regular and continuation requests.

Works with any service that implements the OpenAI Chat Completions API
(OpenAI, vLLM, Ollama, llama.cpp server, LiteLLM, ...). Responses may
carry the pacing extensions `turns`, `next` and `image_prompt` on the
message and `compliance_violations` at the top level.
"""

import asyncio
import time
from typing import AsyncIterator, Optional

import httpx

from paced_turns.config import ClientConfig
from paced_turns.errors import TransportError
from paced_turns.history import ChatHistory
from paced_turns.interfaces.chat import ChatResponse, ContinuationTransport
from paced_turns.logging_config import get_logger

logger = get_logger(__name__)

RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


class OpenAIChatClient(ContinuationTransport):
    """Client for OpenAI-compatible chat completion APIs.

    Continuation requests resend the conversation history without a new
    user message, non-streaming, with the token limit capped at
    max_follow_up_tokens.

    Attributes:
        endpoint: The full URL to the chat completions endpoint.
        model: The model identifier to use.
        api_key: Optional API key for authentication.
        system_prompt: Optional system prompt prepended to every request.
        timeout: Request timeout in seconds.
        max_tokens: Token limit for regular requests (optional).
        max_follow_up_tokens: Token cap for continuation requests.
        history: History the continuation request is built from.
        max_retries: Retries for rate limits, server errors and timeouts.
    """

    def __init__(
        self,
        endpoint: str,
        model: str,
        api_key: str | None = None,
        system_prompt: str | None = None,
        timeout: float = 30.0,
        max_tokens: int | None = None,
        max_follow_up_tokens: int = 150,
        history: ChatHistory | None = None,
        max_retries: int = 2,
    ):
        self.endpoint = endpoint
        self.model = model
        self.api_key = api_key
        self.system_prompt = system_prompt
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.max_follow_up_tokens = max_follow_up_tokens
        self.history = history if history is not None else ChatHistory()
        self.max_retries = max_retries

    @classmethod
    def from_config(cls, config: ClientConfig, history: ChatHistory | None = None) -> "OpenAIChatClient":
        if history is None:
            history = ChatHistory(max_size=config.history_size)
        return cls(
            endpoint=config.endpoint,
            model=config.model,
            api_key=config.api_key,
            system_prompt=config.system_prompt,
            timeout=config.timeout,
            max_tokens=config.max_tokens,
            max_follow_up_tokens=config.max_follow_up_tokens,
            history=history,
        )

    def _build_headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _build_messages(self, messages: list[dict]) -> list[dict]:
        full_messages = []
        if self.system_prompt:
            full_messages.append({"role": "system", "content": self.system_prompt})
        full_messages.extend(messages)
        return full_messages

    def _build_request_body(
        self,
        messages: list[dict],
        stream: bool = False,
        max_tokens: int | None = None,
    ) -> dict:
        body = {
            "model": self.model,
            "messages": self._build_messages(messages),
            "stream": stream,
        }
        max_tokens = max_tokens if max_tokens is not None else self.max_tokens
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        return body

    async def _post(self, body: dict) -> dict:
        """POST with exponential backoff on 429/5xx and timeouts.

        Raises:
            httpx.HTTPStatusError: If the API returns an error status.
            httpx.RequestError: If the request fails after all retries.
            TransportError: If the body is not a chat completion.
        """
        headers = self._build_headers()

        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        self.endpoint,
                        headers=headers,
                        json=body,
                        timeout=self.timeout,
                    )

                    if response.status_code != 200:
                        logger.error(
                            f"Chat API error: HTTP {response.status_code} from {self.endpoint}\n"
                            f"Response body: {response.text[:2000]}"
                        )
                        if response.status_code in RETRY_STATUS_CODES and attempt < self.max_retries:
                            backoff = (2 ** attempt) * 0.5
                            logger.warning(
                                f"Chat retry {attempt + 1}/{self.max_retries} after {backoff}s "
                                f"(HTTP {response.status_code})"
                            )
                            await asyncio.sleep(backoff)
                            continue

                    response.raise_for_status()
                    data = response.json()
                    break

            except httpx.TimeoutException as e:
                if attempt < self.max_retries:
                    backoff = (2 ** attempt) * 0.5
                    logger.warning(f"Chat retry {attempt + 1}/{self.max_retries} after {backoff}s (timeout)")
                    await asyncio.sleep(backoff)
                    continue
                logger.error(
                    f"Chat request timeout after {self.timeout}s to {self.endpoint} "
                    f"({self.max_retries + 1} attempts): {e}"
                )
                raise
            except httpx.RequestError as e:
                if attempt < self.max_retries:
                    backoff = (2 ** attempt) * 0.5
                    logger.warning(f"Chat retry {attempt + 1}/{self.max_retries} after {backoff}s (request error: {e})")
                    await asyncio.sleep(backoff)
                    continue
                logger.error(f"Chat request failed to {self.endpoint} ({self.max_retries + 1} attempts): {e}", exc_info=True)
                raise

        if not isinstance(data, dict) or not data.get("choices"):
            raise TransportError(f"Response from {self.endpoint} has no choices")
        return data

    async def complete(self, messages: list[dict], max_tokens: int | None = None) -> ChatResponse:
        """Non-streaming chat completion.

        Args:
            messages: Messages with 'role' and 'content' keys (system prompt excluded).
            max_tokens: Overrides the client's max_tokens for this request.
        """
        body = self._build_request_body(messages, stream=False, max_tokens=max_tokens)

        start_time = time.time()
        data = await self._post(body)
        latency_ms = (time.time() - start_time) * 1000

        response = ChatResponse.from_completion(data)
        if response.has_tool_calls:
            logger.info(f"Chat response ({latency_ms:.0f}ms): {len(response.tool_calls)} tool call(s)")
        elif response.content:
            preview = response.content[:100] + "..." if len(response.content) > 100 else response.content
            logger.info(f'Chat response ({latency_ms:.0f}ms): "{preview}"')
        else:
            logger.warning(f"Chat response ({latency_ms:.0f}ms): EMPTY. finish_reason={response.finish_reason}")
        return response

    async def stream(self, messages: list[dict], max_tokens: int | None = None) -> AsyncIterator[bytes]:
        """Stream the raw server-sent-event bytes of a chat completion.

        The bytes are meant for StreamingChunkAccumulator, which handles
        line splitting and decoding.
        """
        body = self._build_request_body(messages, stream=True, max_tokens=max_tokens)

        try:
            async with httpx.AsyncClient() as client:
                async with client.stream(
                    "POST",
                    self.endpoint,
                    headers=self._build_headers(),
                    json=body,
                    timeout=self.timeout,
                ) as response:
                    if response.status_code != 200:
                        error_body = await response.aread()
                        logger.error(
                            f"Chat streaming API error: HTTP {response.status_code} from {self.endpoint}\n"
                            f"Response body: {error_body.decode('utf-8', errors='replace')[:2000]}"
                        )
                    response.raise_for_status()

                    async for data in response.aiter_bytes():
                        yield data
        except httpx.TimeoutException as e:
            logger.error(f"Chat streaming request timeout after {self.timeout}s to {self.endpoint}: {e}")
            raise
        except httpx.RequestError as e:
            logger.error(f"Chat streaming request failed to {self.endpoint}: {e}", exc_info=True)
            raise

    async def request_continuation(self) -> ChatResponse:
        """Continue the conversation from history, without a new user message."""
        max_tokens = min(self.max_tokens or self.max_follow_up_tokens, self.max_follow_up_tokens)
        messages = self.history.as_request_messages()
        logger.info(f"Continuation request ({len(messages)} history msgs, max_tokens={max_tokens})")
        return await self.complete(messages, max_tokens=max_tokens)

    def __repr__(self) -> str:
        return f"OpenAIChatClient(endpoint={self.endpoint!r}, model={self.model!r})"
