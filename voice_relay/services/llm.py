"""
Reply generation through the Qwen3 service's OpenAI-compatible API.

Keeps a short conversation history per voice session so follow-up
questions have context.
"""

import logging

import httpx

from ..config import settings
from ..protocol.errors import GenerationFailedError

logger = logging.getLogger(__name__)


class Qwen3ReplyGenerator:
    """GenerateReplyFn backed by POST /v1/chat/completions."""

    def __init__(
        self,
        base_url: str | None = None,
        system_prompt: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        max_history_turns: int | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.system_prompt = system_prompt if system_prompt is not None else settings.system_prompt
        self.model = model or settings.llm_model
        self.max_history_turns = max_history_turns or settings.max_history_turns

        headers = {}
        key = api_key or settings.llm_api_key
        if key:
            headers["Authorization"] = f"Bearer {key}"

        self._client = client or httpx.AsyncClient(
            base_url=(base_url or settings.llm_url).rstrip("/"),
            headers=headers,
            timeout=settings.llm_timeout_seconds,
        )
        self._history: dict[str, list[dict[str, str]]] = {}

    async def __call__(self, text: str, session_id: str) -> str:
        history = self._history.get(session_id, [])
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(history)
        messages.append({"role": "user", "content": text})

        try:
            response = await self._client.post(
                "/v1/chat/completions",
                json={
                    "model": self.model,
                    "messages": messages,
                    "max_tokens": settings.llm_max_tokens,
                    "temperature": settings.llm_temperature,
                    "stream": False,
                },
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise GenerationFailedError(
                f"LLM returned {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise GenerationFailedError(f"LLM unavailable: {e}") from e
        except ValueError as e:
            raise GenerationFailedError("LLM returned invalid JSON") from e

        try:
            reply = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationFailedError("LLM response has no choices") from e

        reply = (reply or "").strip()
        if not reply:
            raise GenerationFailedError("LLM returned an empty reply")

        history = history + [
            {"role": "user", "content": text},
            {"role": "assistant", "content": reply},
        ]
        # User + assistant pairs
        self._history[session_id] = history[-self.max_history_turns * 2:]

        usage = data.get("usage") or {}
        logger.debug(
            f"Reply for {session_id}: {usage.get('completion_tokens', '?')} tokens, "
            f"history={len(self._history[session_id])} messages"
        )
        return reply

    def history(self, session_id: str) -> list[dict[str, str]]:
        """Conversation history kept for a session."""
        return list(self._history.get(session_id, []))

    def forget(self, session_id: str) -> None:
        """Drop a session's history."""
        self._history.pop(session_id, None)

    async def aclose(self) -> None:
        await self._client.aclose()
