"""Language-model backends that turn a message history into a reply."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
import httpx
import openai
from openai import AsyncOpenAI

log = logging.getLogger(__name__)

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

OPENAI_MODEL = "gpt-4o"
GEMINI_MODEL = "gemini-2.0-flash"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
GEMINI_TEMPERATURE = 0.7
GEMINI_MAX_OUTPUT_TOKENS = 100

# Gemini has no system role; system turns are sent as user content.
GEMINI_ROLES = {
    ROLE_SYSTEM: "user",
    ROLE_USER: "user",
    ROLE_ASSISTANT: "model",
}


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str

    def as_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class LLMError(Exception):
    """Base class for backend failures."""


class LLMRequestError(LLMError):
    """The request was rejected before reaching the network."""


class LLMTransportError(LLMError):
    """The backend could not be reached."""


class LLMStatusError(LLMError):
    def __init__(self, status: Optional[int], body: str = "") -> None:
        super().__init__(f"API error ({status}): {body}")
        self.status = status
        self.body = body


class LLMEmptyResponseError(LLMError):
    """The backend answered without any usable text."""


class LLMBackend:
    """Generates a reply for an ordered message history."""

    name = "llm"

    async def generate(self, history: Sequence[ChatMessage]) -> str:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class OpenAIChatBackend(LLMBackend):
    name = "openai"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = OPENAI_MODEL,
        max_tokens: int = 100,
        presence_penalty: float = 0.3,
        frequency_penalty: float = 0.3,
        client: Optional[AsyncOpenAI] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        # retries belong to the caller, which trims the history between attempts
        self.client = client or AsyncOpenAI(
            api_key=api_key, max_retries=0, http_client=http_client
        )
        self.model = model
        self.max_tokens = max_tokens
        self.presence_penalty = presence_penalty
        self.frequency_penalty = frequency_penalty

    async def generate(self, history: Sequence[ChatMessage]) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[message.as_dict() for message in history],
                max_tokens=self.max_tokens,
                presence_penalty=self.presence_penalty,
                frequency_penalty=self.frequency_penalty,
            )
        except openai.APIStatusError as exc:
            raise LLMStatusError(exc.status_code, str(exc)) from exc
        except openai.APIError as exc:
            raise LLMTransportError(f"OpenAI request failed: {exc}") from exc
        if not response.choices:
            raise LLMEmptyResponseError("No choices in OpenAI response")
        content = response.choices[0].message.content
        if not content:
            raise LLMEmptyResponseError("Empty message in OpenAI response")
        return content

    async def close(self) -> None:
        await self.client.close()


class GeminiBackend(LLMBackend):
    """Single-call ``generateContent`` client for the Gemini API."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = GEMINI_MODEL,
        temperature: float = GEMINI_TEMPERATURE,
        max_output_tokens: int = GEMINI_MAX_OUTPUT_TOKENS,
        timeout: float = 60.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.url = GEMINI_URL.format(model=model)
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    def build_request(self, history: Sequence[ChatMessage]) -> Dict[str, Any]:
        contents: List[Dict[str, Any]] = []
        for message in history:
            contents.append(
                {
                    "role": GEMINI_ROLES.get(message.role, "model"),
                    "parts": [{"text": message.content}],
                }
            )
        return {
            "contents": contents,
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }

    @staticmethod
    def parse_response(data: Any) -> str:
        candidates = data.get("candidates") if isinstance(data, dict) else None
        if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
            content = candidates[0].get("content")
            parts = content.get("parts") if isinstance(content, dict) else None
            if isinstance(parts, list) and parts and isinstance(parts[0], dict):
                text = parts[0].get("text")
                if isinstance(text, str) and text:
                    return text
        raise LLMEmptyResponseError("No response from Gemini API")

    async def generate(self, history: Sequence[ChatMessage]) -> str:
        if not history:
            raise LLMRequestError("Cannot send empty message history to Gemini API")
        payload = self.build_request(history)
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        session = self._get_session()
        try:
            async with session.post(self.url, json=payload, headers=headers) as resp:
                if resp.status >= 300:
                    body = await resp.text()
                    raise LLMStatusError(resp.status, body)
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise LLMTransportError(f"Gemini request failed: {exc}") from exc
        return self.parse_response(data)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
