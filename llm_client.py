#!/usr/bin/env python3
"""
Chat Completion Client
======================

Thin async client for an OpenAI-compatible ``/chat/completions`` endpoint.
Every call asks for a JSON object and returns it decoded.

One call, one request: retry and backoff policy belongs to the caller
(see ingredient_extractor.py), which needs different rules for different
operations.

Usage:
    from llm_client import LLMClient

    client = LLMClient()
    data = await client.complete_json(system_prompt, prompt)
"""

import asyncio
import json
import re
from typing import Dict, Any, Optional

import aiohttp

from config import CHAT_API_URL, CHAT_MODEL, LLM_CONFIG, load_chat_api_key
from tools.logging_utils import get_logger

logger = get_logger(__name__)


class LLMError(RuntimeError):
    """A chat completion call failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RateLimitError(LLMError):
    """The endpoint answered HTTP 429."""

    def __init__(self, message: str = "Rate limit exceeded"):
        super().__init__(message, status=429)


class LLMResponseError(LLMError):
    """The endpoint answered 200 but the payload was unusable."""


def is_rate_limit_error(error: BaseException) -> bool:
    """True for HTTP 429 errors or any error whose message mentions a rate limit."""
    if getattr(error, "status", None) == 429:
        return True
    return "rate limit" in str(error).lower()


def strip_markdown_json(response: str) -> str:
    """
    Strip markdown code fences from JSON responses.

    Some models wrap JSON in markdown code blocks (```json ... ```),
    which breaks json.loads(). This function removes those fences.
    """
    cleaned = response.strip()
    if cleaned.startswith('```'):
        lines = cleaned.split('\n')
        if lines[0].startswith('```'):
            lines = lines[1:]
        if lines and lines[-1].strip() == '```':
            lines = lines[:-1]
        cleaned = '\n'.join(lines)
    return cleaned


def extract_json_object(raw_content: str) -> Dict[str, Any]:
    """
    Decode the JSON object in a model response.

    Tries the cleaned content first, then the outermost ``{...}`` span
    (models sometimes add prose around the object).

    Raises:
        LLMResponseError: no JSON object could be decoded
    """
    content = strip_markdown_json(raw_content)
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        match = re.search(r'\{.*\}', content, re.DOTALL)
        if not match:
            raise LLMResponseError(f"No JSON object in response: {content[:200]}")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise LLMResponseError(f"Invalid JSON in response: {e}") from e

    if not isinstance(data, dict):
        raise LLMResponseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


class LLMClient:
    """Async client for JSON chat completions."""

    def __init__(self, api_url: str = None, model: str = None,
                 api_key: str = None, timeout_seconds: float = None):
        self.api_url = (api_url or CHAT_API_URL).rstrip("/")
        self.model = model or CHAT_MODEL
        self.api_key = api_key if api_key is not None else load_chat_api_key()
        self.timeout_seconds = timeout_seconds or LLM_CONFIG["timeout_seconds"]

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def complete_json(self, system_prompt: str, prompt: str,
                            temperature: float = None,
                            max_tokens: int = None) -> Dict[str, Any]:
        """
        Run one chat completion and return the decoded JSON object.

        Raises:
            RateLimitError: HTTP 429
            LLMError: any other non-200 status or transport failure
            LLMResponseError: empty content, API error body or undecodable JSON
        """
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": LLM_CONFIG["temperature"] if temperature is None else temperature,
            "max_tokens": max_tokens or LLM_CONFIG["max_tokens"],
            "response_format": {"type": "json_object"},
            "stream": False,
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.api_url}/chat/completions",
                    json=payload,
                    headers=self._headers(),
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
                ) as response:
                    if response.status == 429:
                        error_body = await response.text()
                        logger.warning(f"⚠️  Rate limit from chat API: {error_body[:200]}")
                        raise RateLimitError(f"Rate limit exceeded: {error_body[:200]}")

                    if response.status != 200:
                        error_body = await response.text()
                        logger.error(f"❌ Chat API error {response.status}: {error_body[:500]}")
                        raise LLMError(f"Chat API error {response.status}: {error_body[:500]}",
                                       status=response.status)

                    data = await response.json()
        except aiohttp.ClientError as e:
            raise LLMError(f"Chat API request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise LLMError(f"Chat API call timed out after {self.timeout_seconds}s") from e

        if "error" in data:
            error_msg = data.get("error", {})
            if isinstance(error_msg, dict):
                error_text = error_msg.get("message", str(error_msg))
            else:
                error_text = str(error_msg)
            logger.error(f"❌ Chat API error body: {error_text}")
            if is_rate_limit_error(LLMError(error_text)):
                raise RateLimitError(error_text)
            raise LLMResponseError(f"Chat API error: {error_text}")

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error(f"❌ Unexpected response structure: {json.dumps(data)[:500]}")
            raise LLMResponseError(f"Unexpected response format, missing {e}") from e

        if content is None or not content.strip():
            raise LLMResponseError("Chat API returned empty content")

        return extract_json_object(content)
