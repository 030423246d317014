"""
OpenAI-compatible chat completions client using direct REST API calls.
Handles chat and image-extraction calls with retries on transient failures.
"""
import base64
import json
import re
from typing import Any, Dict, List, Optional

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import Settings, get_settings
from core.exceptions import ConfigurationError, LLMError
from core.logger import setup_logger

logger = setup_logger(__name__)


class TransientLLMError(Exception):
    """Provider answered with a status worth retrying (429 or 5xx)."""


RETRYABLE_ERRORS = (requests.exceptions.Timeout, requests.exceptions.ConnectionError, TransientLLMError)

JSON_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


def parse_json_content(content: str) -> Dict[str, Any]:
    """
    Parse a JSON object out of a model answer.

    Markdown code fences are stripped; when prose surrounds the object, the
    outermost ``{...}`` span is used.

    Raises:
        LLMError: If no JSON object can be parsed
    """
    text = (content or "").strip()
    if text.startswith("```"):
        lines = text.split("\n")[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines).strip()

    match = JSON_OBJECT_PATTERN.search(text)
    try:
        result = json.loads(match.group(0) if match else text)
    except ValueError:
        logger.error(f"Could not parse JSON from model answer: {text[:200]}")
        raise LLMError("Failed to parse model response as JSON", details={"content": text[:500]})

    if not isinstance(result, dict):
        raise LLMError("Model response is not a JSON object", details={"content": text[:500]})
    return result


class LLMClient:
    """Wrapper for the chat completions REST API with retry logic."""

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None):
        settings = settings or get_settings()
        if not settings.openai_api_key:
            raise ConfigurationError(
                "OPENAI_API_KEY environment variable not set",
                details={"required_key": "OPENAI_API_KEY"}
            )

        self.api_url = settings.openai_api_url
        self.api_key = settings.openai_api_key
        self.model = settings.openai_model
        self.timeout = settings.openai_timeout
        self.session = session or requests.Session()

        logger.info(f"Initialized LLM client with model: {self.model}")

    def chat(
        self,
        system_prompt: str,
        user_message: str,
        temperature: float = 0.7,
        max_tokens: int = 500,
    ) -> str:
        """
        Run one chat completion.

        Args:
            system_prompt: System instruction
            user_message: User prompt with the financial context
            temperature: Model temperature (0.0-1.0)
            max_tokens: Completion length limit

        Returns:
            Assistant message text

        Raises:
            LLMError: If the call fails after retries or the response has no content
        """
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ]
        return self._complete(messages, temperature=temperature, max_tokens=max_tokens)

    def extract_json(
        self,
        prompt: str,
        image: bytes,
        mime_type: str,
        max_tokens: int = 1000,
    ) -> Dict[str, Any]:
        """
        Ask the vision model to read an image and answer with one JSON object.

        Args:
            prompt: Extraction instructions describing the expected JSON
            image: Raw image bytes
            mime_type: Image content type, e.g. ``image/jpeg``
            max_tokens: Completion length limit

        Returns:
            Parsed JSON object

        Raises:
            LLMError: If the call fails or the answer is not a JSON object
        """
        data_url = f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": data_url}},
            ],
        }]
        return parse_json_content(self._complete(messages, temperature=0.0, max_tokens=max_tokens))

    def _complete(self, messages: List[Dict[str, Any]], temperature: float, max_tokens: int) -> str:
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        try:
            completion = self._post(payload)
        except RETRYABLE_ERRORS as e:
            logger.error(f"LLM provider unavailable: {e}")
            raise LLMError("LLM provider unavailable", details={"model": self.model, "error": str(e)})
        except requests.exceptions.HTTPError as e:
            status_code = getattr(e.response, "status_code", None)
            logger.error(f"LLM provider HTTP error: {status_code}")
            raise LLMError(
                f"LLM provider returned HTTP {status_code}",
                details={"status_code": status_code, "response_text": getattr(e.response, "text", None)}
            )
        except ValueError as e:
            logger.error(f"LLM provider returned invalid JSON: {e}")
            raise LLMError("LLM provider returned invalid JSON", details={"error": str(e)})
        except requests.exceptions.RequestException as e:
            logger.error(f"LLM request failed: {e}")
            raise LLMError(f"Failed to reach LLM provider: {e}", details={"error": str(e)})

        try:
            content = completion["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            logger.error(f"Unexpected completion keys: {list(completion) if isinstance(completion, dict) else type(completion)}")
            raise LLMError("Unexpected response structure: no message content")

        if "usage" in completion:
            usage = completion["usage"]
            logger.debug(
                f"Token usage - Input: {usage.get('prompt_tokens', 'N/A')}, "
                f"Output: {usage.get('completion_tokens', 'N/A')}"
            )

        return (content or "").strip()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        reraise=True,
    )
    def _post(self, payload: dict) -> dict:
        response = self.session.post(
            self.api_url,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            data=json.dumps(payload),
            timeout=self.timeout,
        )
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientLLMError(f"HTTP {response.status_code}")
        response.raise_for_status()
        return response.json()


# Singleton client instance
_client: Optional[LLMClient] = None


def get_client() -> LLMClient:
    """
    Get or create the LLM client singleton.

    Raises:
        ConfigurationError: If OPENAI_API_KEY is not set
    """
    global _client
    if _client is None:
        _client = LLMClient()
    return _client


def reset_client() -> None:
    """Drop the cached client (useful for testing)."""
    global _client
    _client = None
