"""Gemini API client used by every agent stage.

This module provides a thin client for the Gemini ``generateContent`` REST
endpoint. A call takes a system instruction, a list of content parts (text or
inline images) and a sampling temperature, and returns the generated text.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional, Protocol, Sequence

import httpx

from .config import DEFAULT_MODEL, Config
from .models import ContentPart, ImagePart, TextPart

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"

DEFAULT_TIMEOUT = 300

# Patterns for sensitive data that should be masked in error messages
SENSITIVE_PATTERNS = [
    (re.compile(r'(Bearer\s+)[A-Za-z0-9_.-]+', re.IGNORECASE), r'\1[REDACTED]'),
    (re.compile(r'(api[_-]?key["\s:=]+)[A-Za-z0-9_-]+', re.IGNORECASE), r'\1[REDACTED]'),
    (re.compile(r'(x-goog-api-key["\s:=]+)[A-Za-z0-9_-]+', re.IGNORECASE), r'\1[REDACTED]'),
    (re.compile(r'(key=)[A-Za-z0-9_-]+'), r'\1[REDACTED]'),
    (re.compile(r'AIza[0-9A-Za-z_-]{10,}'), '[REDACTED]'),  # Google API key format
]


def sanitize_error(message: str) -> str:
    """Mask API keys and bearer tokens in a message shown to users or logs."""
    result = message
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


class GeminiClientError(Exception):
    """Exception raised for Gemini API errors."""

    pass


class GeminiRateLimitError(GeminiClientError):
    """Exception raised when the Gemini API rate limit is exceeded."""

    pass


class ModelClient(Protocol):
    """Request/response contract shared by the real and mock clients."""

    def generate(
        self,
        system_instruction: str,
        parts: Sequence[ContentPart],
        temperature: float,
        model: Optional[str] = None,
    ) -> str:
        ...


def to_wire_parts(parts: Sequence[ContentPart]) -> list[dict[str, Any]]:
    """Convert content parts to Gemini request parts."""
    wire: list[dict[str, Any]] = []
    for part in parts:
        if isinstance(part, TextPart):
            wire.append({"text": part.value})
        elif isinstance(part, ImagePart):
            wire.append({"inlineData": {"mimeType": part.mime_type, "data": part.data}})
        else:
            raise TypeError(f"Unsupported content part: {type(part).__name__}")
    return wire


def extract_text(data: dict) -> str:
    """Concatenate the text parts of the first candidate, or return ''."""
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    content = candidates[0].get("content") or {}
    texts = [part.get("text", "") for part in content.get("parts") or [] if isinstance(part, dict)]
    return "".join(texts)


class GeminiClient:
    """Client wrapper for the Gemini API with configurable defaults."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        timeout: int = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.Client] = None,
    ):
        """Initialize the Gemini client.

        Args:
            api_key: Gemini API key.
            model: Default model for calls that do not name one.
            timeout: Request timeout in seconds.
            http_client: Optional pre-built httpx client (used by tests).
        """
        if not api_key:
            raise GeminiClientError(
                "GEMINI_API_KEY environment variable is not set. "
                "Set it in your .env file or run in mock mode."
            )
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.client = http_client or httpx.Client(timeout=timeout)

    def generate(
        self,
        system_instruction: str,
        parts: Sequence[ContentPart],
        temperature: float,
        model: Optional[str] = None,
    ) -> str:
        """Run a single generateContent call.

        Args:
            system_instruction: Fixed instruction text for the stage.
            parts: Prompt content (text and optional inline images).
            temperature: Sampling temperature.
            model: Override the default model.

        Returns:
            Generated text, or an empty string if the model returned none.

        Raises:
            GeminiClientError: If the request fails or the response is malformed.
            GeminiRateLimitError: If the API rate limit is exceeded.
        """
        model_name = model or self.model
        url = f"{GEMINI_API_BASE}/{model_name}:generateContent"
        payload = {
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "contents": [{"role": "user", "parts": to_wire_parts(parts)}],
            "generationConfig": {"temperature": temperature},
        }

        logger.debug(f"Querying Gemini API with model={model_name}, temp={temperature}")

        try:
            response = self.client.post(
                url,
                json=payload,
                headers={
                    "x-goog-api-key": self.api_key,
                    "Content-Type": "application/json",
                },
            )
        except httpx.TimeoutException as exc:
            raise GeminiClientError(
                f"Gemini API request timed out after {self.timeout} seconds"
            ) from exc
        except httpx.ConnectError as exc:
            raise GeminiClientError(
                sanitize_error(f"Failed to connect to Gemini API: {exc}")
            ) from exc
        except httpx.HTTPError as exc:
            raise GeminiClientError(
                sanitize_error(f"Gemini API request failed: {exc}")
            ) from exc

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "unknown")
            raise GeminiRateLimitError(
                f"Gemini API rate limit exceeded (HTTP 429). Retry after: {retry_after}"
            )

        if not response.is_success:
            try:
                error_detail = response.json().get("error", {}).get("message", response.text)
            except ValueError:
                error_detail = response.text[:500]
            raise GeminiClientError(
                sanitize_error(f"Gemini API error {response.status_code}: {error_detail}")
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise GeminiClientError(f"Unexpected Gemini API response format: {exc}") from exc

        usage = data.get("usageMetadata", {})
        if usage:
            logger.debug(
                f"Gemini API usage: {usage.get('promptTokenCount', 0)} input, "
                f"{usage.get('candidatesTokenCount', 0)} output tokens"
            )

        return extract_text(data)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self.client.close()


MOCK_STAGE_RESPONSES = {
    "You are the Scout": """# MISSION CONTROL (mock)

## RELEVANT FILES
* `package.json`
* `App.tsx`

## CRITICAL CONTEXT
Mock scout output. Flat structure confirmed, no CSS files found.
""",
    "You are the Architect": """# MISSION CONTROL (mock)

## HAZARD REGISTRY (DO NOT TOUCH)
* `export default App`

## IMPLEMENTATION PLAN
1. Add state for the new feature.
2. Render the feature with Tailwind classes.
""",
    "You are the Taskmaster": """=== PROMPT 1: Setup State ===
Act as a surgical code editor. Step 1 of 2: add the state hooks.

=== PROMPT 2: Render Feature ===
Act as a surgical code editor. Step 2 of 2: render the feature.
""",
    "You are the Repair Technician": """=== PROMPT 1: Setup State ===
Act as a surgical code editor. Step 1 of 3: add the state hooks.

=== PROMPT 2: Render Feature ===
Act as a surgical code editor. Step 2 of 3: render the feature.

=== PROMPT 3: Fix Reported Issue ===
Act as a surgical code editor. Step 3 of 3: address the reported error.
""",
}


class MockGeminiClient:
    """Mock Gemini client for testing and mock mode without API calls."""

    def __init__(
        self,
        responses: Optional[dict[str, str]] = None,
        fail_on: Optional[set[str]] = None,
        default_response: str = "Mock Gemini response",
    ):
        """Initialize the mock client.

        Args:
            responses: Maps system instruction substrings to canned responses.
            fail_on: System instruction substrings whose calls raise GeminiClientError.
            default_response: Returned when no canned response matches.
        """
        self.responses = responses if responses is not None else dict(MOCK_STAGE_RESPONSES)
        self.fail_on = fail_on or set()
        self.default_response = default_response
        self.calls: list[dict[str, Any]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def generate(
        self,
        system_instruction: str,
        parts: Sequence[ContentPart],
        temperature: float,
        model: Optional[str] = None,
    ) -> str:
        """Record the call and return a canned response."""
        self.calls.append({
            "system_instruction": system_instruction,
            "parts": list(parts),
            "temperature": temperature,
            "model": model,
        })

        for key in self.fail_on:
            if key in system_instruction:
                raise GeminiClientError(f"Mock failure for '{key}'")

        for key, response in self.responses.items():
            if key in system_instruction:
                return response

        return self.default_response


def create_model_client(config: Config) -> ModelClient:
    """Create the model client for the given configuration."""
    if config.mock_mode:
        logger.info("Using mock Gemini client (no API calls)")
        return MockGeminiClient()
    return GeminiClient(api_key=config.gemini_api_key or "", timeout=config.timeout)
