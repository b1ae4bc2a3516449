"""
Gemini Reasoning Gateway for talk mode

Single-shot multimodal call using the standard Gemini API (generate_content).
Fail-soft: any upstream problem turns into a fixed, honest fallback sentence.
The voice interface must never hang or crash on an outage.
"""

import asyncio
import logging
import os
import time
from typing import Any, Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai.types import Content, GenerateContentConfig, Part

from context_assembler import ReasoningRequest

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I am not able to understand the scene clearly."

DEFAULT_MODEL = "gemini-2.5-flash"


def extract_reply_text(response: Any) -> Optional[str]:
    """Return the first candidate's first text part, or None if the shape is wrong."""
    try:
        text = response.candidates[0].content.parts[0].text
    except (AttributeError, IndexError, KeyError, TypeError):
        return None
    if not isinstance(text, str) or not text.strip():
        return None
    return text.strip()


def to_contents(request: ReasoningRequest) -> list[Content]:
    """Convert assembler parts to SDK parts, keeping their order."""
    parts = []
    for part in request.parts:
        if part.is_image:
            parts.append(Part.from_bytes(data=part.data, mime_type=part.mime_type))
        else:
            parts.append(Part.from_text(text=part.text))
    return [Content(role="user", parts=parts)]


class GeminiReasoningGateway:
    """
    Sends one assembled request to Gemini and extracts the reply text.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        timeout_seconds: float = 20.0,
        temperature: float = 0.2,
        max_output_tokens: int = 256,
        client: Optional[genai.Client] = None
    ):
        """
        Args:
            api_key: Gemini API key (falls back to GEMINI_API_KEY)
            model: Gemini model name
            timeout_seconds: Whole-call deadline; a timeout counts as a failure
            client: Pre-built client (tests inject a fake here)
        """
        if client is None:
            api_key = api_key or os.environ.get("GEMINI_API_KEY")
            if not api_key:
                raise ValueError("GEMINI_API_KEY not found in environment")
            client = genai.Client(api_key=api_key)

        self.client = client
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    async def send(self, request: ReasoningRequest) -> str:
        """Call Gemini once. Always returns a reply string, never raises."""
        start_time = time.perf_counter()

        config = GenerateContentConfig(
            system_instruction=request.system_instruction,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )

        try:
            response = await asyncio.wait_for(
                self.client.aio.models.generate_content(
                    model=self.model,
                    contents=to_contents(request),
                    config=config
                ),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.error(f"❌ Gemini timed out after {self.timeout_seconds:.0f}s")
            return FALLBACK_REPLY
        except genai_errors.APIError as e:
            logger.error(f"❌ Gemini API error {e.code}: {e.message}")
            return FALLBACK_REPLY
        except Exception as e:
            logger.error(f"❌ Gemini request failed: {e}", exc_info=True)
            return FALLBACK_REPLY

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        reply = extract_reply_text(response)
        if reply is None:
            logger.warning(f"⚠️ Gemini returned no usable text after {elapsed_ms:.0f}ms")
            return FALLBACK_REPLY

        logger.info(
            f"✅ Gemini reply in {elapsed_ms:.0f}ms | Branch: {request.kind.value} | "
            f"Images: {len(request.image_parts())} | Length: {len(reply)}"
        )
        return reply
