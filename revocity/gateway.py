# AI gateway client: OpenAI-compatible chat completions with image input

import re
import json
import asyncio
import logging
from functools import lru_cache
from typing import Optional, Dict, Any

import openai as openai_mod
from openai import AsyncOpenAI

from . import config

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*```(?:json|JSON)?\s*|\s*```\s*$")
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

_MIME_PREFIXES = {
    "/9j/": "image/jpeg",
    "iVBOR": "image/png",
    "R0lGOD": "image/gif",
    "UklGR": "image/webp",
}


@lru_cache(maxsize=1)
def get_ai_client() -> AsyncOpenAI:
    return AsyncOpenAI(api_key=config.AI_API_KEY, base_url=config.AI_GATEWAY_URL)


def image_data_uri(image_base64: str) -> str:
    """Return the image as a data URI, sniffing the MIME type from the payload."""
    if image_base64.startswith("data:"):
        return image_base64
    mime = "image/jpeg"
    for prefix, candidate in _MIME_PREFIXES.items():
        if image_base64.startswith(prefix):
            mime = candidate
            break
    return f"data:{mime};base64,{image_base64}"


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip()).strip()


def extract_json(text: Optional[str]) -> Dict[str, Any]:
    """Parse the JSON object in a model reply.

    Markdown fences are stripped first; failing that the outermost ``{...}``
    span is tried. Raises ``ValueError`` when no object can be parsed.
    """
    if not text:
        raise ValueError("Empty AI response")
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = _OBJECT_RE.search(cleaned)
        if not match:
            raise ValueError("No JSON found in AI response")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ValueError(f"Malformed JSON in AI response: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("AI response JSON is not an object")
    return data


async def vision_chat(system_prompt: str, user_text: str, image_base64: str,
                      max_retries: int = 3) -> Optional[str]:
    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": [
            {"type": "text", "text": user_text},
            {"type": "image_url", "image_url": {"url": image_data_uri(image_base64)}},
        ]},
    ]
    client = get_ai_client()
    for attempt in range(max_retries):
        try:
            resp = await client.chat.completions.create(model=config.AI_MODEL, messages=messages)
            content = resp.choices[0].message.content
            return content.strip() if content else None
        except (openai_mod.RateLimitError, openai_mod.APIConnectionError) as e:
            logger.warning("AI gateway retry %d: %s", attempt + 1, e)
            if attempt == max_retries - 1:
                raise
            await asyncio.sleep(2 ** attempt)
        except Exception as e:
            logger.error("AI gateway error: %s", e)
            return None
    return None
