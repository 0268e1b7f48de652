import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from groq import Groq, GroqError

from ..config import settings

logger = logging.getLogger("roastmywallet.services.llm")

_client: Optional[Groq] = None


def _get_client() -> Groq:
    global _client
    if _client is None:
        _client = Groq(api_key=settings.groq_api_key or None)
    return _client


@dataclass
class Parsed:
    """A model response that decoded to JSON."""

    value: Any
    raw: str = ""

    ok = True

    def value_or(self, fallback):
        return self.value


@dataclass
class ParseFailed:
    """A model response that could not be used. `raw` keeps whatever came back.

    `upstream` is set when the model call itself failed rather than its reply.
    """

    raw: str = ""
    error: str = ""
    upstream: bool = False

    ok = False

    def value_or(self, fallback):
        return fallback


def clean_json_response(raw_response: str) -> str:
    """Strip markdown code fences and surrounding chatter from a JSON reply"""
    if not raw_response:
        return ""

    cleaned = re.sub(r"```(?:json)?\s*", "", raw_response)
    cleaned = cleaned.replace("```", "").strip()

    if cleaned[:1] in ("{", "["):
        return cleaned

    json_match = re.search(r"(\{.*\}|\[.*\])", cleaned, re.DOTALL)
    if json_match:
        return json_match.group(0)
    return cleaned


def parse_json_response(raw: Optional[str]):
    if not raw:
        return ParseFailed(raw="", error="empty response")
    try:
        return Parsed(value=json.loads(clean_json_response(raw)), raw=raw)
    except ValueError as e:
        logger.warning(f"Failed to parse LLM response: {e}; raw: {raw[:500]}")
        return ParseFailed(raw=raw, error=str(e))


def build_user_content(text: str, image_url: Optional[str] = None):
    if not image_url:
        return text
    return [
        {"type": "text", "text": text},
        {"type": "image_url", "image_url": {"url": image_url}},
    ]


def chat(system_prompt: str, user_content, model: Optional[str] = None,
         json_object: bool = False, temperature: Optional[float] = None,
         max_tokens: Optional[int] = None) -> str:
    """Single chat completion. Raises GroqError when the call fails."""
    params = dict(
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ],
        model=model or settings.llm_model,
        temperature=settings.temperature if temperature is None else temperature,
        max_tokens=max_tokens or settings.max_tokens,
    )
    if json_object:
        params["response_format"] = {"type": "json_object"}
    chat_completion = _get_client().chat.completions.create(**params)
    response = chat_completion.choices[0].message.content
    return response.strip() if response else ""


def complete_text(system_prompt: str, user_content, **kwargs) -> str:
    return chat(system_prompt, user_content, **kwargs)


def request_json(system_prompt: str, user_content, image_url: Optional[str] = None,
                 json_object: bool = True, **kwargs):
    """Ask for JSON and return Parsed or ParseFailed. Never raises on upstream failure."""
    model = kwargs.pop("model", None)
    if image_url and not model:
        model = settings.vision_model
    try:
        raw = chat(
            system_prompt,
            build_user_content(user_content, image_url),
            model=model,
            json_object=json_object,
            **kwargs,
        )
    except GroqError as e:
        logger.error(f"LLM call failed: {e}")
        return ParseFailed(raw="", error=str(e), upstream=True)
    return parse_json_response(raw)
