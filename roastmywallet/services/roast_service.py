import logging
from typing import Optional

from groq import GroqError

from ..models import TIER_PREMIUM
from . import llm_service

logger = logging.getLogger("roastmywallet.services.roast")

TONE_SAVAGE = "savage"
TONE_PLAYFUL = "playful"
TONE_SUPPORTIVE = "supportive"
DEFAULT_TONE = TONE_SAVAGE

TONE_PROMPTS = {
    TONE_SAVAGE: (
        "You are a brutally honest, savage financial roast comedian. "
        "Given one purchase, write a single short, cutting roast (max 2 sentences) "
        "about the spending decision. No slurs, nothing about appearance. "
        "Respond with the roast text only."
    ),
    TONE_PLAYFUL: (
        "You are a playful, teasing friend who jokes about money. "
        "Given one purchase, write a single light-hearted joke (max 2 sentences) "
        "poking fun at it. Respond with the joke text only."
    ),
    TONE_SUPPORTIVE: (
        "You are a warm, supportive money coach with a sense of humor. "
        "Given one purchase, write one gentle, encouraging quip (max 2 sentences) "
        "with a hint of a saving tip. Respond with the text only."
    ),
}

FALLBACK_ROASTS = {
    TONE_SAVAGE: "I have no words. Your wallet does, though, and it's screaming.",
    TONE_PLAYFUL: "Well, that's one way to keep the economy going!",
    TONE_SUPPORTIVE: "Every purchase is a lesson. Let's make the next one count!",
}


def normalize_tone(tone: Optional[str]) -> str:
    if tone and tone.strip().lower() in TONE_PROMPTS:
        return tone.strip().lower()
    return DEFAULT_TONE


def resolve_tone(user, requested: Optional[str]) -> str:
    """Only premium users may pick a tone; everyone else gets the default."""
    if user is None or user.tier != TIER_PREMIUM:
        return DEFAULT_TONE
    return normalize_tone(requested)


def fallback_roast(tone: Optional[str] = None) -> str:
    return FALLBACK_ROASTS[normalize_tone(tone)]


def tone_prompt(tone: Optional[str]) -> str:
    return TONE_PROMPTS[normalize_tone(tone)]


def generate_roast(description: str, amount_cents: int, category: str, tone: Optional[str] = None) -> str:
    """Roast one purchase. Always returns non-empty text."""
    tone = normalize_tone(tone)
    prompt = (
        f"Purchase: {description}\n"
        f"Amount: ${amount_cents / 100:,.2f}\n"
        f"Category: {category}"
    )
    try:
        roast = llm_service.complete_text(TONE_PROMPTS[tone], prompt, max_tokens=150)
    except GroqError as e:
        logger.warning(f"Roast generation failed for '{description}': {e}")
        return FALLBACK_ROASTS[tone]
    roast = (roast or "").strip().strip('"').strip()
    return roast or FALLBACK_ROASTS[tone]
