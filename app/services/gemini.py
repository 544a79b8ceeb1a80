"""Integration helpers for the Gemini generateContent API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..models import ContentType
from ..utils import split_titles

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = (
    "Suggest {count} really well known {label} titles based on this description: "
    "{description}. Return only a comma-separated list of titles."
)

FALLBACK_TITLES: dict[ContentType, tuple[str, ...]] = {
    ContentType.MOVIE: ("Inception", "The Matrix"),
    ContentType.SERIES: ("Breaking Bad", "Dark"),
    ContentType.ANIME: ("Cowboy Bebop", "Fullmetal Alchemist: Brotherhood"),
}


class GeminiClient:
    """Turns a free-text description into a ranked list of candidate titles."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def recommend_titles(
        self, description: str, content_type: ContentType
    ) -> list[str]:
        """Return candidate titles, or a small fixed list when Gemini is unusable."""

        if not self._settings.gemini_api_key:
            logger.info("Gemini API key missing, using fallback titles")
            return list(FALLBACK_TITLES[content_type])

        prompt = PROMPT_TEMPLATE.format(
            count=self._settings.recommendation_count,
            label=content_type.value.lower(),
            description=description,
        )
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        try:
            response = await self._client.post(
                f"/models/{self._settings.gemini_model}:generateContent",
                params={"key": self._settings.gemini_api_key},
                json=payload,
            )
        except httpx.HTTPError as exc:
            logger.warning("Gemini request failed: %s", exc)
            return list(FALLBACK_TITLES[content_type])
        if response.status_code >= 400:
            logger.warning(
                "Gemini request returned %s: %s", response.status_code, response.text
            )
            return list(FALLBACK_TITLES[content_type])

        try:
            text = self._extract_text(response.json())
        except ValueError:
            logger.warning("Gemini returned an invalid payload")
            return list(FALLBACK_TITLES[content_type])
        if text is None:
            return []
        return split_titles(text)[: self._settings.recommendation_count]

    @staticmethod
    def _extract_text(data: Any) -> str | None:
        if not isinstance(data, dict):
            raise ValueError("Unexpected Gemini response shape")
        candidates = data.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            return None
        content = candidates[0].get("content") or {}
        parts = content.get("parts") or []
        if not parts or not isinstance(parts[0], dict):
            return None
        text = parts[0].get("text")
        if not isinstance(text, str):
            return None
        return text
