"""Tests for the Gemini title suggestion client."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from app.config import Settings
from app.models import ContentType
from app.services.gemini import FALLBACK_TITLES, GeminiClient


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def build_client(handler, **overrides: Any) -> GeminiClient:
    base: dict[str, Any] = {"GEMINI_API_KEY": "gemini-key", "RECOMMENDATION_COUNT": 3}
    base.update(overrides)
    settings = Settings(_env_file=None, **base)  # type: ignore[arg-type]
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="https://generativelanguage.googleapis.com/v1beta",
    )
    return GeminiClient(settings, http_client)


def gemini_answer(text: str) -> dict[str, Any]:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.mark.anyio("asyncio")
async def test_titles_are_parsed_and_capped() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(
            200, json=gemini_answer("Alien, Aliens, alien, Event Horizon, Sunshine")
        )

    titles = await build_client(handler).recommend_titles(
        "scary space movies", ContentType.MOVIE
    )

    assert titles == ["Alien", "Aliens", "Event Horizon"]
    request = captured[0]
    assert request.url.path.endswith("/models/gemini-2.0-flash:generateContent")
    assert request.url.params["key"] == "gemini-key"
    body = json.loads(request.content)
    assert "scary space movies" in body["contents"][0]["parts"][0]["text"]


@pytest.mark.anyio("asyncio")
async def test_missing_key_returns_fallback_titles() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("Gemini should not be called without a key")

    titles = await build_client(handler, GEMINI_API_KEY="").recommend_titles(
        "anything", ContentType.ANIME
    )

    assert titles == list(FALLBACK_TITLES[ContentType.ANIME])


@pytest.mark.anyio("asyncio")
async def test_upstream_error_returns_fallback_titles() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="overloaded")

    titles = await build_client(handler).recommend_titles("drama", ContentType.SERIES)

    assert titles == list(FALLBACK_TITLES[ContentType.SERIES])


@pytest.mark.anyio("asyncio")
async def test_empty_answer_returns_no_titles() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"candidates": []})

    assert await build_client(handler).recommend_titles("x", ContentType.MOVIE) == []
