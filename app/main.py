"""Entry point for the FastAPI-powered content discovery service."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import settings
from .database import Database
from .models import (
    ContentDetailsView,
    ContentType,
    ContentValidationError,
    ContentView,
    GenreItem,
    RecommendationRequest,
)
from .services.content import ContentService
from .services.fetch_log import FetchLedger
from .services.gemini import GeminiClient
from .services.genres import GenreService
from .services.jikan import JikanClient
from .services.providers import ProviderRegistry
from .services.recommendations import RecommendationService
from .services.tmdb import TMDBClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


async def initialise_genres(content_service: ContentService) -> None:
    """Warm the genre cache for every content type."""

    for content_type in ContentType:
        try:
            await content_service.fetch_and_cache_genres(content_type)
        except Exception as exc:  # pragma: no cover - startup safety net
            logger.exception(
                "Failed to cache %s genres: %s", content_type.value, exc
            )


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    timeout = httpx.Timeout(settings.provider_timeout, connect=5.0)
    tmdb_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(base_url=str(settings.tmdb_api_url), timeout=timeout)
    )
    jikan_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(base_url=str(settings.jikan_api_url), timeout=timeout)
    )
    gemini_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.gemini_api_url),
            timeout=httpx.Timeout(max(settings.provider_timeout, 30.0), connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    providers = ProviderRegistry.from_clients(
        TMDBClient(settings, tmdb_http), JikanClient(settings, jikan_http)
    )
    ledger = FetchLedger(settings.fetch_ttl)
    genre_service = GenreService(providers, ledger, database.session_factory)
    content_service = ContentService(
        providers, genre_service, ledger, database.session_factory
    )
    recommendation_service = RecommendationService(
        GeminiClient(settings, gemini_http), content_service, database.session_factory
    )

    fastapi_app.state.database = database
    fastapi_app.state.genre_service = genre_service
    fastapi_app.state.content_service = content_service
    fastapi_app.state.recommendation_service = recommendation_service
    await initialise_genres(content_service)

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Cached movie, series and anime metadata from TMDB and Jikan",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_content_service(fastapi_app: FastAPI) -> ContentService:
    service = getattr(fastapi_app.state, "content_service", None)
    if not isinstance(service, ContentService):
        raise RuntimeError("Content service not initialised")
    return service


def get_genre_service(fastapi_app: FastAPI) -> GenreService:
    service = getattr(fastapi_app.state, "genre_service", None)
    if not isinstance(service, GenreService):
        raise RuntimeError("Genre service not initialised")
    return service


def get_recommendation_service(fastapi_app: FastAPI) -> RecommendationService:
    service = getattr(fastapi_app.state, "recommendation_service", None)
    if not isinstance(service, RecommendationService):
        raise RuntimeError("Recommendation service not initialised")
    return service


def _parse_content_type(value: str) -> ContentType:
    try:
        return ContentType.parse(value)
    except ContentValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


async def _validation_error_handler(
    _: Request, exc: ContentValidationError
) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def register_routes(fastapi_app: FastAPI) -> None:
    fastapi_app.add_exception_handler(ContentValidationError, _validation_error_handler)

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/content/movies", response_model=list[ContentView])
    async def list_movies() -> list[ContentView]:
        return await get_content_service(fastapi_app).get_content_by_type(
            ContentType.MOVIE
        )

    @fastapi_app.get("/api/content/series", response_model=list[ContentView])
    async def list_series() -> list[ContentView]:
        return await get_content_service(fastapi_app).get_content_by_type(
            ContentType.SERIES
        )

    @fastapi_app.get("/api/content/anime", response_model=list[ContentView])
    async def list_anime() -> list[ContentView]:
        return await get_content_service(fastapi_app).get_content_by_type(
            ContentType.ANIME
        )

    @fastapi_app.get(
        "/api/content/trending/{content_type}", response_model=list[ContentView]
    )
    async def trending(content_type: str) -> list[ContentView]:
        resolved = _parse_content_type(content_type)
        return await get_content_service(fastapi_app).get_trending_content(resolved)

    @fastapi_app.get(
        "/api/content/search/{content_type}", response_model=list[ContentView]
    )
    async def search(content_type: str, query: str) -> list[ContentView]:
        resolved = _parse_content_type(content_type)
        return await get_content_service(fastapi_app).search_content(resolved, query)

    @fastapi_app.get(
        "/api/content/external/{external_id}", response_model=ContentView
    )
    async def content_by_external_id(
        external_id: str, content_type: str = Query(alias="type")
    ) -> ContentView:
        resolved = _parse_content_type(content_type)
        view = await get_content_service(fastapi_app).get_content_by_external_id(
            external_id, resolved
        )
        if view is None:
            raise HTTPException(status_code=404, detail="Content not found")
        return view

    @fastapi_app.get(
        "/api/content/details/{external_id}", response_model=ContentDetailsView
    )
    async def content_details(
        external_id: str, content_type: str = Query(alias="type")
    ) -> ContentDetailsView:
        resolved = _parse_content_type(content_type)
        details = await get_content_service(fastapi_app).get_content_details(
            external_id, resolved
        )
        if details is None:
            raise HTTPException(status_code=404, detail="Content not found")
        return details

    @fastapi_app.get("/api/content/{content_id}", response_model=ContentView)
    async def content_by_id(content_id: int) -> ContentView:
        view = await get_content_service(fastapi_app).get_content(content_id)
        if view is None:
            raise HTTPException(status_code=404, detail="Content not found")
        return view

    @fastapi_app.get("/api/genres/{content_type}", response_model=list[GenreItem])
    async def genres(content_type: str) -> list[GenreItem]:
        resolved = _parse_content_type(content_type)
        return await get_genre_service(fastapi_app).list_genres(resolved)

    @fastapi_app.post("/api/recommendations", response_model=list[ContentView])
    async def recommend(request: Request) -> list[ContentView]:
        try:
            payload: Any = await request.json()
        except json.JSONDecodeError:
            payload = {}
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        try:
            recommendation = RecommendationRequest.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(
                status_code=400,
                detail=exc.errors(include_url=False, include_context=False),
            ) from exc
        return await get_recommendation_service(fastapi_app).recommend(
            recommendation.description, recommendation.content_type
        )


app = create_app()
