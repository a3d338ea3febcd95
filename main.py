from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.db.base import async_session_maker
from app.core.logging import get_logger, setup_logging
from app.apis.auth.main import router as auth_router
from app.apis.generations.main import router as generations_router
from app.apis.candidates.main import router as candidates_router
from app.apis.tags.main import router as tags_router
from app.modules.generation.processor import GenerationProcessor
from app.modules.openrouter import OpenRouterClient, ServiceHealth

import uvicorn
from fastapi.middleware.cors import CORSMiddleware
from app.core.task_queue import queue as _bg_queue


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    health = ServiceHealth()
    # A missing OPENROUTER_API_KEY fails startup here
    client = OpenRouterClient.from_settings(settings.openrouter, health=health)
    app.state.health = health
    app.state.processor = GenerationProcessor(
        client,
        session_maker=async_session_maker,
        concurrency=settings.generation.batch_concurrency,
        default_temperature=settings.generation.default_temperature,
        rate_limit_max_delay=settings.generation.rate_limit_max_delay,
    )
    app.state.queue = _bg_queue
    _bg_queue.start()
    logger.info(f"{settings.app.name} started, model {client.default_model}")
    try:
        yield
    finally:
        await _bg_queue.stop()
        await client.aclose()


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "detail": {
                "code": "invalid_payload",
                "message": "Request validation failed",
                "errors": jsonable_encoder(exc.errors()),
            }
        },
    )


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(
        title=settings.app.name, version=settings.app.version, lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(auth_router)
    app.include_router(generations_router)
    app.include_router(candidates_router)
    app.include_router(tags_router)

    @app.get("/")
    async def root():
        return {
            "status": "ok",
            "app": settings.app.name,
            "version": settings.app.version,
        }

    return app


app = create_app()


if __name__ == "__main__":
    try:
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=settings.app.port,
            reload=not settings.app.is_production,
        )
    except Exception as e:
        logger.error(f"An error occurred when starting the server: {e}.")
