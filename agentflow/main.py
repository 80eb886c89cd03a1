"""
Agent Flow Service - Main FastAPI Application.

Runs agent flows one conversation turn at a time behind an
OpenAI-compatible chat completion endpoint.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from . import __version__
from .adapters import (
    create_llm_gateway,
    create_model_catalog,
    create_retrieval_adapter,
)
from .config import Settings, get_settings
from .engine.executor import FlowExecutor
from .errors import FlowEngineError, NotFoundError, ValidationError
from .models.schemas import (
    ConversationResponse,
    ErrorResponse,
    FlowRunRequest,
    FlowStateResponse,
    HealthResponse,
)
from .nodes import create_handler_registry
from .services import FileFlowRepository, FlowService, create_conversation_store

logger = structlog.get_logger()


def configure_logging(settings: Settings) -> None:
    """Configure structured logging."""
    logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.log_format == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_flow_service(settings: Settings) -> FlowService:
    """Wire adapters, handlers and stores from settings."""
    llm = create_llm_gateway(settings.llm)
    catalog = create_model_catalog(settings.llm.models_file)
    retriever = create_retrieval_adapter(settings.retrieval)

    registry = create_handler_registry(
        llm,
        catalog,
        retriever,
        categorize_temperature=settings.llm.categorize_temperature,
    )

    return FlowService(
        flows=FileFlowRepository(settings.storage.flows_dir),
        store=create_conversation_store(
            settings.storage.conversation_store,
            settings.storage.database_path,
        ),
        executor=FlowExecutor(registry, settings),
        settings=settings,
        llm=llm,
    )


def _error_response(status_code: int, error: FlowEngineError) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error.to_dict()})


def create_app(
    flow_service: FlowService | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        flow_service: Service to use; built from settings when omitted
        settings: Settings; the cached settings when omitted
    """
    settings = settings or get_settings()
    service = flow_service or build_flow_service(settings)
    limiter = Limiter(key_func=get_remote_address)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager."""
        logger.info("starting_agent_flow", port=settings.port, env=settings.environment)

        yield

        logger.info("shutting_down_agent_flow")
        await service.close()

    app = FastAPI(
        title="Agent Flow Service",
        description="Executes agent flows behind an OpenAI-compatible chat endpoint",
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )

    app.state.limiter = limiter
    app.state.flow_service = service

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        """Handle rate limit exceeded errors."""
        return JSONResponse(
            status_code=429,
            content={
                "error": {
                    "message": "Too many requests",
                    "type": "rate_limit_error",
                    "code": "rate_limit_exceeded",
                }
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Reject malformed requests before any node executes."""
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{first.get('msg', 'Invalid request')}: {field}" if field else "Invalid request"
        return _error_response(400, ValidationError(message))

    @app.exception_handler(FlowEngineError)
    async def flow_error_handler(request: Request, exc: FlowEngineError) -> JSONResponse:
        if isinstance(exc, NotFoundError):
            return _error_response(404, exc)
        if exc.error_type == "invalid_request_error":
            return _error_response(400, exc)
        logger.error("request_failed", path=request.url.path, error=exc.message)
        return _error_response(500, exc)

    cors_origins = (
        ["*"]
        if settings.cors_origins == "*"
        else [o.strip() for o in settings.cors_origins.split(",")]
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            service=settings.service_name,
            version=__version__,
            timestamp=datetime.utcnow().isoformat(),
        )

    @app.get("/ready", response_model=HealthResponse, tags=["Health"])
    async def readiness_check() -> HealthResponse:
        """Readiness check endpoint."""
        try:
            await service.store.load("readiness-probe")
        except Exception as e:
            logger.warning("conversation_store_unavailable", error=str(e))
            raise HTTPException(status_code=503, detail="Conversation store not available")

        return HealthResponse(
            status="healthy",
            service=settings.service_name,
            version=__version__,
            timestamp=datetime.utcnow().isoformat(),
        )

    @app.post(
        f"{settings.api_prefix}/flow",
        response_model=None,
        responses={
            400: {"model": ErrorResponse, "description": "Validation error"},
            404: {"model": ErrorResponse, "description": "Flow not found"},
            429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
        },
        tags=["Flow"],
        summary="Run a flow turn",
        description="""
Run one conversation turn of a flow.

The latest non-empty user message is the turn input. Without a conversation
id a new conversation is created. With `stream: true` the response is a
`text/event-stream` of chat completion chunks terminated by `data: [DONE]`.
""",
    )
    @limiter.limit(f"{settings.rate_limit_requests}/{settings.rate_limit_window_seconds}seconds")
    async def run_flow(request: Request, body: FlowRunRequest) -> Any:
        turn = await service.prepare_turn(body)

        if body.stream:
            return StreamingResponse(
                service.stream_turn(turn),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            )

        return await service.run_turn(turn)

    @app.get(
        f"{settings.api_prefix}/flows/state/{{conversation_id}}",
        response_model=FlowStateResponse,
        response_model_by_alias=True,
        tags=["Flow"],
    )
    async def get_flow_state(conversation_id: str) -> dict[str, Any]:
        """Stored flow state of a conversation."""
        return await service.get_state(conversation_id)

    @app.get(
        f"{settings.api_prefix}/conversations/{{conversation_id}}",
        response_model=ConversationResponse,
        response_model_by_alias=True,
        tags=["Conversations"],
    )
    async def get_conversation(conversation_id: str) -> dict[str, Any]:
        """Conversation with its messages and flow state."""
        return await service.get_conversation(conversation_id)

    @app.delete(f"{settings.api_prefix}/conversations/{{conversation_id}}", tags=["Conversations"])
    async def delete_conversation(conversation_id: str) -> dict[str, str]:
        await service.delete_conversation(conversation_id)
        return {"status": "deleted", "id": conversation_id}

    return app


def create_default_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)
    return create_app(settings=settings)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "agentflow.main:create_default_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
    )
