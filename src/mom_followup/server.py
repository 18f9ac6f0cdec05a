"""HTTP surface of the provider gateway.

Endpoints:
- POST /generate-mom  {userQuery, systemPrompt, provider, model, apiKey}
- GET  /models/{provider}
- GET  /health
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import GatewayConfig
from .errors import GatewayError
from .gateway import ProviderGateway
from .metrics import create_metrics_collector
from .models import GenerationRequest

LOGGER = logging.getLogger("mom_followup.server")


class GenerateIn(BaseModel):
    userQuery: Optional[str] = None
    systemPrompt: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    apiKey: Optional[str] = None


class GenerateOut(BaseModel):
    whatsappMessage: str
    actionItems: List[str]


class ModelOut(BaseModel):
    id: str
    name: str
    context: Optional[int] = None


def _level_for(name: str) -> int:
    level = getattr(logging, name.upper(), logging.INFO)
    if isinstance(level, int):
        return level
    return logging.INFO


def _error(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "code": code})


def create_app(
    config: Optional[GatewayConfig] = None,
    gateway: Optional[ProviderGateway] = None,
) -> FastAPI:
    """Build the FastAPI application around a :class:`ProviderGateway`."""
    config = config or (gateway.config if gateway is not None else GatewayConfig.from_env())
    logging.getLogger("mom_followup").setLevel(_level_for(config.log_level))
    if gateway is None:
        gateway = ProviderGateway(
            config=config,
            metrics=create_metrics_collector(config.metrics_backend, config.metrics_port),
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        LOGGER.info("Gateway ready for providers=%s", ",".join(gateway.providers))
        yield
        await gateway.aclose()
        LOGGER.info("Gateway shut down")

    app = FastAPI(title="MOM follow-up gateway", lifespan=lifespan)
    app.state.gateway = gateway

    @app.exception_handler(GatewayError)
    async def _gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, "Missing required parameters", "invalid_request")

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 405:
            return _error(405, "Method not allowed", "method_not_allowed")
        return _error(exc.status_code, str(exc.detail), "http_error")

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "providers": gateway.providers}

    @app.post("/generate-mom", response_model=GenerateOut)
    async def generate(body: GenerateIn) -> GenerateOut:
        request = GenerationRequest.from_payload(body.model_dump())
        result = await gateway.handle(request)
        return GenerateOut(**result.to_payload())

    @app.get("/models/{provider}", response_model=List[ModelOut])
    async def models(provider: str, x_api_key: Optional[str] = Header(default=None)) -> List[ModelOut]:
        found = await gateway.list_models(provider, x_api_key)
        return [ModelOut(**model.to_payload()) for model in found]

    return app
