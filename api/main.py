"""FastAPI server for detect-cart."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from detect_cart import __version__
from detect_cart.config import DEFAULT_MODEL_COOKIE, MODELS_COOKIE, get_db_path, get_default_model_id
from detect_cart.consensus import ConsensusAnalyzer
from detect_cart.errors import DetectCartError, InputInvalid, ProviderError, RecorderFailure, Unauthorized
from detect_cart.fetcher import CartFetcher
from detect_cart.gateway import LLMGateway
from detect_cart.metrics import MetricsCollector
from detect_cart.models import ConsensusRequest, ModelEvent, ParsedAnswer, UsageEvent
from detect_cart.parser import parse_selector
from detect_cart.pipeline import PipelineCoordinator
from detect_cart.prompts import ANALYSIS_SYSTEM_PROMPT
from detect_cart.recorder import UsageRecorder
from detect_cart.registry import ModelRegistry
from detect_cart.selection import resolve_selection, selection_cookie_value
from detect_cart.storage import SQLiteUsageStore
from detect_cart.validation import validate_model_ids, validate_prompt, validate_store_name, validate_usage_event

logger = logging.getLogger(__name__)

SELECTION_COOKIE_MAX_AGE = 60 * 60 * 24 * 365


@lru_cache(maxsize=1)
def get_registry() -> ModelRegistry:
    return ModelRegistry.default()


@lru_cache(maxsize=1)
def get_gateway() -> LLMGateway:
    return LLMGateway(get_registry())


@lru_cache(maxsize=1)
def get_recorder() -> UsageRecorder:
    return UsageRecorder(SQLiteUsageStore(db_path=get_db_path()), get_registry())


@lru_cache(maxsize=1)
def get_metrics() -> MetricsCollector:
    return MetricsCollector()


def get_fetcher(metrics: MetricsCollector = Depends(get_metrics)) -> CartFetcher:
    return CartFetcher(metrics=metrics)


def get_coordinator(
    gateway: LLMGateway = Depends(get_gateway),
    recorder: UsageRecorder = Depends(get_recorder),
    fetcher: CartFetcher = Depends(get_fetcher),
    metrics: MetricsCollector = Depends(get_metrics),
) -> PipelineCoordinator:
    return PipelineCoordinator.create(
        gateway=gateway, recorder=recorder, fetcher=fetcher, metrics=metrics
    )


def _user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """The upstream auth layer sets X-User-Id; absent means anonymous."""
    if x_user_id is None or not x_user_id.strip():
        return None
    return x_user_id.strip()


def _resolve(app: FastAPI, dependency):
    return app.dependency_overrides.get(dependency, dependency)()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if get_recorder in app.dependency_overrides:
        await app.dependency_overrides[get_recorder]().drain()
    elif get_recorder.cache_info().currsize:
        # Only close a recorder that a request created.
        await get_recorder().close()
        get_recorder.cache_clear()


app = FastAPI(title="detect-cart API", version=__version__, lifespan=lifespan)


def _error_body(exc: DetectCartError) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": exc.message, "kind": exc.kind}
    if isinstance(exc, ProviderError) and exc.code:
        body["code"] = exc.code
    return body


@app.exception_handler(DetectCartError)
async def detect_cart_error_handler(request: Request, exc: DetectCartError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.kind)
        _resolve(request.app, get_metrics).record_error(
            request.headers.get("x-request-id", "-"), exc.kind, exc.message, path=request.url.path
        )
    return JSONResponse(status_code=exc.http_status, content=_error_body(exc))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    location = ".".join(str(part) for part in errors[0]["loc"]) if errors else "body"
    return JSONResponse(
        status_code=400,
        content={"error": f"無效的請求參數: {location}", "kind": InputInvalid.kind},
    )


class AnalyzeHtmlRequest(BaseModel):
    prompt: Optional[str] = None
    model: Optional[str] = None


class AnswerItem(BaseModel):
    modelId: Optional[str] = None
    modelName: Optional[str] = None
    answer: Optional[str] = None


class AnalyzeCombinedRequest(BaseModel):
    answers: Optional[List[AnswerItem]] = None
    modelId: Optional[str] = None
    html: str = ""


class SaveTokenUsageRequest(BaseModel):
    modelId: Optional[str] = None
    totalTokens: Any = None
    timestamp: Optional[int] = None


class FetchCartRequest(BaseModel):
    storeName: Optional[str] = None


class AnalyzeStoreRequest(BaseModel):
    storeName: Optional[str] = None
    modelIds: Optional[List[str]] = None
    arbiterModelId: Optional[str] = None
    consensus: bool = False


class ModelSelectionRequest(BaseModel):
    modelIds: Optional[List[str]] = None
    modelId: Optional[str] = None


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/detect-cart/api/analyze-html")
async def analyze_html(
    req: AnalyzeHtmlRequest,
    gateway: LLMGateway = Depends(get_gateway),
) -> Dict[str, Any]:
    # Usage for single-model calls is reported by the client via save-token-usage.
    validate_prompt(req.prompt)
    model_id = req.model or get_default_model_id()
    generation = await gateway.generate(model_id, ANALYSIS_SYSTEM_PROMPT, req.prompt)
    body: Dict[str, Any] = {
        "response": generation.text,
        "usage": generation.usage.to_dict(),
        "model": model_id,
        "finishReason": generation.finish_reason,
    }
    if generation.reasoning:
        body["reasoning"] = generation.reasoning
    return body


@app.post("/detect-cart/api/analyze-combined")
async def analyze_combined(
    req: AnalyzeCombinedRequest,
    gateway: LLMGateway = Depends(get_gateway),
    recorder: UsageRecorder = Depends(get_recorder),
    metrics: MetricsCollector = Depends(get_metrics),
    user_id: Optional[str] = Depends(_user_id),
) -> Dict[str, Any]:
    registry = gateway.registry
    answers = [
        ParsedAnswer(
            model_id=item.modelId or item.modelName or "",
            model_display_name=item.modelName or registry.display_name(item.modelId or ""),
            raw_text=item.answer or "",
            extracted_selector=item.answer or None,
        )
        for item in (req.answers or [])
    ]
    arbiter_model_id = req.modelId or get_default_model_id()
    generation = await ConsensusAnalyzer(gateway, recorder, metrics).consensus(
        ConsensusRequest(simplified_html=req.html, answers=answers, arbiter_model_id=arbiter_model_id),
        user_id=user_id,
    )
    return {
        "response": generation.text,
        "usage": generation.usage.to_dict(),
        "model": arbiter_model_id,
        "selector": parse_selector(generation.text),
        "finishReason": generation.finish_reason,
    }


@app.post("/detect-cart/api/save-token-usage")
async def save_token_usage(
    req: SaveTokenUsageRequest,
    recorder: UsageRecorder = Depends(get_recorder),
    user_id: Optional[str] = Depends(_user_id),
) -> Dict[str, Any]:
    validate_usage_event(req.modelId, req.totalTokens)
    event = UsageEvent(model_id=req.modelId, total_tokens=req.totalTokens, user_id=user_id)
    if req.timestamp:
        event.timestamp = req.timestamp
    if not await recorder.record(event):
        raise RecorderFailure("儲存 Token 使用量時出錯")
    return {"success": True}


@app.get("/api/token-usage")
def token_usage(
    recorder: UsageRecorder = Depends(get_recorder),
    user_id: Optional[str] = Depends(_user_id),
) -> Dict[str, Any]:
    if user_id is None:
        raise Unauthorized()
    try:
        usage = recorder.aggregate(user_id)
    except DetectCartError:
        raise
    except Exception as exc:
        logger.exception("Reading token usage for %s failed", user_id)
        raise RecorderFailure(str(exc) or "未知錯誤") from exc
    return usage.to_dict()


@app.post("/detect-cart/api/fetch-cart")
async def fetch_cart(
    req: FetchCartRequest,
    fetcher: CartFetcher = Depends(get_fetcher),
) -> JSONResponse:
    result = await fetcher.fetch_cart(req.storeName)
    if not result.success:
        return JSONResponse(status_code=502, content={"error": result.error_message, **result.to_dict()})
    return JSONResponse(content=result.to_dict())


@app.post("/detect-cart/api/analyze-store")
async def analyze_store(
    req: AnalyzeStoreRequest,
    request: Request,
    coordinator: PipelineCoordinator = Depends(get_coordinator),
    user_id: Optional[str] = Depends(_user_id),
) -> StreamingResponse:
    """Run the whole pipeline, streaming one JSON object per line."""
    store_name = validate_store_name(req.storeName)
    selection = resolve_selection(
        request.cookies,
        coordinator.registry,
        model_ids=validate_model_ids(req.modelIds) if req.modelIds is not None else None,
        arbiter_model_id=req.arbiterModelId,
        consensus=req.consensus,
    )
    queue: asyncio.Queue = asyncio.Queue()

    async def run() -> None:
        try:
            result = await coordinator.analyze_store(store_name, selection, user_id=user_id, emit=queue.put)
            if not result.success:
                await queue.put({"type": "error", "error": result.fetch.error_message, **result.to_dict()})
            else:
                await queue.put({"type": "result", **result.to_dict()})
        except DetectCartError as exc:
            await queue.put({"type": "error", **_error_body(exc)})
        finally:
            await queue.put(None)

    async def lines():
        task = asyncio.create_task(run())
        try:
            yield json.dumps({"type": "selection", **selection.to_dict()}, ensure_ascii=False) + "\n"
            while True:
                item = await queue.get()
                if item is None:
                    break
                if isinstance(item, ModelEvent):
                    item = {"type": "model", **item.to_dict()}
                yield json.dumps(item, ensure_ascii=False) + "\n"
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(lines(), media_type="application/x-ndjson")


@app.get("/detect-cart/api/models")
def list_models(
    request: Request,
    gateway: LLMGateway = Depends(get_gateway),
) -> Dict[str, Any]:
    registry = gateway.registry
    return {
        "models": [m.to_dict() for m in registry.all()],
        "selection": resolve_selection(request.cookies, registry).to_dict(),
    }


@app.post("/detect-cart/api/models/selection")
def save_model_selection(
    req: ModelSelectionRequest,
    response: Response,
    gateway: LLMGateway = Depends(get_gateway),
) -> Dict[str, Any]:
    registry = gateway.registry
    model_ids = validate_model_ids(req.modelIds)
    for model_id in model_ids:
        registry.require(model_id)
    response.set_cookie(MODELS_COOKIE, selection_cookie_value(model_ids), max_age=SELECTION_COOKIE_MAX_AGE)
    if req.modelId:
        registry.require(req.modelId)
        response.set_cookie(DEFAULT_MODEL_COOKIE, req.modelId, max_age=SELECTION_COOKIE_MAX_AGE)
    return {"success": True, "selectedModelIds": model_ids}
