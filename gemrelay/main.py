"""gemrelay: FastAPI application entry point.

An OpenAI-compatible chat completions API served from a rotating pool of
Gemini API keys.
"""

import json
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from gemrelay.admin import router as admin_router
from gemrelay.logging.audit import (
    RequestTimer,
    generate_request_id,
    get_audit_logger,
    request_id_var,
    setup_logging,
)
from gemrelay.proxy.converter import to_openai_models
from gemrelay.proxy.dispatcher import CallerContext
from gemrelay.proxy.errors import BadRequest, GatewayError, RateLimited
from gemrelay.security.auth import verify_access_key
from gemrelay.services import Services, close_services, get_services

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    setup_logging()
    await get_services().background.start()
    get_audit_logger().info("Relay started")
    yield
    await close_services()
    get_audit_logger().info("Relay stopped")


app = FastAPI(
    title="gemrelay",
    description="OpenAI-compatible relay over a rotating pool of Gemini API keys",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=86400,
)

app.include_router(admin_router)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    rid = generate_request_id()
    request_id_var.set(rid)
    response = await call_next(request)
    response.headers["X-Request-Id"] = rid
    return response


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    get_audit_logger().warning(
        "Request failed",
        extra={"audit_data": {
            "client_ip": client_ip_of(request),
            "path": request.url.path,
            "status": exc.status_code,
            "error_type": exc.error_type,
            "error": exc.message,
        }},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    get_audit_logger().exception("Unhandled error", exc_info=exc)
    error = GatewayError(status_code=500)
    return JSONResponse(status_code=500, content=error.to_dict())


@app.get("/health")
async def health():
    return {"status": "healthy", "version": VERSION}


def client_ip_of(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "127.0.0.1"


async def parse_chat_body(request: Request) -> dict:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise BadRequest()

    if not isinstance(body, dict):
        raise BadRequest()
    messages = body.get("messages")
    if not isinstance(messages, list) or not messages:
        raise BadRequest("`messages` must be a non-empty list")
    if not all(isinstance(m, dict) and "role" in m for m in messages):
        raise BadRequest("Every message needs a `role`")
    return body


@app.post("/v1/chat/completions")
@app.post("/chat/completions", include_in_schema=False)
async def chat_completions(
    request: Request,
    access_key_id: str = Depends(verify_access_key),
    services: Services = Depends(get_services),
):
    """OpenAI chat completions, served by rotating across upstream Gemini keys.

    Pipeline: Auth -> Rate Limit -> Parse -> Dispatch (select key, deliver, fail over) -> Log
    """
    logger = get_audit_logger()
    client_ip = client_ip_of(request)

    rate_result = services.limiter.check(client_ip)
    if not rate_result.allowed:
        raise RateLimited(headers={
            "Retry-After": str(int(rate_result.reset_seconds)),
            **rate_result.headers(),
        })

    body = await parse_chat_body(request)
    caller = CallerContext(access_key_id=access_key_id, ip_address=client_ip)

    with RequestTimer() as timer:
        result = await services.dispatcher.dispatch(body, caller)

    logger.info(
        "Request dispatched",
        extra={"audit_data": {
            "access_key_id": access_key_id,
            "client_ip": client_ip,
            "model": body.get("model"),
            "mode": result.mode.value,
            "latency_ms": timer.elapsed_ms,
            "rate_limit_remaining": rate_result.remaining,
        }},
    )

    if result.streaming:
        return StreamingResponse(
            result.events,
            media_type="text/event-stream",
            headers={
                **rate_result.headers(),
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    return JSONResponse(status_code=200, content=result.body, headers=rate_result.headers())


@app.get("/v1/models")
@app.get("/models", include_in_schema=False)
async def list_models(services: Services = Depends(get_services)):
    """Upstream Gemini models in OpenAI list format. Any failure yields an empty list."""
    empty = {"object": "list", "data": []}
    try:
        candidates = await services.pool.list_eligible()
        if not candidates:
            return empty
        upstream_models = await services.provider.list_models(candidates[0].api_key)
    except Exception as e:
        get_audit_logger().warning("Model listing failed: %s", e)
        return empty

    return {"object": "list", "data": to_openai_models(upstream_models)}
