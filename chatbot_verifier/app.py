# chatbot_verifier/app.py
import datetime
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

# Load .env BEFORE any package imports (they read env vars at import time)
from dotenv import load_dotenv
load_dotenv(override=True)

from fastapi import FastAPI, Request, Path
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, PlainTextResponse

from chatbot_verifier import monitoring
from chatbot_verifier import auth as authmod
from chatbot_verifier import governance
from chatbot_verifier.config import LedgerConfig
from chatbot_verifier.coordinator import QueryCoordinator
from chatbot_verifier.errors import InvalidInput, NotConnected, VerifierError, E_INTERNAL, E_INVALID_INPUT
from chatbot_verifier.generation import build_generator
from chatbot_verifier.ledger.client import LedgerClient
from chatbot_verifier.schemas import (
    ChatRequest, ChatResponse, ErrorResponse, HealthResponse, ProposalsResponse,
    RequestDetailResponse, VerifyRequest, VerifyResponse,
)

logger = monitoring.logger

# Ledger mode is decided once, here, for the life of the process
ledger_client = LedgerClient(LedgerConfig.from_env())
ledger_client.init()

# instantiate coordinator once
coordinator = QueryCoordinator(ledger=ledger_client, generator=build_generator())


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    coordinator.ledger.close()


app = FastAPI(title="Verifiable Governance Chat API", lifespan=lifespan)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(CORSMiddleware, allow_origins=CORS_ORIGINS, allow_methods=["*"], allow_headers=["*"])

API_KEY_HEADER = "x-api-key"

ERROR_RESPONSES = {400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}


def _now_iso() -> str:
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _error(status: int, error: str, error_code: str, message: Optional[str] = None) -> JSONResponse:
    content = {"error": error, "error_code": error_code}
    if message is not None:
        content["message"] = message
    return JSONResponse(status_code=status, content=content)


# Malformed bodies and params are client errors, reported like the handlers' own 400s
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    detail = "; ".join(str(err.get("msg", "")) for err in exc.errors())
    error = "Prompt is required and must be a string" if request.url.path == "/api/chat" else "Invalid request"
    return _error(400, error, E_INVALID_INPUT, detail or None)


# ---------------------------------------------------------------------------
# Auth + rate-limit middleware (runs first on /api/* paths)
# ---------------------------------------------------------------------------
@app.middleware("http")
async def api_key_and_rate_limit_middleware(request: Request, call_next):
    if not request.url.path.startswith("/api/"):
        return await call_next(request)

    api_key = request.headers.get(API_KEY_HEADER)
    if not authmod.is_key_allowed(api_key):
        return _error(401, "Missing or invalid API key", "E_UNAUTHORIZED")

    allowed, remaining = authmod.check_rate_limit(api_key or "")
    if not allowed:
        resp = _error(429, "Rate limit exceeded", "E_RATE_LIMIT")
        resp.headers["Retry-After"] = "60"
        return resp

    response = await call_next(request)
    if remaining is not None:
        response.headers["X-RateLimit-Remaining"] = str(remaining)
    return response


# ---------------------------------------------------------------------------
# Metrics middleware
# ---------------------------------------------------------------------------
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    endpoint = request.url.path
    method = request.method
    status = "500"
    try:
        response = await call_next(request)
        status = str(response.status_code)
        return response
    except Exception:
        logger.exception("Unhandled exception in request", extra={"path": endpoint})
        raise
    finally:
        monitoring.observe_request(start, endpoint, method, status)


# ---------------------------------------------------------------------------
# Endpoints
# Sync handlers: ledger confirmations block, so they run in the threadpool.
# ---------------------------------------------------------------------------
@app.get("/health", response_model=HealthResponse)
def health():
    return {
        "status": "healthy",
        "timestamp": _now_iso(),
        "ledger": "connected" if coordinator.ledger.is_connected else "mock",
    }


@app.get("/api/proposals", response_model=ProposalsResponse)
def proposals():
    return governance.list_proposals()


@app.post("/api/chat", status_code=201, response_model=ChatResponse, responses=ERROR_RESPONSES)
def chat(req: Optional[ChatRequest] = None):
    """
    POST /api/chat
    Body: { "prompt": "..." }
    """
    prompt = req.prompt if req is not None else None
    logger.info("Received /api/chat request",
                extra={"prompt_preview": prompt[:200] if isinstance(prompt, str) else ""})
    try:
        result = coordinator.submit_query(prompt)
    except InvalidInput as e:
        return _error(400, "Prompt is required and must be a string", e.error_code)
    except Exception as e:
        logger.exception("Error processing chat request")
        code = e.error_code if isinstance(e, VerifierError) else E_INTERNAL
        return _error(500, "Internal server error", code, str(e))
    return result.to_response()


@app.get("/api/request/{request_id}", response_model=RequestDetailResponse, responses=ERROR_RESPONSES)
def get_request(request_id: str = Path(..., description="Ledger request id")):
    """
    GET /api/request/{request_id}
    Request and answer as recorded on the ledger.
    """
    try:
        return coordinator.lookup(request_id)
    except NotConnected as e:
        return _error(400, "Ledger not connected", e.error_code)
    except InvalidInput as e:
        return _error(400, e.message, e.error_code)
    except Exception as e:
        logger.exception("Error fetching request", extra={"request_id": request_id})
        code = e.error_code if isinstance(e, VerifierError) else E_INTERNAL
        return _error(500, "Failed to fetch request details", code, str(e))


@app.post("/api/verify", response_model=VerifyResponse, responses=ERROR_RESPONSES)
def verify(req: Optional[VerifyRequest] = None):
    """
    POST /api/verify
    Body: { "requestId": 1, "signature": "0x..." }
    """
    request_id = req.request_id if req is not None else None
    signature = req.signature if req is not None else None
    try:
        return coordinator.verify(request_id, signature)
    except NotConnected as e:
        return _error(400, "Ledger not connected", e.error_code)
    except InvalidInput as e:
        return _error(400, e.message, e.error_code)
    except Exception as e:
        logger.exception("Error verifying signature", extra={"request_id": request_id})
        code = e.error_code if isinstance(e, VerifierError) else E_INTERNAL
        return _error(500, "Failed to verify signature", code, str(e))


@app.get("/metrics")
def metrics():
    if not monitoring.PROMETHEUS_ENABLED:
        return PlainTextResponse("Prometheus disabled", status_code=404)
    payload, content_type = monitoring.prometheus_metrics_response()
    return Response(content=payload, media_type=content_type)
