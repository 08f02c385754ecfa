# chatbot_verifier/monitoring.py
"""
Centralized monitoring: Prometheus metrics, structured JSON logging, optional Sentry.

Env vars:
- PROMETHEUS_ENABLED (default: true)
- SENTRY_DSN (optional)
- LOG_AS_JSON (default: true)
- LOG_LEVEL (default: INFO)
- ENVIRONMENT (default: development)
"""

import os
import functools
import logging
import time
from typing import Tuple

from prometheus_client import (
    Counter, Histogram, Gauge,
    generate_latest, CONTENT_TYPE_LATEST, REGISTRY,
)
from pythonjsonlogger import jsonlogger

# Sentry is an optional extra
try:
    import sentry_sdk
    _HAS_SENTRY = True
except ImportError:
    _HAS_SENTRY = False

# --- ENV flags
PROMETHEUS_ENABLED = os.getenv("PROMETHEUS_ENABLED", "true").lower() in ("1", "true", "yes")
SENTRY_DSN = os.getenv("SENTRY_DSN", None)
LOG_AS_JSON = os.getenv("LOG_AS_JSON", "true").lower() in ("1", "true", "yes")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")


# --- Logger setup
def setup_logger(name: str = "chatbot-verifier", level: int = None) -> logging.Logger:
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO")) if level is None else level
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        if LOG_AS_JSON:
            fmt = jsonlogger.JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s"
            )
            handler.setFormatter(fmt)
        logger.addHandler(handler)
    return logger


logger = setup_logger()

# --- Sentry (optional)
if SENTRY_DSN and _HAS_SENTRY:
    sentry_sdk.init(dsn=SENTRY_DSN, environment=ENVIRONMENT)
    logger.info("Sentry initialized")


# --- Prometheus metrics
REQUEST_COUNT = Counter(
    "verifier_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "verifier_http_request_latency_seconds",
    "Request latency in seconds",
    ["endpoint"],
)

CHAT_COUNTER = Counter(
    "verifier_chat_queries_total",
    "Chat queries by outcome (verifiable, unverifiable, invalid, generation_failed)",
    ["outcome"],
)

GENERATION_LATENCY = Histogram(
    "verifier_generation_latency_seconds",
    "Answer generation latency",
)

LEDGER_TX_COUNTER = Counter(
    "verifier_ledger_transactions_total",
    "Mutating ledger calls",
    ["operation", "outcome"],
)

LEDGER_TX_LATENCY = Histogram(
    "verifier_ledger_confirmation_latency_seconds",
    "Time from submission to confirmed receipt",
    ["operation"],
)

LEDGER_CONNECTED = Gauge(
    "verifier_ledger_connected",
    "1 when the ledger client is connected, 0 in mock mode",
)

LEDGER_DEMOTIONS = Counter(
    "verifier_ledger_demotions_total",
    "Permanent demotions to mock mode",
    ["reason"],
)


# --- Helpers: metrics must never break a request or a ledger call
def _quietly(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except Exception:
            logger.debug("Metric update failed", exc_info=True)
    return wrapper


@_quietly
def observe_request(start_ts: float, endpoint: str, method: str, status: str):
    REQUEST_LATENCY.labels(endpoint=endpoint).observe(time.time() - start_ts)
    REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=status).inc()


@_quietly
def inc_chat(outcome: str):
    CHAT_COUNTER.labels(outcome=outcome).inc()


@_quietly
def observe_generation(start_ts: float):
    GENERATION_LATENCY.observe(time.time() - start_ts)


@_quietly
def observe_ledger_tx(start_ts: float, operation: str, outcome: str):
    LEDGER_TX_LATENCY.labels(operation=operation).observe(time.time() - start_ts)
    LEDGER_TX_COUNTER.labels(operation=operation, outcome=outcome).inc()


@_quietly
def set_ledger_connected(connected: bool):
    LEDGER_CONNECTED.set(1 if connected else 0)


@_quietly
def inc_ledger_demotion(reason: str):
    LEDGER_DEMOTIONS.labels(reason=reason).inc()


def prometheus_metrics_response() -> Tuple[bytes, str]:
    """(body, content type) for a Prometheus scrape."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
