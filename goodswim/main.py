import logging
import math
import os
import sys
from pathlib import Path

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

_project_root = Path(__file__).resolve().parents[1]
if str(_project_root) not in sys.path:
    sys.path.append(str(_project_root))

try:
    from goodswim import app_context
    from goodswim.app.billing.errors import BillingError
    from goodswim.app.feature_gates import FeatureGateError
    from goodswim.app.routes.billing import router as billing_router
except ModuleNotFoundError as exc:
    if exc.name != "goodswim":
        raise
    import app_context  # type: ignore[no-redef]
    from app.billing.errors import BillingError  # type: ignore[no-redef]
    from app.feature_gates import FeatureGateError  # type: ignore[no-redef]
    from app.routes.billing import router as billing_router  # type: ignore[no-redef]


load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("billing")


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "goodswim"),
    user=os.getenv("DB_USER", "goodswim"),
    password=os.getenv("DB_PASSWORD", "goodswim"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]


def get_conn():
    return psycopg2.connect(**DB_CFG)


app_context.configure(get_conn=get_conn)

app = FastAPI(title="GoodSwim Billing API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing_router)


@app.exception_handler(BillingError)
async def handle_billing_error(request: Request, exc: BillingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Billing request %s failed: %s %s", request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=dict(exc.payload))


@app.exception_handler(FeatureGateError)
async def handle_feature_gate_error(request: Request, exc: FeatureGateError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=dict(exc.payload))


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    missing = sorted({str(error["loc"][-1]) for error in exc.errors() if error.get("loc")})
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "invalid_request",
            "message": f"Missing or invalid fields: {', '.join(missing)}" if missing else "Invalid request.",
        },
    )


@app.get("/healthz")
def healthz():
    return {"status": "ok"}

# run: uvicorn goodswim.main:app --host 127.0.0.1 --port 8000 --reload
