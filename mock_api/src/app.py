"""
FastAPI mock of the EnergyGrid ``POST /device/real/query`` endpoint.

Enforces the same contract as the real service so the client can be run and
tested end to end without network access:

- ``timestamp`` and ``signature`` headers must be present and the signature
  must equal ``md5(path + token + timestamp)`` (401 otherwise). Compared in
  constant time via secrets.compare_digest.
- At most one accepted request per ``rate_limit_s`` (429 otherwise, with a
  ``Retry-After`` header).
- ``sn_list`` must be a non-empty list of at most ``max_batch_size`` serials
  (400 otherwise).
- Success answers ``{"data": [...]}`` with one record per requested serial,
  in request order.

Run locally with any ASGI server, e.g. ``uvicorn mock_api.src.app:app``.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

import logging
import math
import os
import random
import secrets
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from grid_client.src.signing import create_signature

logger = logging.getLogger(__name__)

QUERY_PATH = "/device/real/query"
DEFAULT_SECRET_TOKEN = "interview_token_123"

router = APIRouter(tags=["device"])


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class QueryPayload(BaseModel):
    """Request body: serial numbers to query."""

    sn_list: list[str]


class DeviceReading(BaseModel):
    """One simulated device reading."""

    sn: str
    power: str
    status: str
    last_updated: str


class QueryResponse(BaseModel):
    """Success envelope."""

    data: list[DeviceReading]


# ---------------------------------------------------------------------------
# Rate gate
# ---------------------------------------------------------------------------


class RequestGate:
    """Admits at most one request per ``interval_s``.

    Args:
        interval_s: Minimum seconds between two admitted requests.
        clock: Monotonic clock in seconds.
    """

    def __init__(self, interval_s: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._interval_s = interval_s
        self._clock = clock
        self._last_admitted: float | None = None

    def try_admit(self) -> float:
        """Admit the request and return 0, or return the seconds left to wait."""
        now = self._clock()
        if self._last_admitted is not None:
            remaining = self._interval_s - (now - self._last_admitted)
            if remaining > 0:
                return remaining
        self._last_admitted = now
        return 0.0


# ---------------------------------------------------------------------------
# Route
# ---------------------------------------------------------------------------


def _simulate_reading(sn: str, rng: random.Random) -> DeviceReading:
    return DeviceReading(
        sn=sn,
        power=f"{rng.uniform(0.5, 5.0):.2f} kW",
        status=rng.choice(("Online", "Offline")),
        last_updated=datetime.now(tz=UTC).isoformat(),
    )


@router.post(QUERY_PATH, response_model=QueryResponse)
async def query_devices(
    request: Request,
    timestamp: Annotated[str | None, Header()] = None,
    signature: Annotated[str | None, Header()] = None,
) -> QueryResponse | JSONResponse:
    """Return simulated telemetry for the requested serial numbers.

    Raises:
        HTTPException: 401 on a missing or invalid signature, 400 on an
            invalid ``sn_list``.
    """
    state = request.app.state

    if not timestamp or not signature:
        raise HTTPException(status_code=401, detail="Missing timestamp or signature header.")
    expected = create_signature(QUERY_PATH, state.secret_token, timestamp)
    if not secrets.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Rejected request with invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature.")

    remaining = state.gate.try_admit()
    if remaining > 0:
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many requests."},
            headers={"Retry-After": str(math.ceil(remaining))},
        )

    try:
        payload = QueryPayload.model_validate_json(await request.body())
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail="Body must be {'sn_list': [...]}.") from exc

    if not payload.sn_list:
        raise HTTPException(status_code=400, detail="sn_list must not be empty.")
    if len(payload.sn_list) > state.max_batch_size:
        raise HTTPException(
            status_code=400,
            detail=f"sn_list has {len(payload.sn_list)} entries; "
            f"maximum is {state.max_batch_size}.",
        )

    return QueryResponse(data=[_simulate_reading(sn, state.rng) for sn in payload.sn_list])


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    *,
    secret_token: str = DEFAULT_SECRET_TOKEN,
    rate_limit_s: float = 1.0,
    max_batch_size: int = 10,
    seed: int | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> FastAPI:
    """Build a mock EnergyGrid app.

    Args:
        secret_token: Shared secret used to verify signatures.
        rate_limit_s: Minimum seconds between admitted requests.
        max_batch_size: Largest accepted ``sn_list``.
        seed: Seed for the simulated readings (``None`` = nondeterministic).
        clock: Monotonic clock used by the rate gate.
    """
    app = FastAPI(
        title="EnergyGrid Mock API",
        description="Signed, rate-limited device telemetry query endpoint.",
        version="0.1.0",
    )
    app.state.secret_token = secret_token
    app.state.max_batch_size = max_batch_size
    app.state.gate = RequestGate(rate_limit_s, clock)
    app.state.rng = random.Random(seed)
    app.include_router(router)
    return app


app = create_app(
    secret_token=os.environ.get("SECRET_TOKEN", DEFAULT_SECRET_TOKEN),
    rate_limit_s=int(os.environ.get("MOCK_RATE_LIMIT_MS", "1000")) / 1000.0,
    max_batch_size=int(os.environ.get("MOCK_MAX_BATCH_SIZE", "10")),
)
