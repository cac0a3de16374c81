"""
Gateway HTTP endpoints
POST /v1/<operation> for each gateway operation. Success is always 200 with
the same payload as the RPC method; failures are left to the application's
exception handlers.
"""

import logging
from typing import Any, Dict, Optional

import orjson
from fastapi import APIRouter, Request

from services.gateway_service import GatewayService
from utils.exception_handler import InvalidRequestError

logger = logging.getLogger(__name__)

# Create FastAPI router
router = APIRouter(prefix="/v1", tags=["gateway"])


async def _read_body(request: Request) -> Optional[Dict[str, Any]]:
    body = await request.body()
    if not body:
        return None
    try:
        return orjson.loads(body)
    except orjson.JSONDecodeError as e:
        logger.warning(f"⚠️ INVALID_JSON: {request.url.path}: {e}")
        raise InvalidRequestError("Request body is not valid JSON") from e


def _service(request: Request) -> GatewayService:
    return request.app.state.gateway_service


@router.post("/get_deposit_address")
async def get_deposit_address(request: Request):
    return await _service(request).get_deposit_address(await _read_body(request))


@router.post("/new_in_order")
async def new_in_order(request: Request):
    return await _service(request).new_in_order(await _read_body(request))


@router.post("/new_out_order")
async def new_out_order(request: Request):
    return await _service(request).new_out_order(await _read_body(request))


@router.post("/validate_address")
async def validate_address(request: Request):
    return await _service(request).validate_address(await _read_body(request))
