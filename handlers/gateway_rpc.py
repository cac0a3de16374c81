"""
Gateway RPC methods
JSON-RPC callables served over the Booker connection. Errors are logged with
their traceback and re-raised so the transport answers with an error object.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from services.gateway_service import GatewayService
from utils.exception_handler import log_rpc_errors

logger = logging.getLogger(__name__)

RpcMethod = Callable[[GatewayService, Optional[Dict[str, Any]]], Awaitable[Dict[str, Any]]]


@log_rpc_errors
async def get_deposit_address_rpc(service: GatewayService, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return await service.get_deposit_address(params)


@log_rpc_errors
async def new_in_order_rpc(service: GatewayService, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return await service.new_in_order(params)


@log_rpc_errors
async def new_out_order_rpc(service: GatewayService, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return await service.new_out_order(params)


@log_rpc_errors
async def validate_address_rpc(service: GatewayService, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return await service.validate_address(params)


RPC_METHODS: Dict[str, RpcMethod] = {
    "get_deposit_address": get_deposit_address_rpc,
    "new_in_order": new_in_order_rpc,
    "new_out_order": new_out_order_rpc,
    "validate_address": validate_address_rpc,
}
