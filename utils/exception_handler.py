"""
Exception Handler Module
Provides the gateway exception hierarchy and the RPC error logging decorator
"""

import logging
import functools
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Base class for errors surfaced to gateway callers"""

    status_code = 500
    code = "gateway_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidRequestError(GatewayError):
    """Malformed caller input, rejected before any persistence"""

    status_code = 400
    code = "invalid_request"


class ReferentialError(GatewayError):
    """Request references a record that does not exist"""

    status_code = 404
    code = "not_found"


class UnknownDepositAddressError(ReferentialError):
    """Inbound order addressed to a deposit address no wallet owns"""

    code = "unknown_deposit_address"

    def __init__(self, address: str):
        super().__init__(
            f"No derived wallet owns deposit address {address}",
            details={"to_address": address},
        )
        self.address = address


class TransientStoreError(GatewayError):
    """Relational store unavailable or transaction retry budget exhausted"""

    status_code = 503
    code = "store_unavailable"


class QueueUnavailableError(GatewayError):
    """Job queue could not be reached while scheduling a job"""

    status_code = 503
    code = "queue_unavailable"


class AddressDerivationError(GatewayError):
    """Address derivation collaborator failed"""

    status_code = 500
    code = "address_derivation_failed"


class BookerConnectionError(GatewayError):
    """Connection to the Booker peer could not be established"""

    status_code = 503
    code = "booker_unavailable"


def log_rpc_errors(func: Callable) -> Callable:
    """
    Decorator for RPC entry points.
    Logs any exception with its traceback and re-raises it so the RPC
    transport can turn it into an error response.
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> Any:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            logger.error(f"❌ RPC_ERROR in {func.__name__}: {type(e).__name__}: {e}", exc_info=True)
            raise

    return wrapper
