"""Request payloads for the gateway operations, validated before any persistence"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from utils.exception_handler import InvalidRequestError
from utils.normalizers import (
    MAX_COIN_LENGTH,
    MAX_ORDER_TYPE_LENGTH,
    MAX_STRING_LENGTH,
    normalize_amount,
    normalize_count,
    normalize_identifier,
    normalize_optional_string,
    normalize_timestamp,
)


@dataclass
class TxPayload:
    """One transfer leg as submitted by the caller"""

    coin: str
    tx_id: Optional[str] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    error: Optional[str] = None
    confirmations: int = 0
    max_confirmations: int = 0

    @classmethod
    def from_dict(cls, data: Any, leg: str) -> "TxPayload":
        if not isinstance(data, Mapping):
            raise InvalidRequestError(f"{leg} must be an object", details={"field": leg})

        try:
            return cls(
                coin=normalize_identifier(data.get("coin"), f"{leg}.coin", MAX_COIN_LENGTH),
                tx_id=normalize_optional_string(data.get("tx_id"), f"{leg}.tx_id", MAX_STRING_LENGTH),
                from_address=normalize_optional_string(data.get("from_address"), f"{leg}.from_address", MAX_STRING_LENGTH),
                to_address=normalize_optional_string(data.get("to_address"), f"{leg}.to_address", MAX_STRING_LENGTH),
                amount=normalize_amount(data.get("amount"), f"{leg}.amount"),
                created_at=normalize_timestamp(data.get("created_at"), f"{leg}.created_at"),
                error=_normalize_error(data.get("error")),
                confirmations=normalize_count(data.get("confirmations"), f"{leg}.confirmations"),
                max_confirmations=normalize_count(data.get("max_confirmations"), f"{leg}.max_confirmations"),
            )
        except ValueError as e:
            raise InvalidRequestError(str(e), details={"field": leg}) from e

    def require(self, leg: str, *names: str) -> None:
        """Reject the leg when any of the named fields is missing"""
        missing = [name for name in names if getattr(self, name) is None]
        if missing:
            raise InvalidRequestError(
                f"{leg} is missing required field(s): {', '.join(f'{leg}.{name}' for name in missing)}",
                details={"missing": [f"{leg}.{name}" for name in missing]},
            )


@dataclass
class OrderRequest:
    """Body of new_in_order / new_out_order"""

    order_id: str
    order_type: str
    in_tx: TxPayload
    out_tx: TxPayload

    @classmethod
    def from_dict(cls, data: Any) -> "OrderRequest":
        if not isinstance(data, Mapping):
            raise InvalidRequestError("Request body must be an object")

        try:
            order_id = normalize_identifier(data.get("order_id"), "order_id", MAX_STRING_LENGTH)
            order_type = normalize_identifier(data.get("order_type"), "order_type", MAX_ORDER_TYPE_LENGTH)
        except ValueError as e:
            raise InvalidRequestError(str(e)) from e

        return cls(
            order_id=order_id,
            order_type=order_type,
            in_tx=TxPayload.from_dict(data.get("in_tx"), "in_tx"),
            out_tx=TxPayload.from_dict(data.get("out_tx"), "out_tx"),
        )


@dataclass
class DepositAddressRequest:
    """Body of get_deposit_address"""

    user: str

    @classmethod
    def from_dict(cls, data: Any) -> "DepositAddressRequest":
        if not isinstance(data, Mapping):
            raise InvalidRequestError("Request body must be an object")
        try:
            return cls(user=normalize_identifier(data.get("user"), "user", MAX_STRING_LENGTH))
        except ValueError as e:
            raise InvalidRequestError(str(e)) from e


@dataclass
class AddressValidationRequest:
    """Body of validate_address; the fields are echoed back unchanged"""

    fields: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "AddressValidationRequest":
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise InvalidRequestError("Request body must be an object")
        return cls(fields=dict(data))


def _normalize_error(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)
