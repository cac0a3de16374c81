"""
Order Store
Persists an order and its two transaction legs exactly once per external
order id, under SERIALIZABLE isolation
"""

import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import Config
from database import Database
from models import DerivedWallet, Order, OrderFlow, Tx
from services.address_service import AddressService
from utils.atomic_transactions import read_only, run_serializable
from utils.exception_handler import UnknownDepositAddressError
from utils.request_validation import TxPayload

logger = logging.getLogger(__name__)


class OrderStore:
    """
    Idempotent order creation.

    A duplicate submission is detected by the primary-key violation on the
    order id, never by a prior existence check: the insert is attempted, and
    on IntegrityError the committed order is re-read and returned.
    """

    def __init__(
        self,
        database: Database,
        address_service: AddressService,
        settlement_payment: Optional[str] = None,
    ):
        self.database = database
        self.address_service = address_service
        self.settlement_payment = settlement_payment or Config.SETTLEMENT_PAYMENT_METHOD

    async def create_order(
        self,
        order_id: str,
        flow: OrderFlow,
        order_type: str,
        in_tx: TxPayload,
        out_tx: TxPayload,
    ) -> Tuple[Order, bool]:
        """
        Insert the order with both legs, or return the existing one.

        Returns:
            (order, created) - created is False when the id was already taken

        Raises:
            InvalidRequestError: a required address is missing or malformed
            UnknownDepositAddressError: IN order to an address no derived wallet owns
            TransientStoreError: the store is unavailable or kept aborting the insert
        """
        in_fields, out_fields = self._normalize_legs(flow, in_tx, out_tx)

        async def insert(session: AsyncSession) -> Order:
            wallet_id = None
            if flow is OrderFlow.IN:
                wallet_id = await self._resolve_wallet_id(session, in_fields["to_address"])

            order = Order(
                id=order_id,
                type=order_type,
                flow=flow.value,
                wallet_id=wallet_id,
                in_tx=Tx(**in_fields),
                out_tx=Tx(**out_fields),
            )
            session.add(order)
            await session.flush()
            return order

        try:
            order = await run_serializable(
                self.database,
                insert,
                operation=f"create_order(order_id={order_id})",
                retry_on_unique_violation=False,
            )
        except IntegrityError as e:
            existing = await self.get_order(order_id)
            if existing is None:
                # Not a duplicate order id
                raise
            logger.info(
                f"🔄 ORDER_DUPLICATE: order_id={order_id} flow={existing.flow} "
                f"job_id={existing.job_id} (returning existing order)"
            )
            logger.debug(f"ORDER_DUPLICATE cause: {e.orig}")
            return existing, False

        logger.info(
            f"🆕 ORDER_CREATED: order_id={order.id} flow={order.flow} type={order.type} "
            f"job_id={order.job_id} wallet_id={order.wallet_id}"
        )
        return order, True

    async def get_order(self, order_id: str) -> Optional[Order]:
        """Order with both legs loaded, or None"""

        async def load(session: AsyncSession) -> Optional[Order]:
            return await session.get(Order, order_id)

        return await read_only(self.database, load, operation=f"get_order(order_id={order_id})")

    async def _resolve_wallet_id(self, session: AsyncSession, to_address: str) -> int:
        result = await session.execute(
            select(DerivedWallet.wallet_id).where(
                DerivedWallet.payment == self.settlement_payment,
                DerivedWallet.invoice == to_address,
            )
        )
        wallet_id = result.scalar_one_or_none()
        if wallet_id is None:
            logger.warning(f"⚠️ UNKNOWN_DEPOSIT_ADDRESS: {to_address}")
            raise UnknownDepositAddressError(to_address)
        return wallet_id

    def _normalize_legs(
        self, flow: OrderFlow, in_tx: TxPayload, out_tx: TxPayload
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Checksum the settlement-chain leg; store the other leg verbatim.

        IN: the inbound leg arrives on the settlement chain.
        OUT: the outbound leg leaves on it; its from_address may still be
        unassigned.
        """
        checksum = self.address_service.to_checksum_address

        if flow is OrderFlow.IN:
            in_tx.require("in_tx", "from_address", "to_address")
            in_fields = _tx_fields(
                in_tx,
                from_address=checksum(in_tx.from_address),
                to_address=checksum(in_tx.to_address),
            )
            out_fields = _tx_fields(out_tx)
        else:
            out_tx.require("out_tx", "to_address")
            in_fields = _tx_fields(in_tx)
            out_fields = _tx_fields(
                out_tx,
                from_address=checksum(out_tx.from_address) if out_tx.from_address is not None else None,
                to_address=checksum(out_tx.to_address),
            )

        return in_fields, out_fields


def _tx_fields(payload: TxPayload, **overrides: Any) -> Dict[str, Any]:
    fields = {
        "coin": payload.coin,
        "tx_id": payload.tx_id,
        "from_address": payload.from_address,
        "to_address": payload.to_address,
        "amount": payload.amount,
        "tx_created_at": payload.created_at,
        "error": payload.error,
        "confirmations": payload.confirmations,
        "max_confirmations": payload.max_confirmations,
    }
    fields.update(overrides)
    return fields
