"""
Gateway Service
Entry-point logic shared by the RPC methods and the HTTP endpoints: validate
the request body, run the allocator or the order store and job coordinator,
shape the response
"""

import logging
from typing import Any, Dict, Optional

from config import Config
from database import Database
from models import OrderFlow
from services.address_allocator import AddressAllocator
from services.address_service import AddressService
from services.job_coordinator import JobCoordinator
from services.job_queue import RedisJobQueue
from services.order_store import OrderStore
from utils.request_validation import AddressValidationRequest, DepositAddressRequest, OrderRequest

logger = logging.getLogger(__name__)


class GatewayService:
    """The four gateway operations over injected process-scoped components"""

    def __init__(
        self,
        allocator: AddressAllocator,
        order_store: OrderStore,
        coordinator: JobCoordinator,
        address_service: AddressService,
    ):
        self.allocator = allocator
        self.order_store = order_store
        self.coordinator = coordinator
        self.address_service = address_service

    @classmethod
    def build(
        cls,
        database: Database,
        queue: RedisJobQueue,
        address_service: AddressService,
    ) -> "GatewayService":
        """Wire the components around shared database, queue and address service"""
        return cls(
            allocator=AddressAllocator(database, address_service),
            order_store=OrderStore(database, address_service),
            coordinator=JobCoordinator(queue),
            address_service=address_service,
        )

    async def get_deposit_address(self, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        request = DepositAddressRequest.from_dict(params)
        address = await self.allocator.get_deposit_address(request.user)
        return {"user": request.user, "deposit_address": address}

    async def new_in_order(self, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Record a deposit order and make sure its settlement job exists"""
        request = OrderRequest.from_dict(params)
        await self._intake(request, OrderFlow.IN)
        return {}

    async def new_out_order(self, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Record a payout order and make sure its settlement job exists.

        The response tells the caller what the gateway will send from, not
        what was submitted.
        """
        request = OrderRequest.from_dict(params)
        await self._intake(request, OrderFlow.OUT)
        return {
            "coin": Config.OUT_ORDER_COIN,
            "amount": "0",
            "from_address": self.address_service.get_hot_address(),
            "max_confirmations": Config.ETHEREUM_REQUIRED_CONFIRMATIONS,
        }

    async def validate_address(self, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        # Every address is accepted
        request = AddressValidationRequest.from_dict(params)
        return {**request.fields, "is_valid": True}

    async def _intake(self, request: OrderRequest, flow: OrderFlow) -> None:
        order, created = await self.order_store.create_order(
            request.order_id,
            flow,
            request.order_type,
            request.in_tx,
            request.out_tx,
        )
        action = await self.coordinator.ensure_job(order)
        logger.info(
            f"📦 ORDER_INTAKE: order_id={order.id} flow={flow.value} "
            f"created={created} job={action.value}"
        )
