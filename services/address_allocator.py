"""
Address Allocator
Returns a stable settlement-chain deposit address per external user, creating
the user's wallet and derived wallet on first use only
"""

import logging
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import Config
from database import Database
from models import DerivedWallet, Wallet
from services.address_service import AddressService
from utils.atomic_transactions import run_serializable
from utils.exception_handler import AddressDerivationError, GatewayError, InvalidRequestError

logger = logging.getLogger(__name__)


class AddressAllocator:
    """
    Find-or-create of a Wallet and its DerivedWallet in one SERIALIZABLE
    transaction.

    Two concurrent first-time calls for the same user cannot both commit a
    derived wallet: the loser hits a uniqueness violation (or a serialization
    failure) and is re-run as a fresh attempt, which then reads the winner's
    rows and returns the same address.
    """

    def __init__(
        self,
        database: Database,
        address_service: AddressService,
        source_payment: Optional[str] = None,
        settlement_payment: Optional[str] = None,
    ):
        self.database = database
        self.address_service = address_service
        self.source_payment = source_payment or Config.SOURCE_PAYMENT_METHOD
        self.settlement_payment = settlement_payment or Config.SETTLEMENT_PAYMENT_METHOD

    async def get_deposit_address(self, user: str) -> str:
        """Deposit address for ``user``, allocated on the first call"""

        async def allocate(session: AsyncSession) -> Tuple[str, bool]:
            wallet = await self._find_or_create_wallet(session, user)
            derived_wallet = await self._find_derived_wallet(session, wallet.id)
            if derived_wallet is not None:
                return derived_wallet.invoice, False

            address = await self._derive_address(wallet)
            derived_wallet = DerivedWallet(
                wallet_id=wallet.id,
                payment=self.settlement_payment,
                invoice=address,
            )
            session.add(derived_wallet)
            await session.flush()
            return derived_wallet.invoice, True

        address, created = await run_serializable(
            self.database, allocate, operation=f"get_deposit_address(user={user})"
        )

        if created:
            logger.info(f"🆕 DEPOSIT_ADDRESS_ALLOCATED: user={user} address={address}")
        else:
            logger.debug(f"🔄 DEPOSIT_ADDRESS_EXISTING: user={user} address={address}")
        return address

    async def _find_or_create_wallet(self, session: AsyncSession, user: str) -> Wallet:
        result = await session.execute(
            select(Wallet).where(
                Wallet.payment == self.source_payment,
                Wallet.invoice == user,
            )
        )
        wallet = result.scalar_one_or_none()
        if wallet is not None:
            return wallet

        wallet = Wallet(payment=self.source_payment, invoice=user)
        session.add(wallet)
        # A concurrent creator surfaces here as IntegrityError and the attempt is re-run
        await session.flush()
        logger.info(f"🆕 WALLET_CREATED: payment={self.source_payment} user={user} id={wallet.id}")
        return wallet

    async def _find_derived_wallet(self, session: AsyncSession, wallet_id: int) -> Optional[DerivedWallet]:
        result = await session.execute(
            select(DerivedWallet)
            .where(
                DerivedWallet.wallet_id == wallet_id,
                DerivedWallet.payment == self.settlement_payment,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _derive_address(self, wallet: Wallet) -> str:
        try:
            address = await self.address_service.get_cold_address(wallet)
            return self.address_service.to_checksum_address(address)
        except InvalidRequestError as e:
            raise AddressDerivationError(f"Derived address for wallet {wallet.id} is malformed") from e
        except GatewayError:
            raise
        except Exception as e:
            logger.error(f"❌ ADDRESS_DERIVATION_FAILED: wallet={wallet.id}: {e}")
            raise AddressDerivationError(f"Address derivation failed for wallet {wallet.id}: {e}") from e
