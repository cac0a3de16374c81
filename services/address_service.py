"""
Address Service
Ethereum address helpers used by the gateway: EIP-55 checksum normalisation,
the hot (payout) address and cold deposit addresses derived per wallet
"""

import asyncio
import logging
from typing import Optional

from eth_account import Account
from web3 import Web3

from config import Config
from models import Wallet
from utils.exception_handler import AddressDerivationError, InvalidRequestError

logger = logging.getLogger(__name__)

Account.enable_unaudited_hdwallet_features()


class AddressService:
    """Checksum normalisation plus hot/cold address lookup"""

    def __init__(
        self,
        cold_mnemonic: Optional[str] = None,
        hot_address: Optional[str] = None,
        hot_private_key: Optional[str] = None,
        account_path: Optional[str] = None,
    ):
        self._cold_mnemonic = cold_mnemonic if cold_mnemonic is not None else Config.ETHEREUM_COLD_MNEMONIC
        self._account_path = account_path or Config.ETHEREUM_COLD_ACCOUNT_PATH
        self._hot_address = self._resolve_hot_address(
            hot_address if hot_address is not None else Config.ETHEREUM_HOT_ADDRESS,
            hot_private_key if hot_private_key is not None else Config.ETHEREUM_HOT_PRIVATE_KEY,
        )

    @staticmethod
    def to_checksum_address(address: str) -> str:
        """
        Return the EIP-55 checksum form of an Ethereum address.

        Raises:
            InvalidRequestError: the value is not a 20-byte hex address
        """
        if not isinstance(address, str) or not address:
            raise InvalidRequestError(f"Invalid Ethereum address: {address!r}")
        try:
            return Web3.to_checksum_address(address.strip())
        except (ValueError, TypeError) as e:
            raise InvalidRequestError(f"Invalid Ethereum address: {address}") from e

    def _resolve_hot_address(self, hot_address: Optional[str], hot_private_key: Optional[str]) -> Optional[str]:
        if hot_address:
            return self.to_checksum_address(hot_address)
        if hot_private_key:
            return Account.from_key(hot_private_key).address
        return None

    def get_hot_address(self) -> str:
        """Address payouts are sent from"""
        if not self._hot_address:
            raise AddressDerivationError("Hot wallet address is not configured")
        return self._hot_address

    def _derive_cold_address(self, index: int) -> str:
        account = Account.from_mnemonic(
            self._cold_mnemonic,
            account_path=self._account_path.format(index=index),
        )
        return account.address

    async def get_cold_address(self, wallet: Wallet) -> str:
        """
        Deterministic deposit address for a wallet, derived from the cold
        mnemonic at the wallet's id. Key stretching runs off the event loop.
        """
        if not self._cold_mnemonic:
            raise AddressDerivationError("Cold wallet mnemonic is not configured")
        if wallet.id is None:
            raise AddressDerivationError("Wallet must be flushed before deriving its address")

        address = await asyncio.to_thread(self._derive_cold_address, wallet.id)
        logger.debug(f"🔑 COLD_ADDRESS_DERIVED: wallet={wallet.id} address={address}")
        return address
