from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

logger = logging.getLogger(__name__)

ERC20_ABI = [
    {"name": "transfer", "type": "function", "stateMutability": "nonpayable",
     "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}],
     "outputs": [{"name": "", "type": "bool"}]},
    {"name": "balanceOf", "type": "function", "stateMutability": "view",
     "inputs": [{"name": "owner", "type": "address"}],
     "outputs": [{"name": "", "type": "uint256"}]},
    {"name": "decimals", "type": "function", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "uint8"}]},
]


class TransferError(Exception):
    pass


class TransferNetworkError(TransferError):
    """Nothing was broadcast; safe to treat as a definitive failure."""


class TransferRejected(TransferError):
    """The chain refused or reverted the transfer."""


class TransferTimeout(TransferError):
    """Outcome unknown: the transfer may still land."""

    def __init__(self, message: str = "", tx_ref: Optional[str] = None):
        super().__init__(message)
        self.tx_ref = tx_ref


@dataclass(frozen=True)
class TransferReceipt:
    tx_ref: str


class MockTransmitter:
    """
    In-process stand-in for the token contract (TRANSMITTER_MODE=mock).
    Hashes are deterministic per (destination, amount, sequence).
    """
    def __init__(self, treasury_balance: Decimal = Decimal("1000000")):
        self.treasury_balance = treasury_balance
        self._seq = 0

    async def transfer(self, destination: str, amount: Decimal) -> TransferReceipt:
        if amount > self.treasury_balance:
            raise TransferRejected("insufficient treasury balance")
        self._seq += 1
        digest = hashlib.sha256(f"{destination}:{amount}:{self._seq}".encode()).hexdigest()
        self.treasury_balance -= amount
        return TransferReceipt(tx_ref="0x" + digest)

    async def balance_of(self, owner: Optional[str] = None) -> Decimal:
        return self.treasury_balance


class Web3Transmitter:
    """ERC-20 transfers from the treasury key over JSON-RPC (TRANSMITTER_MODE=web3)."""

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        token_address: str,
        decimals: Optional[int] = None,
        max_fee_gwei: Decimal = Decimal("50"),
        max_priority_fee_gwei: Decimal = Decimal("30"),
        receipt_timeout_sec: float = 120.0,
    ):
        self.w3 = Web3(Web3.HTTPProvider(rpc_url))
        self.account = self.w3.eth.account.from_key(private_key)
        self.contract = self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
        self._decimals = decimals
        self.max_fee_gwei = max_fee_gwei
        self.max_priority_fee_gwei = max_priority_fee_gwei
        self.receipt_timeout_sec = receipt_timeout_sec

    @property
    def treasury_address(self) -> str:
        return self.account.address

    def _decimals_value(self) -> int:
        if self._decimals is None:
            self._decimals = int(self.contract.functions.decimals().call())
        return self._decimals

    def _send(self, destination: str, amount: Decimal) -> TransferReceipt:
        units = int(amount.scaleb(self._decimals_value()))
        try:
            tx = self.contract.functions.transfer(Web3.to_checksum_address(destination), units).build_transaction({
                "from": self.account.address,
                "nonce": self.w3.eth.get_transaction_count(self.account.address, "pending"),
                "maxFeePerGas": Web3.to_wei(self.max_fee_gwei, "gwei"),
                "maxPriorityFeePerGas": Web3.to_wei(self.max_priority_fee_gwei, "gwei"),
            })
            signed = self.account.sign_transaction(tx)
        except ContractLogicError as e:
            raise TransferRejected(f"transfer would revert: {e}") from e
        except OSError as e:
            raise TransferNetworkError(f"rpc unreachable before broadcast: {e}") from e
        except Web3Exception as e:
            raise TransferRejected(str(e)) from e

        try:
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except OSError as e:
            # the node may have accepted the raw tx before the connection dropped
            raise TransferTimeout(f"broadcast outcome unknown: {e}") from e
        except Web3Exception as e:
            raise TransferRejected(f"node refused transaction: {e}") from e
        tx_ref = Web3.to_hex(tx_hash)

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout_sec)
        except (TimeExhausted, OSError) as e:
            raise TransferTimeout(f"no receipt for {tx_ref}: {e}", tx_ref=tx_ref) from e
        if receipt["status"] != 1:
            raise TransferRejected(f"transaction {tx_ref} reverted")
        return TransferReceipt(tx_ref=tx_ref)

    async def transfer(self, destination: str, amount: Decimal) -> TransferReceipt:
        return await asyncio.to_thread(self._send, destination, amount)

    def _balance(self, owner: str) -> Decimal:
        raw = self.contract.functions.balanceOf(Web3.to_checksum_address(owner)).call()
        return Decimal(int(raw)).scaleb(-self._decimals_value())

    async def balance_of(self, owner: Optional[str] = None) -> Decimal:
        return await asyncio.to_thread(self._balance, owner or self.account.address)


def build_transmitter(settings):
    mode = settings.TRANSMITTER_MODE.lower()
    if mode == "web3":
        if not (settings.RPC_URL and settings.PRIVATE_KEY and settings.TOKEN_ADDRESS):
            raise ValueError("TRANSMITTER_MODE=web3 needs RPC_URL, PRIVATE_KEY and TOKEN_ADDRESS")
        return Web3Transmitter(
            settings.RPC_URL,
            settings.PRIVATE_KEY,
            settings.TOKEN_ADDRESS,
            decimals=settings.TOKEN_DECIMALS,
            max_fee_gwei=settings.MAX_FEE_GWEI,
            max_priority_fee_gwei=settings.MAX_PRIORITY_FEE_GWEI,
            # give up on the receipt before the orchestrator's timeout so the tx hash is kept
            receipt_timeout_sec=max(1.0, settings.TRANSFER_TIMEOUT_SEC - 5),
        )
    if mode != "mock":
        raise ValueError(f"unknown TRANSMITTER_MODE {settings.TRANSMITTER_MODE!r}")
    logger.warning("using mock transmitter; no tokens will move")
    return MockTransmitter(settings.MOCK_TREASURY_BALANCE)
