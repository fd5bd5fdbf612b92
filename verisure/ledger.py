"""
Optional on-chain mirror of the product directory.

The gateway talks to a fixed contract (``addProduct`` / ``verifyProduct`` /
``markAsFake``) through web3.py. It never raises for ledger problems: every
RPC, signing or revert failure comes back as a ``LedgerOutcome`` so callers
can fall back to the directory without exception handling.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

import aiohttp
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, ProviderConnectionError, TimeExhausted, Web3Exception

from verisure.config import Settings

logger = logging.getLogger(__name__)

# EIP-1193 "User Rejected Request"
USER_REJECTED_CODE = 4001

CONTRACT_ABI = [
    {
        "inputs": [{"name": "_productId", "type": "string"}, {"name": "_name", "type": "string"}],
        "name": "addProduct",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "_productId", "type": "string"}],
        "name": "verifyProduct",
        "outputs": [{"name": "name", "type": "string"}, {"name": "isFake", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "_productId", "type": "string"}],
        "name": "markAsFake",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "internalType": "string", "name": "productId", "type": "string"},
            {"indexed": False, "internalType": "string", "name": "name", "type": "string"},
            {"indexed": True, "internalType": "address", "name": "manufacturer", "type": "address"},
        ],
        "name": "ProductAdded",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "internalType": "string", "name": "productId", "type": "string"},
            {"indexed": False, "internalType": "bool", "name": "isFake", "type": "bool"},
            {"indexed": True, "internalType": "address", "name": "admin", "type": "address"},
        ],
        "name": "ProductStatusUpdated",
        "type": "event",
    },
]

_TRANSPORT_ERRORS = (ProviderConnectionError, TimeExhausted, aiohttp.ClientError, asyncio.TimeoutError, OSError)
_LEDGER_ERRORS = (Web3Exception, ValueError) + _TRANSPORT_ERRORS


class LedgerStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    USER_REJECTED = "user_rejected"
    CONTRACT_ERROR = "contract_error"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class LedgerRecord:
    name: str
    is_fake: bool


@dataclass(frozen=True)
class LedgerOutcome:
    status: LedgerStatus
    record: Optional[LedgerRecord] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is LedgerStatus.OK


class CapabilityProvider(Protocol):
    def is_available(self) -> bool:
        ...


@dataclass(frozen=True)
class SignerCapability:
    """Ledger writes need an endpoint, a deployed contract and someone to sign."""

    rpc_url: str
    contract_address: str
    has_signer: bool

    @classmethod
    def from_settings(cls, settings: Settings) -> "SignerCapability":
        return cls(
            rpc_url=settings.LEDGER_RPC_URL,
            contract_address=settings.LEDGER_CONTRACT_ADDRESS,
            has_signer=bool(settings.LEDGER_PRIVATE_KEY or settings.LEDGER_ACCOUNT),
        )

    def is_available(self) -> bool:
        return bool(self.rpc_url and self.contract_address and self.has_signer)


def _rpc_error_code(exc: Exception) -> Optional[int]:
    response = getattr(exc, "rpc_response", None)
    if isinstance(response, dict) and isinstance(response.get("error"), dict):
        return response["error"].get("code")
    if exc.args and isinstance(exc.args[0], dict):
        return exc.args[0].get("code")
    return None


def classify_failure(exc: Exception) -> LedgerOutcome:
    """Map a web3 / transport exception onto a typed outcome."""
    if _rpc_error_code(exc) == USER_REJECTED_CODE:
        return LedgerOutcome(LedgerStatus.USER_REJECTED, error="Transaction rejected by signer")
    if isinstance(exc, _TRANSPORT_ERRORS):
        return LedgerOutcome(LedgerStatus.TRANSPORT_ERROR, error=str(exc) or type(exc).__name__)
    return LedgerOutcome(LedgerStatus.CONTRACT_ERROR, error=str(exc) or type(exc).__name__)


class LedgerGateway:
    def __init__(
        self,
        capability: CapabilityProvider,
        w3: Optional[AsyncWeb3] = None,
        contract_address: str = "",
        signer: Optional[LocalAccount] = None,
        account: str = "",
        receipt_timeout: float = 120.0,
    ):
        self._capability = capability
        self._w3 = w3
        self._contract_address = contract_address
        self._signer = signer
        self._account = account
        self._receipt_timeout = receipt_timeout
        self._contract = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerGateway":
        w3 = None
        if settings.LEDGER_RPC_URL:
            w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(settings.LEDGER_RPC_URL))

        signer = None
        if settings.LEDGER_PRIVATE_KEY:
            signer = Account.from_key(settings.LEDGER_PRIVATE_KEY.get_secret_value())

        return cls(
            capability=SignerCapability.from_settings(settings),
            w3=w3,
            contract_address=settings.LEDGER_CONTRACT_ADDRESS,
            signer=signer,
            account=settings.LEDGER_ACCOUNT,
            receipt_timeout=settings.LEDGER_RECEIPT_TIMEOUT,
        )

    def is_available(self) -> bool:
        try:
            return self._w3 is not None and self._capability.is_available()
        except Exception as e:
            logger.warning(f"Ledger capability probe failed: {e}")
            return False

    async def ping(self) -> bool:
        if self._w3 is None:
            return False
        try:
            return bool(await self._w3.is_connected())
        except _LEDGER_ERRORS as e:
            logger.warning(f"Ledger ping failed: {e}")
            return False

    def _get_contract(self):
        if self._contract is None:
            self._contract = self._w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(self._contract_address),
                abi=CONTRACT_ABI,
            )
        return self._contract

    async def _send(self, call) -> LedgerOutcome:
        """Sign and submit a state-changing call, then wait for its receipt."""
        if self._signer is not None:
            tx = await call.build_transaction({
                "from": self._signer.address,
                "nonce": await self._w3.eth.get_transaction_count(self._signer.address),
            })
            signed = self._signer.sign_transaction(tx)
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        else:
            # Node-managed account: signing (and any user prompt) happens remotely
            tx_hash = await call.transact({"from": AsyncWeb3.to_checksum_address(self._account)})

        tx_hex = AsyncWeb3.to_hex(tx_hash)
        logger.info(f"Ledger transaction sent: {tx_hex}")
        receipt = await self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)
        if receipt["status"] != 1:
            return LedgerOutcome(LedgerStatus.CONTRACT_ERROR, tx_hash=tx_hex, error="Transaction reverted")

        logger.info(f"Ledger transaction confirmed: {tx_hex}")
        return LedgerOutcome(LedgerStatus.OK, tx_hash=tx_hex)

    async def register(self, product_id: str, name: str) -> LedgerOutcome:
        if not self.is_available():
            return LedgerOutcome(LedgerStatus.UNAVAILABLE)
        try:
            return await self._send(self._get_contract().functions.addProduct(product_id, name))
        except _LEDGER_ERRORS as e:
            outcome = classify_failure(e)
            logger.warning(
                f"Ledger addProduct failed for {product_id}: {outcome.status.value}",
                extra={'product_id': product_id, 'error': outcome.error}
            )
            return outcome

    async def verify(self, product_id: str) -> LedgerOutcome:
        if not self.is_available():
            return LedgerOutcome(LedgerStatus.UNAVAILABLE)
        try:
            name, is_fake = await self._get_contract().functions.verifyProduct(product_id).call()
        except ContractLogicError as e:
            # The contract reverts for unknown ids
            logger.info(f"Product {product_id} not found on ledger: {e}")
            return LedgerOutcome(LedgerStatus.NOT_FOUND)
        except _LEDGER_ERRORS as e:
            outcome = classify_failure(e)
            logger.warning(
                f"Ledger verifyProduct failed for {product_id}: {outcome.status.value}",
                extra={'product_id': product_id, 'error': outcome.error}
            )
            return outcome

        if not name:
            return LedgerOutcome(LedgerStatus.NOT_FOUND)
        return LedgerOutcome(LedgerStatus.OK, record=LedgerRecord(name=name, is_fake=bool(is_fake)))

    async def flag_as_fake(self, product_id: str) -> LedgerOutcome:
        if not self.is_available():
            return LedgerOutcome(LedgerStatus.UNAVAILABLE)
        try:
            return await self._send(self._get_contract().functions.markAsFake(product_id))
        except _LEDGER_ERRORS as e:
            outcome = classify_failure(e)
            logger.warning(
                f"Ledger markAsFake failed for {product_id}: {outcome.status.value}",
                extra={'product_id': product_id, 'error': outcome.error}
            )
            return outcome
