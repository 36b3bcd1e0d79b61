"""
Bond token minting with web3.py.

The confirmation workflow talks to the chain only through the
:class:`MintingAdapter` protocol.  Every failure surfaces as a
:class:`MintingError` subclass whose ``kind`` ends up in the log record, so
operators can tell a mis-configured contract from an empty operator account.

:class:`Web3MintingAdapter` calls ``mint(address,uint256)`` on the
opportunity's bond contract.  Transactions are signed in-process with the
operator key (``eth_account``) and submitted with ``eth_sendRawTransaction``,
so any public RPC endpoint will do.

There is no retry loop.  A mint that timed out may still land on chain, and a
second attempt would issue the bonds twice.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Optional, Protocol, TypeVar

import aiohttp
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TimeExhausted, Web3Exception

from investment_platform.core.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

# The part of the BondToken contract the workflow calls.
BOND_TOKEN_ABI = [
    {
        "type": "function",
        "name": "mint",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [],
    },
]

# Errors raised by the node or the HTTP transport underneath web3.
CHAIN_EXCEPTIONS = (Web3Exception, ValueError, aiohttp.ClientError, asyncio.TimeoutError, OSError)


# ────────────────────────────────────────────────────────────────────────────
# Errors
# ────────────────────────────────────────────────────────────────────────────


class MintingError(Exception):
    """Base class for every minting failure."""

    kind = "minting_error"


class InvalidMintRequestError(MintingError):
    """The request can never succeed as given (e.g. zero bonds)."""

    kind = "invalid_request"


class InvalidAddressError(InvalidMintRequestError):
    kind = "invalid_address"


class ContractNotFoundError(MintingError):
    """No bytecode at the contract address on the configured network."""

    kind = "contract_not_found"


class InsufficientFundsError(MintingError):
    """The operator account cannot pay for gas."""

    kind = "insufficient_funds"


class ChainError(MintingError):
    """Transport failure, RPC error, or a reverted transaction."""

    kind = "chain_error"


# ────────────────────────────────────────────────────────────────────────────
# Interface
# ────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MintResult:
    tx_hash: str
    contract_address: str
    wallet_address: str
    explorer_url: str


class MintingAdapter(Protocol):
    async def mint(
        self, contract_address: str, to_wallet: str, bond_count: int
    ) -> MintResult:
        ...


def is_valid_address(value: Optional[str]) -> bool:
    return bool(value) and ADDRESS_RE.match(value) is not None


# ────────────────────────────────────────────────────────────────────────────
# web3.py implementation
# ────────────────────────────────────────────────────────────────────────────


class Web3MintingAdapter:
    """
    Mints bond tokens from a locally held operator key.

    Parameters
    ----------
    rpc_url : str
        JSON-RPC endpoint of the network.  It only relays signed
        transactions and never needs the key.
    private_key : str
        Operator key.  The account owns the bond contracts and pays gas.
    explorer_url : str
        Block explorer base URL, used to build the transaction link.
    chain_id : int, optional
        Signed into every transaction (EIP-155).  Asked from the node when
        not given.
    timeout : float
        Per-request HTTP timeout in seconds.
    receipt_timeout : float
        How long to poll for the receipt before returning the submitted hash.
    poll_interval : float
        Seconds between receipt polls.
    w3 : AsyncWeb3, optional
        Injected client (tests pass one built on an in-memory provider).
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        *,
        explorer_url: str,
        chain_id: Optional[int] = None,
        timeout: float = 15.0,
        receipt_timeout: float = 60.0,
        poll_interval: float = 2.0,
        w3: Optional[AsyncWeb3] = None,
    ):
        self.rpc_url = rpc_url
        self.explorer_url = explorer_url.rstrip("/")
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self._account = Account.from_key(private_key)
        self.operator_address = self._account.address
        self._owns_client = w3 is None
        self._w3 = w3 or AsyncWeb3(
            AsyncHTTPProvider(
                rpc_url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)}
            )
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._w3.provider.disconnect()

    async def _chain(self, action: str, awaitable: Awaitable[T]) -> T:
        """Await a web3 call, turning node and transport failures into MintingErrors.

        ``TimeExhausted`` from receipt polling passes through untouched.
        """
        try:
            return await awaitable
        except TimeExhausted:
            raise
        except CHAIN_EXCEPTIONS as exc:
            if "insufficient funds" in str(exc).lower():
                raise InsufficientFundsError(
                    f"{action} failed: operator {self.operator_address} cannot pay for gas ({exc})"
                ) from exc
            raise ChainError(f"{action} failed: {exc}") from exc

    # ── MintingAdapter ──

    async def mint(
        self, contract_address: str, to_wallet: str, bond_count: int
    ) -> MintResult:
        if not is_valid_address(contract_address):
            raise InvalidAddressError(f"Invalid contract address: {contract_address!r}")
        if not is_valid_address(to_wallet):
            raise InvalidAddressError(f"Invalid wallet address: {to_wallet!r}")
        if bond_count <= 0:
            raise InvalidMintRequestError(f"Bond count must be positive, got {bond_count}")

        eth = self._w3.eth
        contract_checksum = AsyncWeb3.to_checksum_address(contract_address)
        wallet_checksum = AsyncWeb3.to_checksum_address(to_wallet)

        code = await self._chain("getCode", eth.get_code(contract_checksum))
        if not code:
            raise ContractNotFoundError(
                f"No contract deployed at {contract_address} on {self.rpc_url}"
            )

        balance = await self._chain("getBalance", eth.get_balance(self.operator_address))
        if balance == 0:
            raise InsufficientFundsError(
                f"Operator account {self.operator_address} has no balance for gas"
            )

        contract = eth.contract(address=contract_checksum, abi=BOND_TOKEN_ABI)
        mint_call = contract.functions.mint(wallet_checksum, bond_count)
        gas = await self._chain(
            "estimateGas", mint_call.estimate_gas({"from": self.operator_address})
        )
        gas_price = await self._chain("gasPrice", eth.gas_price)
        cost = gas * gas_price
        if balance < cost:
            raise InsufficientFundsError(
                f"Operator account {self.operator_address} holds {balance} wei "
                f"but the mint needs about {cost} wei of gas"
            )

        chain_id = self.chain_id
        if chain_id is None:
            chain_id = await self._chain("chainId", eth.chain_id)
        nonce = await self._chain(
            "getTransactionCount", eth.get_transaction_count(self.operator_address, "pending")
        )
        tx = await self._chain(
            "buildTransaction",
            mint_call.build_transaction(
                {
                    "from": self.operator_address,
                    "nonce": nonce,
                    "gas": gas,
                    "gasPrice": gas_price,
                    "chainId": chain_id,
                }
            ),
        )
        signed = self._account.sign_transaction(tx)
        sent = await self._chain(
            "sendRawTransaction", eth.send_raw_transaction(signed.raw_transaction)
        )
        tx_hash = AsyncWeb3.to_hex(sent)

        logger.info(
            "Mint transaction %s submitted: %d bonds to %s",
            tx_hash,
            bond_count,
            to_wallet,
            extra={"tx_hash": tx_hash, "step": "mint"},
        )

        try:
            receipt = await self._chain(
                "getTransactionReceipt",
                eth.wait_for_transaction_receipt(
                    sent, timeout=self.receipt_timeout, poll_latency=self.poll_interval
                ),
            )
        except TimeExhausted:
            logger.warning(
                "No receipt for %s after %.0fs; returning the submitted hash",
                tx_hash,
                self.receipt_timeout,
                extra={"tx_hash": tx_hash, "step": "mint"},
            )
        else:
            if receipt.get("status") == 0:
                raise ChainError(f"Mint transaction {tx_hash} reverted")

        return MintResult(
            tx_hash=tx_hash,
            contract_address=contract_address,
            wallet_address=to_wallet,
            explorer_url=f"{self.explorer_url}/tx/{tx_hash}",
        )


def build_minting_adapter(config: Settings) -> Optional[Web3MintingAdapter]:
    """Return the configured adapter, or ``None`` when minting is disabled."""
    if not config.BLOCKCHAIN_ENABLED:
        return None
    adapter = Web3MintingAdapter(
        config.rpc_url,
        config.BLOCKCHAIN_PRIVATE_KEY,
        explorer_url=config.explorer_url,
        chain_id=config.chain_id,
        timeout=config.BLOCKCHAIN_RPC_TIMEOUT,
        receipt_timeout=config.BLOCKCHAIN_RECEIPT_TIMEOUT,
        poll_interval=config.BLOCKCHAIN_RECEIPT_POLL_INTERVAL,
    )
    logger.info(
        "Minting on %s via %s from operator %s",
        config.BLOCKCHAIN_NETWORK,
        config.rpc_url,
        adapter.operator_address,
    )
    return adapter
