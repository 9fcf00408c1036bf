"""Identities and ledger access.

* :func:`load_identities` turns ``privatekeys.txt`` into :class:`Identity`
  handles (signing capability + public address).
* :func:`load_target_addresses` reads the recipient list for transfers.
* :class:`LedgerClient` talks JSON-RPC to an EVM node over aiohttp,
  optionally through a proxy.  Errors are raised as
  :class:`LedgerRpcError` so the retry executor can see them.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_utils import is_address, to_checksum_address

from core.config import BotSettings
from core.utils import load_lines, mask_address, mask_proxy

logger = logging.getLogger(__name__)

# keccak("balanceOf(address)")[:4]
ERC20_BALANCE_OF = "0x70a08231"


class NoCredentialsError(RuntimeError):
    """No usable private keys were found at startup."""


class LedgerRpcError(RuntimeError):
    """A JSON-RPC call failed (transport, HTTP status or RPC error)."""


@dataclass(frozen=True)
class Identity:
    """A credentialed wallet the farm acts on behalf of.

    Attributes:
        address: Checksummed public address.
        account: ``eth_account`` signer; never logged.
    """

    address: str
    account: LocalAccount = field(repr=False, compare=False)

    @classmethod
    def from_key(cls, private_key: str) -> "Identity":
        account = Account.from_key(private_key)
        return cls(address=account.address, account=account)

    @property
    def short_address(self) -> str:
        return mask_address(self.address)

    def sign_message(self, message: str) -> str:
        """Sign *message* (EIP-191) and return the ``0x`` signature."""
        signed = self.account.sign_message(encode_defunct(text=message))
        return "0x" + bytes(signed.signature).hex()

    def sign_transaction(self, tx: Dict[str, Any]) -> str:
        """Sign a transaction dict and return the raw ``0x`` payload."""
        signed = self.account.sign_transaction(tx)
        return "0x" + bytes(signed.raw_transaction).hex()


def load_identities(filepath: str) -> List[Identity]:
    """Load identities from a private key file.

    Only lines starting with ``0x`` are considered; keys that fail to
    parse are logged (masked) and skipped.  Duplicate addresses are
    dropped, order is preserved.

    Args:
        filepath: Path to ``privatekeys.txt``.

    Returns:
        Identities in file order (possibly empty).
    """
    identities: List[Identity] = []
    seen = set()
    for lineno, line in enumerate(load_lines(filepath), start=1):
        if not line.startswith("0x"):
            continue
        try:
            identity = Identity.from_key(line)
        except Exception as e:
            logger.warning(
                "Skipping invalid private key on line %d of %s: %s",
                lineno, filepath, type(e).__name__,
            )
            continue
        if identity.address in seen:
            continue
        seen.add(identity.address)
        identities.append(identity)
    return identities


def load_target_addresses(filepath: str) -> List[str]:
    """Load valid EVM addresses (checksummed) from *filepath*."""
    addresses = []
    for line in load_lines(filepath):
        if is_address(line):
            addresses.append(to_checksum_address(line))
        else:
            logger.debug("Ignoring invalid address %s", line)
    return addresses


class LedgerClient:
    """
    JSON-RPC client for an EVM node.

    One client is created per identity per cycle so that every identity
    gets a fresh connection through its selected proxy.
    """

    def __init__(
        self,
        rpc_url: str,
        proxy: Optional[str] = None,
        timeout_seconds: float = 30.0,
    ):
        """
        Initialize the LedgerClient.

        Args:
            rpc_url: Node JSON-RPC endpoint.
            proxy: Optional proxy URL every request is routed through.
            timeout_seconds: Total timeout per request.
        """
        self.rpc_url = rpc_url
        self.proxy = proxy
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def _rpc_call(self, method: str, params: Optional[list] = None) -> Any:
        """
        Execute a JSON-RPC call and return its ``result``.

        Raises:
            LedgerRpcError: On connection failure, non-200 status or an
                RPC-level error object.
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            session = await self._get_session()
            async with session.post(self.rpc_url, json=payload, proxy=self.proxy) as response:
                if response.status != 200:
                    raise LedgerRpcError(f"RPC HTTP error {response.status} on {method}")
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise LedgerRpcError(
                f"RPC connection failed ({method} via {mask_proxy(self.proxy)}): {e}"
            ) from e

        if data.get("error"):
            raise LedgerRpcError(f"RPC error {method}: {data['error']}")
        return data.get("result")

    async def chain_id(self) -> int:
        return int(await self._rpc_call("eth_chainId"), 16)

    async def get_balance(self, address: str) -> int:
        """Native balance of *address* in wei."""
        return int(await self._rpc_call("eth_getBalance", [address, "latest"]), 16)

    async def erc20_balance(self, token: str, address: str) -> int:
        """``balanceOf(address)`` on the ERC-20 contract *token*, in base units."""
        data = ERC20_BALANCE_OF + address.lower().replace("0x", "").rjust(64, "0")
        result = await self._rpc_call("eth_call", [{"to": token, "data": data}, "latest"])
        return int(result, 16) if result and result != "0x" else 0

    async def get_transaction_count(self, address: str) -> int:
        return int(
            await self._rpc_call("eth_getTransactionCount", [address, "pending"]), 16,
        )

    async def gas_price(self) -> int:
        return int(await self._rpc_call("eth_gasPrice"), 16)

    async def send_raw_transaction(self, raw_tx: str) -> str:
        """Broadcast a signed transaction and return its hash."""
        return await self._rpc_call("eth_sendRawTransaction", [raw_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self._rpc_call("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: float = 120.0,
        poll_interval: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> Dict[str, Any]:
        """Poll until *tx_hash* is mined.

        Raises:
            LedgerRpcError: If the transaction reverted or no receipt
                showed up within *timeout* seconds.
        """
        polls = max(1, int(timeout / poll_interval))
        for _ in range(polls):
            receipt = await self.get_transaction_receipt(tx_hash)
            if receipt:
                if receipt.get("status") == "0x0":
                    raise LedgerRpcError(f"Transaction {tx_hash} reverted")
                return receipt
            await sleep(poll_interval)
        raise LedgerRpcError(f"No receipt for {tx_hash} after {timeout:.0f}s")

    async def close(self):
        if self._session:
            await self._session.close()


async def open_ledger(settings: BotSettings, proxy: Optional[str] = None) -> LedgerClient:
    """Connect to the configured network through *proxy*.

    The connection is verified with ``eth_chainId``; a wrong chain or an
    unreachable node raises and the client is closed.

    Raises:
        LedgerRpcError: If the node cannot be reached or reports a
            different chain id.
    """
    client = LedgerClient(
        settings.network.rpc_url,
        proxy=proxy,
        timeout_seconds=settings.timing.request_timeout_ms / 1000.0,
    )
    try:
        chain_id = await client.chain_id()
        if chain_id != settings.network.chain_id:
            raise LedgerRpcError(
                f"Connected to chain {chain_id}, expected {settings.network.chain_id}"
            )
    except Exception:
        await client.close()
        raise
    if proxy:
        logger.info("Using proxy: %s...", mask_proxy(proxy))
    else:
        logger.info("No proxy available, using direct connection")
    return client
