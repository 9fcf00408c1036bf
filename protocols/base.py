"""Building blocks shared by protocol plans.

A protocol module turns a :class:`ProtocolContext` into an
:class:`~core.sequencer.OperationPlan`.  This module provides what most
plans need:

    * :class:`ApiClient` -- HTTP client for the protocol's backend with
      signed-message authentication and a faucet claim.
    * :func:`transfer` -- native token transfer with amount
      randomisation and a balance guard (insufficient balance declines).
    * :func:`get_balances` -- balance snapshot for observability.
    * :func:`open_session` -- opens the per-identity ledger + API
      connection routed through the selected proxy.

Operation callbacks follow the farm's convention: return ``True`` on
success, ``False`` when a business rule declines, raise on transient
failure.
"""

import json
import logging
import random
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp
from eth_utils import from_wei, to_wei
from fake_useragent import UserAgent

from core.config import ApiConfig, BotSettings
from core.utils import mask_address, mask_proxy, randomize_amount
from core.wallet_manager import Identity, LedgerClient, open_ledger

logger = logging.getLogger(__name__)


class ApiError(RuntimeError):
    """The protocol API answered with an error status or bad payload."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"API error {status}: {message}")
        self.status = status


def random_user_agent(fallback: str) -> str:
    """Pick a random modern browser user agent.

    Falls back to *fallback* when fake_useragent cannot reach its
    data source.
    """
    try:
        return UserAgent(browsers=['chrome', 'edge', 'firefox', 'safari']).random
    except Exception:
        return fallback


class ApiClient:
    """HTTP client for one identity's session with the protocol API.

    Attributes:
        auth_token: Bearer token set by a successful :meth:`authenticate`.
    """

    def __init__(
        self,
        api: ApiConfig,
        identity: Identity,
        proxy: Optional[str] = None,
        timeout_seconds: float = 30.0,
        user_agent: Optional[str] = None,
    ) -> None:
        self.api = api
        self.identity = identity
        self.proxy = proxy
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.user_agent = user_agent or random_user_agent(api.user_agent)
        self.auth_token: Optional[str] = None
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Send a JSON request and return the decoded body.

        Raises:
            ApiError: On HTTP status >= 400 or a non-JSON body.
            aiohttp.ClientError: On transport failures.
        """
        request_headers = {
            "accept": "application/json, text/plain, */*",
            "accept-language": "en-US,en;q=0.8",
            "content-type": "application/json",
            "user-agent": self.user_agent,
        }
        if self.auth_token:
            request_headers["authorization"] = f"Bearer {self.auth_token}"
        if headers:
            request_headers.update(headers)

        session = await self._get_session()
        url = f"{self.api.base_url}{endpoint}"
        async with session.request(
            method, url, json=data, headers=request_headers, proxy=self.proxy,
        ) as response:
            text = await response.text()
            if response.status >= 400:
                raise ApiError(response.status, text[:200])
        if not text:
            return {}
        try:
            return json.loads(text)
        except ValueError:
            raise ApiError(response.status, "response is not JSON")

    async def authenticate(self) -> bool:
        """Sign in by signing the configured auth message.

        Returns:
            ``True`` once a token is stored, ``False`` if the API
            answered without one.
        """
        logger.info("Authenticating %s with protocol API...", self.identity.short_address)
        signature = self.identity.sign_message(self.api.auth_message)
        body = await self.make_request("POST", self.api.auth_endpoint, {
            "address": self.identity.address,
            "signature": signature,
        })
        token = body.get("token") if isinstance(body, dict) else None
        if token:
            self.auth_token = token
            logger.info("Authentication successful")
            return True
        logger.warning("No auth token received")
        return False

    async def claim_faucet(self) -> bool:
        """Claim from the protocol faucet, authenticating first if needed."""
        if not self.auth_token and not await self.authenticate():
            return False

        body = await self.make_request("POST", self.api.faucet_endpoint, {
            "address": self.identity.address,
        })
        if isinstance(body, dict) and body.get("success"):
            logger.info("Faucet claimed successfully")
            return True
        logger.warning("Faucet claim failed or not available")
        return False

    async def close(self) -> None:
        if self._session:
            await self._session.close()


@dataclass
class ProtocolContext:
    """Everything a plan needs for one identity in one cycle."""

    settings: BotSettings
    identity: Identity
    ledger: LedgerClient
    api: ApiClient
    proxy: Optional[str] = None
    targets: List[str] = field(default_factory=list)
    rng: Optional[random.Random] = None

    async def close(self) -> None:
        await self.api.close()
        await self.ledger.close()


async def open_session(
    settings: BotSettings,
    identity: Identity,
    proxy: Optional[str] = None,
    targets: Optional[List[str]] = None,
) -> ProtocolContext:
    """Open a fresh ledger + API session for *identity* through *proxy*.

    Raises:
        LedgerRpcError: If the ledger connection cannot be established.
    """
    ledger = await open_ledger(settings, proxy)
    api = ApiClient(
        settings.api,
        identity,
        proxy=proxy,
        timeout_seconds=settings.timing.request_timeout_ms / 1000.0,
    )
    return ProtocolContext(
        settings=settings,
        identity=identity,
        ledger=ledger,
        api=api,
        proxy=proxy,
        targets=list(targets or []),
    )


async def get_balances(ctx: ProtocolContext) -> Dict[str, str]:
    """Native (and configured ERC-20) balance, formatted in ether units."""
    network = ctx.settings.network
    wei = await ctx.ledger.get_balance(ctx.identity.address)
    balances = {"native": f"{from_wei(wei, 'ether')} {network.symbol}"}
    if network.token_address:
        raw = await ctx.ledger.erc20_balance(network.token_address, ctx.identity.address)
        balances["token"] = str(from_wei(raw, "ether"))
    return balances


async def transfer(ctx: ProtocolContext, to_address: str, index: int) -> bool:
    """Send a (randomised) native transfer to *to_address*.

    Returns:
        ``True`` once the transaction is mined; ``False`` when the
        balance cannot cover amount plus gas reserve.

    Raises:
        LedgerRpcError: On RPC failure, revert or receipt timeout.
    """
    params = ctx.settings.interactions
    amount = params.transfer_amount
    if params.randomize:
        amount = randomize_amount(amount, params.variation, ctx.rng)

    logger.info(
        "Transfer %d: %s %s to %s",
        index + 1, amount, ctx.settings.network.symbol, mask_address(to_address),
    )

    value = to_wei(Decimal(amount), "ether")
    reserve = to_wei(Decimal(params.gas_reserve), "ether")
    address = ctx.identity.address
    balance = await ctx.ledger.get_balance(address)
    if balance < value + reserve:
        logger.warning(
            "Insufficient balance for transfer: %s < %s",
            from_wei(balance, "ether"), amount,
        )
        return False

    nonce = await ctx.ledger.get_transaction_count(address)
    gas_price = await ctx.ledger.gas_price()
    raw_tx = ctx.identity.sign_transaction({
        "to": to_address,
        "value": value,
        "gas": params.gas_limit,
        "gasPrice": gas_price,
        "nonce": nonce,
        "chainId": ctx.settings.network.chain_id,
    })
    tx_hash = await ctx.ledger.send_raw_transaction(raw_tx)
    logger.info("Tx hash: %s via %s", mask_address(tx_hash), mask_proxy(ctx.proxy))
    await ctx.ledger.wait_for_receipt(tx_hash)
    logger.info("Transfer %d completed", index + 1)
    return True
