"""Reference protocol: authenticate, claim the faucet, then send transfers.

Copy this module to add a new protocol, adjust :func:`build_plan`, and
register it in :mod:`core.registry`.
"""

import logging
import random
from functools import partial

from core.sequencer import OperationPlan, PlanBuilder
from protocols.base import ProtocolContext, get_balances, transfer

logger = logging.getLogger(__name__)


def build_plan(ctx: ProtocolContext) -> OperationPlan:
    """Plan for one identity: ``auth``, ``faucet``, ``transfer_1..N``.

    Transfers go to a random address from the target list; with no
    targets the transfers are left out of the plan.
    """
    rng = ctx.rng or random
    builder = (
        PlanBuilder()
        .add("auth", ctx.api.authenticate)
        .add("faucet", ctx.api.claim_faucet)
        .with_balance_probe(partial(get_balances, ctx))
    )

    count = ctx.settings.interactions.transfer_count
    if ctx.targets:
        builder.repeat(
            "transfer",
            count,
            lambda i: partial(transfer, ctx, rng.choice(ctx.targets), i),
        )
    elif count:
        logger.warning("No target wallets loaded, skipping %d transfers", count)

    return builder.build()
