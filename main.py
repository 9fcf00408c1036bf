"""
DeFi Interaction Farm - Main Entry Point

Loads wallets, proxies and target addresses, then hands them to the
CycleRunner, which runs the selected protocol's plan for every wallet once
per cycle and cools down between cycles.

Usage:
    python main.py                      # Run continuously with the default protocol
    python main.py --protocol template  # Run a specific protocol plan
    python main.py --once               # Run a single cycle and exit
"""
from dotenv import load_dotenv

# Load environment variables from .env file into os.environ
load_dotenv()

import asyncio
import argparse
import logging
import signal
import sys
from functools import partial

from core.config import BotSettings
from core.logging_setup import setup_logging
from core.monitoring import CycleReportRenderer, countdown
from core.orchestrator import CycleRunner
from core.proxy_manager import ProxyPool
from core.registry import get_plan_builder
from core.retry import RetryExecutor
from core.sequencer import OperationSequencer
from core.wallet_manager import load_identities, load_target_addresses
from protocols.base import open_session

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="DeFi Interaction Farm - Cycle Runner")
    parser.add_argument("--protocol", type=str, help="Protocol plan to run (e.g. 'template')")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--log-level", type=str, help="Override LOG_LEVEL")
    parser.add_argument("--log-file", action="store_true", help="Also write logs to logs/defi_farm.log")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    """
    Main execution loop.

    1. Parses command line arguments and loads settings.
    2. Sets up logging.
    3. Loads wallets, proxies and target addresses.
    4. Resolves the protocol plan builder from the registry.
    5. Runs the CycleRunner until SIGINT / SIGTERM (or one cycle with --once).

    Returns:
        Process exit code.
    """
    args = parse_args(argv)

    settings = BotSettings()
    if args.protocol:
        settings.protocol = args.protocol
    if args.log_level:
        settings.log_level = args.log_level.upper()
    if args.log_file:
        settings.log_to_file = True

    setup_logging(settings.log_level, log_to_file=settings.log_to_file)
    for key, value in settings.applied_overrides.items():
        logger.debug(f"config.txt override: {key}={value}")

    identities = load_identities(settings.private_keys_file)
    if not identities:
        logger.error(f"No private keys found in {settings.private_keys_file}")
        return 1
    logger.info(f"Loaded {len(identities)} wallets")

    proxy_pool = ProxyPool.from_file(settings.proxies_file)
    logger.info(f"Loaded {len(proxy_pool)} proxies")

    targets = load_target_addresses(settings.wallets_file)
    logger.info(f"Loaded {len(targets)} target wallets")

    builder = get_plan_builder(settings.protocol)
    if builder is None:
        logger.error(f"Unknown protocol: {settings.protocol}")
        return 1

    sequencer = OperationSequencer(
        RetryExecutor(settings.retry),
        settings.timing.inter_operation_delay,
    )

    runner = None

    async def cooldown_wait(seconds: float) -> None:
        await countdown(
            seconds,
            wait=runner.sleep_unless_stopped,
            stopped=lambda: runner.stopped,
        )

    runner = CycleRunner(
        identities=identities,
        proxy_pool=proxy_pool,
        sequencer=sequencer,
        connect=partial(open_session, settings, targets=targets),
        build_plan=lambda identity, ctx: builder(ctx),
        timing=settings.timing,
        reporter=CycleReportRenderer(),
        cooldown_wait=cooldown_wait,
    )

    logger.info(f"Network: {settings.network.name} (chain {settings.network.chain_id})")
    logger.info(f"Protocol: {settings.protocol}")

    runner_task = asyncio.create_task(runner.run_forever(max_cycles=1 if args.once else None))

    def handle_shutdown():
        logger.info("Received shutdown signal. Stopping farm...")
        runner.stop()
        runner_task.cancel()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGTERM, handle_shutdown)
        loop.add_signal_handler(signal.SIGINT, handle_shutdown)

    try:
        await runner_task
    except asyncio.CancelledError:
        logger.info("Farm stopped")
    finally:
        if sys.platform != "win32":
            loop.remove_signal_handler(signal.SIGTERM)
            loop.remove_signal_handler(signal.SIGINT)
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Stopping farm (KeyboardInterrupt)...")
