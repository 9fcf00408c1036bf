"""
Core module for the DeFi interaction farm.

This package contains the cycle orchestration, retry and sequencing,
proxy rotation, configuration, and reporting components that run protocol
plans across many wallets.

Submodules:
    config: Application settings (``BotSettings``) via Pydantic, plus
        ``config.txt`` overrides.
    orchestrator: ``CycleRunner`` state machine (idle / cycle / cooldown).
    sequencer: ``OperationPlan`` building and per-wallet execution.
    retry: ``RetryExecutor`` with exponential backoff.
    registry: Registry mapping protocol names to plan builders.
    analytics: Per-wallet outcomes and per-cycle aggregation.
    proxy_manager: Proxy pool with health scoring and rotation.
    wallet_manager: Key loading and JSON-RPC ledger client.
    monitoring: Rich cycle report and cooldown countdown.
    logging_setup: Compressed rotating file + safe console logging.
    utils: File loaders, amount randomisation and masking helpers.
"""
