"""
Protocol plans for the DeFi interaction farm.

Each protocol module exposes ``build_plan(ctx)`` returning an
``OperationPlan``; :mod:`core.registry` maps names to these callables.

Submodules:
    base: API client, transfer and balance helpers, per-identity session.
    template: Reference auth / faucet / transfer plan.
"""
