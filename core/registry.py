"""Protocol plan registry for the DeFi interaction farm.

Maps protocol identifiers to the ``build_plan(ctx)`` callable that turns a
:class:`~protocols.base.ProtocolContext` into an
:class:`~core.sequencer.OperationPlan`.  Values are dotted-path strings
resolved lazily so only the selected protocol module is imported.

Usage::

    from core.registry import get_plan_builder

    build_plan = get_plan_builder("template")
    if build_plan:
        plan = build_plan(ctx)
"""

import importlib
from typing import Callable, Dict, Optional, Union

# ---------------------------------------------------------------------------
# Central Registry
# ---------------------------------------------------------------------------
# Values are either a callable or a dotted-path string
# ``"module.function"`` resolved on first use.
PROTOCOL_REGISTRY: Dict[str, Union[Callable, str]] = {
    "template": "protocols.template.build_plan",
    "default": "protocols.template.build_plan",
}


def get_plan_builder(protocol: str) -> Optional[Callable]:
    """Resolve a protocol's plan builder by name.

    Performs case-insensitive lookup.

    Args:
        protocol: Protocol identifier (e.g. ``"template"``).

    Returns:
        The ``build_plan`` callable, or ``None`` if *protocol* is not
        registered.
    """
    fn_or_str = PROTOCOL_REGISTRY.get(protocol.lower())
    if not fn_or_str:
        return None

    if isinstance(fn_or_str, str):
        module_path, attr = fn_or_str.rsplit('.', 1)
        module = importlib.import_module(module_path)
        return getattr(module, attr)

    return fn_or_str
