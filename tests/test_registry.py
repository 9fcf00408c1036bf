from core.registry import PROTOCOL_REGISTRY, get_plan_builder
from protocols.template import build_plan


def test_get_plan_builder_lazy_load():
    """Dotted-path entries resolve to the module attribute."""
    assert get_plan_builder("template") is build_plan


def test_get_plan_builder_case_insensitive():
    assert get_plan_builder("TEMPLATE") is build_plan


def test_get_plan_builder_invalid():
    assert get_plan_builder("unknown_protocol") is None


def test_get_plan_builder_all_registry_keys():
    for key in PROTOCOL_REGISTRY:
        assert callable(get_plan_builder(key))
