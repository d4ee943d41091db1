import logging

from packages.energy_alloc_core.config import config
from packages.energy_alloc_core.logging_utils import get_logger


def test_config_defaults_are_usable():
    assert config.SHARE_ROUNDING in ("round", "floor")
    assert config.DEFAULT_VERSION >= 1
    assert config.METHOD_VERSION
    assert "rounding=" in repr(config)


def test_get_logger_does_not_stack_handlers():
    first = get_logger("energy_alloc_core.test")
    count = len(first.handlers)
    second = get_logger("energy_alloc_core.test")
    assert first is second
    assert len(second.handlers) == count
    assert isinstance(second.handlers[0], logging.StreamHandler)
