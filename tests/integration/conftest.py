"""Integration test fixtures — the assembled pipeline, no real network."""

from __future__ import annotations

import pytest

from quote_relay.core.config import RelayConfig


@pytest.fixture
def relay_config() -> RelayConfig:
    """Yahoo first, mock last; Alpha Vantage left without a key."""
    return RelayConfig.model_validate(
        {
            "dispatcher": {"batch_delay": 0.05, "request_timeout": 2.0},
            "providers": {
                "order": ["yahoo", "alpha_vantage", "mock"],
                "yahoo": {"retry": {"max_attempts": 1}},
                "mock": {"jitter": 0.0, "seed": 7},
            },
        }
    )
