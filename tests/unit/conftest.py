"""
Shared pytest fixtures for the signal engine test suite.

Provides:
  - ``fast_config``: engine config with no dispatch delay and a small pool,
    so pipeline tests run instantly.
  - ``scenario_a``: the rising 35-session series with P/E 8 and ROE 18 %.
"""
import pytest

from signal_fakes import scenario_a_ratios, scenario_a_series
from src.vnsignal.config import EngineConfig


@pytest.fixture
def fast_config() -> EngineConfig:
    config = EngineConfig()
    config.pipeline.dispatch_delay_seconds = 0.0
    config.pipeline.max_concurrency = 2
    config.enrichment.min_interval_seconds = 0.0
    return config


@pytest.fixture
def scenario_a():
    return scenario_a_series(), scenario_a_ratios()
