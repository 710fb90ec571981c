"""Pytest configuration and fixtures."""

import os

import pytest

TEST_ENV = {
    "SUPABASE_URL": "https://test.supabase.co",
    "SUPABASE_SERVICE_ROLE_KEY": "test-key",
    "ANTHROPIC_API_KEY": "test-anthropic-key",
    "OPENAI_API_KEY": "test-openai-key",
    "WAFR_ENGINE_ENV": "test",
    "GENERATION_PACING_SECONDS": "0",
    "WORKLOAD_ANSWERS_URL": "",
}

# Modules build loggers on import, which reads settings
os.environ.update(TEST_ENV)


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ.update(TEST_ENV)

    from wafr_engine.core.config import get_settings

    get_settings.cache_clear()
