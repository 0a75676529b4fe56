"""Shared fixtures for integration tests."""

import pytest

from crash_analysis_mcp.config.server import ServerConfig
from crash_analysis_mcp.server import create_server


@pytest.fixture
def test_config(tmp_path):
    """Create a standard test server configuration."""
    return ServerConfig(
        server_name="crash-analysis-mcp-test",
        server_version="0.1.0",
        data_dir=tmp_path / "data",
        log_level="WARNING",
    )


@pytest.fixture
def mcp_server(test_config):
    """Create a test MCP server instance."""
    return create_server(test_config)
