"""Configuration package for crash-analysis-mcp.

Sub-modules:
    parsing  – Boolean/integer parsing helpers
    analysis – AnalysisConfig dataclass
    server   – ServerConfig dataclass, get_config/set_config globals
    loader   – ServerConfig loading mixin (_ServerConfigLoader)
"""

from crash_analysis_mcp.config.analysis import AnalysisConfig
from crash_analysis_mcp.config.server import ServerConfig, get_config, set_config

__all__ = ["AnalysisConfig", "ServerConfig", "get_config", "set_config"]
