"""ServerConfig dataclass and global configuration state.

Loading logic lives in the ``_ServerConfigLoader`` mixin (``loader.py``)
which ``ServerConfig`` inherits from.
"""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from crash_analysis_mcp import __version__
from crash_analysis_mcp.config.analysis import AnalysisConfig
from crash_analysis_mcp.config.loader import _ServerConfigLoader


@dataclass
class ServerConfig(_ServerConfigLoader):
    """Server configuration.

    Attributes:
        log_level: Root log level for the ``crash_analysis_mcp`` logger
        structured_logging: Emit JSON-style log lines
        server_name: MCP server name
        server_version: MCP server version
        data_dir: Base directory for the analysis cache and audit trails
        report_roots: Directories report files may be read from (empty allows any)
        user_id: Owner segment of analysis cache keys
        disabled_tools: MCP tools not to register
        analysis: Analysis workflow settings
    """

    log_level: str = "INFO"
    structured_logging: bool = False
    server_name: str = "crash-analysis-mcp"
    server_version: str = __version__
    data_dir: Path = field(default_factory=lambda: Path.home() / ".crash-analysis-mcp")
    report_roots: List[Path] = field(default_factory=list)
    user_id: str = "default"
    disabled_tools: List[str] = field(default_factory=list)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)

    def get_cache_dir(self) -> Path:
        """Resolved analysis cache root."""
        if self.analysis.cache_dir is not None:
            return self.analysis.cache_dir.expanduser()
        return self.data_dir / "cache"

    def get_audit_dir(self) -> Path:
        """Resolved audit trail directory."""
        if self.analysis.audit_dir is not None:
            return self.analysis.audit_dir.expanduser()
        return self.data_dir / "audit"

    def is_report_path_allowed(self, path: Path) -> bool:
        """Whether *path* lies under one of ``report_roots`` (always True when unrestricted)."""
        if not self.report_roots:
            return True
        resolved = path.expanduser().resolve()
        for root in self.report_roots:
            try:
                resolved.relative_to(root.expanduser().resolve())
                return True
            except ValueError:
                continue
        return False

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        level = getattr(logging, self.log_level, logging.INFO)

        if self.structured_logging:
            formatter = logging.Formatter(
                '{"timestamp":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}'
            )
        else:
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

        # stdout carries the MCP stdio protocol
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)

        root_logger = logging.getLogger("crash_analysis_mcp")
        root_logger.setLevel(level)
        root_logger.addHandler(handler)


# Global configuration instance
_config: Optional[ServerConfig] = None


def get_config() -> ServerConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = ServerConfig.from_env()
    return _config


def set_config(config: ServerConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
