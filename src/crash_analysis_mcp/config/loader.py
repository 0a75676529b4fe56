"""ServerConfig loading and validation logic.

Provides ``_ServerConfigLoader``, a mixin class whose methods are inherited by
``ServerConfig`` (defined in ``server.py``).
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, List, Optional, cast

if TYPE_CHECKING:
    from crash_analysis_mcp.config.server import ServerConfig

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # Python < 3.11 fallback

from crash_analysis_mcp.config.analysis import AnalysisConfig
from crash_analysis_mcp.config.parsing import _parse_bool, _parse_int, _parse_optional_float

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV_VAR = "CRASH_ANALYSIS_MCP_CONFIG"
DEFAULT_CONFIG_FILE = "crash-analysis-mcp.toml"
ENV_PREFIX = "CRASH_ANALYSIS_"


class _ServerConfigLoader:
    """Mixin providing config-loading methods for ``ServerConfig``."""

    if TYPE_CHECKING:
        log_level: str
        structured_logging: bool
        server_name: str
        data_dir: Path
        report_roots: List[Path]
        user_id: str
        disabled_tools: List[str]
        analysis: AnalysisConfig

    @classmethod
    def from_env(cls, config_file: Optional[str] = None) -> "ServerConfig":
        """
        Create configuration from an optional TOML file and environment variables.

        Priority (highest to lowest):
        1. ``CRASH_ANALYSIS_*`` environment variables
        2. TOML file named by *config_file* or ``CRASH_ANALYSIS_MCP_CONFIG``
           (otherwise ``./crash-analysis-mcp.toml`` when present)
        3. Default values
        """
        config = cls()

        toml_path = config_file or os.environ.get(CONFIG_FILE_ENV_VAR)
        if toml_path:
            config._load_toml(Path(toml_path))
        elif Path(DEFAULT_CONFIG_FILE).exists():
            config._load_toml(Path(DEFAULT_CONFIG_FILE))

        config._load_env()
        return cast("ServerConfig", config)

    @classmethod
    def from_toml(cls, path: Path) -> "ServerConfig":
        """Create configuration from a TOML file only."""
        config = cls()
        config._load_toml(Path(path))
        return cast("ServerConfig", config)

    def _load_toml(self, path: Path) -> None:
        """Load configuration from TOML file."""
        if not path.exists():
            logger.warning("Config file not found: %s", path)
            return

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.error("Error loading config file %s: %s", path, exc)
            return

        if "logging" in data:
            log = data["logging"]
            if "level" in log:
                self.log_level = str(log["level"]).upper()
            if "structured" in log:
                self.structured_logging = _parse_bool(log["structured"])

        if "server" in data:
            srv = data["server"]
            if "name" in srv:
                self.server_name = str(srv["name"])
            if "data_dir" in srv:
                self.data_dir = Path(srv["data_dir"]).expanduser()
            if "report_roots" in srv:
                self.report_roots = [Path(p).expanduser() for p in srv["report_roots"]]
            if "user_id" in srv:
                self.user_id = str(srv["user_id"])

        if "tools" in data:
            tools_cfg = data["tools"]
            if "disabled_tools" in tools_cfg:
                self.disabled_tools = list(tools_cfg["disabled_tools"])

        if "analysis" in data:
            self.analysis = AnalysisConfig.from_toml_dict(data["analysis"])

        logger.debug("Loaded config from %s", path)

    def _load_env(self) -> None:
        """Apply ``CRASH_ANALYSIS_*`` environment overrides."""
        if level := os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
            self.log_level = level.upper()
        if structured := os.environ.get(f"{ENV_PREFIX}STRUCTURED_LOGGING"):
            self.structured_logging = _parse_bool(structured)
        if data_dir := os.environ.get(f"{ENV_PREFIX}DATA_DIR"):
            self.data_dir = Path(data_dir).expanduser()
        if roots := os.environ.get(f"{ENV_PREFIX}REPORT_ROOTS"):
            self.report_roots = [Path(p.strip()).expanduser() for p in roots.split(os.pathsep) if p.strip()]
        if user_id := os.environ.get(f"{ENV_PREFIX}USER_ID"):
            self.user_id = user_id.strip()
        if disabled := os.environ.get(f"{ENV_PREFIX}DISABLED_TOOLS"):
            self.disabled_tools = [t.strip() for t in disabled.split(",") if t.strip()]

        analysis = self.analysis
        int_overrides = {
            "MAX_ITERATIONS": "max_iterations",
            "MAX_TOKENS": "max_tokens",
            "MAX_TOOL_CALLS": "max_tool_calls",
            "CHECKPOINT_EVERY_ITERATIONS": "checkpoint_every_iterations",
            "EVIDENCE_EXCERPT_MAX_CHARS": "evidence_excerpt_max_chars",
        }
        bool_overrides = {
            "EVIDENCE_PROVENANCE": "evidence_provenance",
            "CACHE_ENABLED": "cache_enabled",
            "AUDIT_ARTIFACTS": "audit_artifacts",
        }
        changes: dict[str, Any] = {}
        for suffix, attr in int_overrides.items():
            if (raw := os.environ.get(f"{ENV_PREFIX}{suffix}")) is not None:
                changes[attr] = _parse_int(raw, attr, getattr(analysis, attr))
        for suffix, attr in bool_overrides.items():
            if (raw := os.environ.get(f"{ENV_PREFIX}{suffix}")) is not None:
                changes[attr] = _parse_bool(raw)
        if (raw := os.environ.get(f"{ENV_PREFIX}TIMEOUT")) is not None:
            changes["timeout"] = _parse_optional_float(raw, "timeout")
        if verbosity := os.environ.get(f"{ENV_PREFIX}AUDIT_VERBOSITY"):
            changes["audit_verbosity"] = verbosity

        if changes:
            self.analysis = replace(analysis, **changes)
