"""Shared fixtures: sample crash reports and a scripted sampling transport."""

from __future__ import annotations

import copy
import json
import uuid
from typing import Any, Callable, Iterable, Optional, Union

import pytest

from crash_analysis_mcp.config.analysis import AnalysisConfig
from crash_analysis_mcp.core.analysis.compatibility import ProviderCapabilityCache
from crash_analysis_mcp.core.analysis.transport import (
    SamplingRequest,
    SamplingResponse,
    SamplingTransport,
    ToolCall,
)
from crash_analysis_mcp.core.report.document import ReportDocument

_FAULTING_STACK = [
    {"frameNumber": 0, "module": "MyApp.dll", "function": "MyApp.OrderService.Submit(Order)", "isManaged": True},
    {"frameNumber": 1, "module": "MyApp.dll", "function": "MyApp.Program.Main(String[])", "isManaged": True},
]

SAMPLE_REPORT: dict[str, Any] = {
    "metadata": {
        "dumpId": "dump-001",
        "debuggerType": "LLDB",
        "generatedAt": "2026-01-15T10:30:00Z",
        "version": "1.0",
    },
    "analysis": {
        "summary": {
            "crashType": "Managed Exception",
            "severity": "critical",
            "description": "A NullReferenceException was thrown on the main thread.",
            "threadCount": 3,
            "moduleCount": 42,
            "assemblyCount": 3,
            "warnings": ["Symbols missing for libcoreclr.so"],
            "errors": [],
        },
        "exception": {
            "type": "System.NullReferenceException",
            "message": "Object reference not set to an instance of an object.",
            "hResult": "0x80004003",
        },
        "environment": {
            "platform": {"os": "Linux", "architecture": "x64"},
            "runtime": {"type": "CoreCLR", "version": "8.0.1"},
        },
        "threads": {
            "summary": {"total": 3, "foreground": 1, "background": 2},
            "faultingThread": {
                "threadId": "1",
                "managedThreadId": 1,
                "osThreadId": "0x1a2b",
                "state": "Running",
                "callStack": _FAULTING_STACK,
            },
            "all": [
                {
                    "threadId": "1",
                    "managedThreadId": 1,
                    "osThreadId": "0x1a2b",
                    "state": "Running",
                    "isFaulting": True,
                    "callStack": _FAULTING_STACK,
                },
                {
                    "threadId": "2",
                    "managedThreadId": 2,
                    "osThreadId": "0x1a2c",
                    "state": "Waiting",
                    "callStack": [{"frameNumber": 0, "function": "System.Threading.Monitor.Wait", "isManaged": True}],
                },
                {
                    "threadId": "3",
                    "managedThreadId": 7,
                    "osThreadId": "0x1a2d",
                    "osThreadIdDecimal": "6701",
                    "state": "Background",
                    "callStack": [],
                },
            ],
        },
        "assemblies": {
            "count": 3,
            "items": [
                {"name": "System.Private.CoreLib", "assemblyVersion": "8.0.0.0", "path": "/usr/share/dotnet/System.Private.CoreLib.dll"},
                {"name": "MyApp", "assemblyVersion": "1.2.3.0", "path": "/app/MyApp.dll"},
                {"name": "Newtonsoft.Json", "assemblyVersion": "13.0.0.0", "path": "/app/Newtonsoft.Json.dll"},
            ],
        },
        "watches": {"results": [{"expression": "order", "value": "null"}]},
        "security": {"findings": []},
    },
}


def make_report(**analysis_overrides: Any) -> dict[str, Any]:
    """Deep copy of ``SAMPLE_REPORT`` with top-level analysis sections replaced."""
    report = copy.deepcopy(SAMPLE_REPORT)
    for key, value in analysis_overrides.items():
        if value is None:
            report["analysis"].pop(key, None)
        else:
            report["analysis"][key] = value
    return report


class ScriptedTransport(SamplingTransport):
    """Sampling transport replaying a fixed list of responses.

    Each scripted entry is a ``SamplingResponse`` or an exception to raise.
    Once the script runs out the transport returns empty responses.
    """

    def __init__(
        self,
        responses: Iterable[Union[SamplingResponse, BaseException]] = (),
        *,
        provider_id: str = "scripted",
        model: str = "scripted-model",
    ) -> None:
        self.responses = list(responses)
        self.requests: list[SamplingRequest] = []
        self.provider_id = provider_id
        self.model = model

    async def create_message(self, request: SamplingRequest) -> SamplingResponse:
        self.requests.append(request)
        if not self.responses:
            return SamplingResponse(model=self.model)
        entry = self.responses.pop(0)
        if isinstance(entry, BaseException):
            raise entry
        return entry


def tool_call(name: str, **arguments: Any) -> ToolCall:
    return ToolCall(id=f"call_{uuid.uuid4().hex[:8]}", name=name, arguments=arguments)


def tool_turn(*calls: ToolCall, text: Optional[str] = None, model: str = "scripted-model") -> SamplingResponse:
    return SamplingResponse(text=text, tool_calls=list(calls), model=model)


def text_turn(text: str, model: str = "scripted-model") -> SamplingResponse:
    return SamplingResponse(text=text, model=model)


@pytest.fixture
def report_dict() -> dict[str, Any]:
    """A fresh copy of the sample report."""
    return make_report()


@pytest.fixture
def report_document(report_dict) -> ReportDocument:
    return ReportDocument.from_mapping(report_dict)


@pytest.fixture
def report_factory() -> Callable[..., dict[str, Any]]:
    """Build sample reports with selected analysis sections replaced (None removes)."""
    return make_report


@pytest.fixture
def report_file(tmp_path, report_dict):
    """Sample report written to ``<tmp>/reports/dump-001/report.json``."""
    path = tmp_path / "reports" / "dump-001" / "report.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps(report_dict), encoding="utf-8")
    return path


@pytest.fixture
def scripted_transport() -> Callable[..., ScriptedTransport]:
    """Factory for ``ScriptedTransport`` instances."""
    return ScriptedTransport


@pytest.fixture
def turns():
    """Helpers for building scripted model turns."""

    class _Turns:
        call = staticmethod(tool_call)
        tools = staticmethod(tool_turn)
        text = staticmethod(text_turn)

    return _Turns


@pytest.fixture
def capability_cache() -> ProviderCapabilityCache:
    """Isolated provider capability cache."""
    return ProviderCapabilityCache()


@pytest.fixture
def analysis_config(tmp_path) -> AnalysisConfig:
    """Small, deterministic analysis configuration.

    Checkpoints are pushed out of reach and the post-investigation passes are
    disabled; tests that exercise them turn them back on.
    """
    return AnalysisConfig(
        max_iterations=6,
        max_tool_calls=20,
        max_tool_calls_per_iteration=4,
        max_consecutive_no_progress=3,
        checkpoint_every_iterations=50,
        enable_judge=False,
        enable_summary_rewrite=False,
        enable_thread_narrative=False,
        timeout=None,
        cache_enabled=False,
        audit_dir=tmp_path / "audit",
    )
