"""Core app services for settings, sampling, session logging, and diagnostics."""

from .config import AppConfig, load_config, save_config
from .diagnostics import DiagnosticsExporter, build_doctor_payload
from .performance import BudgetStatus, PerformanceController, PerformanceTargets
from .sampler import SamplerStatus, SamplingLoop
from .session_log import SessionLogger
from .state import MonitorState

__all__ = [
    "AppConfig",
    "BudgetStatus",
    "DiagnosticsExporter",
    "MonitorState",
    "PerformanceController",
    "PerformanceTargets",
    "SamplerStatus",
    "SamplingLoop",
    "SessionLogger",
    "build_doctor_payload",
    "load_config",
    "save_config",
]
