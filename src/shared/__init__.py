"""Shared utilities and helpers."""
from shared.diagnostics import (
    log_comprehensive_diagnostics,
    log_memory_usage,
)
from shared.progress import (
    CancelScope,
    ConsoleProgress,
    FetchSlot,
    FetchToken,
)

__all__ = [
    'CancelScope',
    'ConsoleProgress',
    'FetchSlot',
    'FetchToken',
    'log_comprehensive_diagnostics',
    'log_memory_usage',
]
