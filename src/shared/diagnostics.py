"""
Diagnostic utilities.

Resource snapshots logged around the memory-heavy steps of an export
(supersampled mosaic, base64 encoding).
"""

import asyncio
import logging
import threading
from typing import Any

import psutil

logger = logging.getLogger(__name__)


def get_memory_info() -> dict[str, Any]:
    """Get process and system memory usage information."""
    try:
        process = psutil.Process()
        memory_info = process.memory_info()
        system_memory = psutil.virtual_memory()

        return {
            'process_rss_mb': round(memory_info.rss / 1024 / 1024, 2),
            'process_vms_mb': round(memory_info.vms / 1024 / 1024, 2),
            'system_total_mb': round(system_memory.total / 1024 / 1024, 2),
            'system_available_mb': round(
                system_memory.available / 1024 / 1024,
                2,
            ),
            'system_used_percent': system_memory.percent,
        }
    except Exception as e:
        return {'error': f'Failed to get memory info: {e}'}


def get_task_info() -> dict[str, Any]:
    """Get information about threads and pending asyncio tasks."""
    info: dict[str, Any] = {
        'active_threads': threading.active_count(),
        'pending_tasks': None,
    }
    try:
        info['pending_tasks'] = len(asyncio.all_tasks())
    except RuntimeError:
        # Нет запущенного event loop
        pass
    return info


def log_memory_usage(context: str = '') -> None:
    """Quick memory usage logging."""
    memory_info = get_memory_info()
    context_label = f' ({context})' if context else ''
    logger.info(
        'Memory usage%s: RSS=%sMB, Available=%sMB',
        context_label,
        memory_info.get('process_rss_mb', 'N/A'),
        memory_info.get('system_available_mb', 'N/A'),
    )


def log_comprehensive_diagnostics(
    operation: str = 'general',
    level: int = logging.INFO,
) -> None:
    """Log memory and task diagnostics for an operation."""
    logger.log(level, '=== DIAGNOSTIC INFO: %s ===', operation.upper())

    memory_info = get_memory_info()
    logger.log(
        level,
        'Memory - RSS: %sMB, VMS: %sMB, System Available: %sMB (%s%% used)',
        memory_info.get('process_rss_mb', 'N/A'),
        memory_info.get('process_vms_mb', 'N/A'),
        memory_info.get('system_available_mb', 'N/A'),
        memory_info.get('system_used_percent', 'N/A'),
    )

    task_info = get_task_info()
    logger.log(
        level,
        'Tasks - Threads: %s, Pending asyncio tasks: %s',
        task_info['active_threads'],
        task_info['pending_tasks'],
    )
