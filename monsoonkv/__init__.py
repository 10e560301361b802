"""Fibers, a scheduler, timers, a readiness-based IO manager and a skip-list store."""

__version__ = "0.1.0"
__all__ = [
    "common",
    "timer",
    "skiplist",
    "thread",
    "fiber",
    "scheduler",
    "fd_manager",
    "iomanager",
    "echo_server",
]