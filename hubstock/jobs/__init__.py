"""
Background Jobs Module

Handles scheduled tasks for:
- Availability cache teardown of closed order cycles
- Availability cache warm-up of open order cycles
"""

from hubstock.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from hubstock.jobs.cache_jobs import tear_down_closed_order_cycles, warm_open_order_cycles

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "tear_down_closed_order_cycles",
    "warm_open_order_cycles",
]
