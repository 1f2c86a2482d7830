"""
Background Jobs Module

Handles scheduled tasks for:
- Logistics tracking sync (RTO detection)
- Estimate cache maintenance
"""

from marketship.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from marketship.jobs.logistics_jobs import sync_logistics, purge_estimate_cache

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "sync_logistics",
    "purge_estimate_cache",
]
