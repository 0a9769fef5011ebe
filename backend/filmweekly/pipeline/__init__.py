"""Submission pipeline integration helpers exposed to the application."""

from filmweekly.pipeline.domain.container import configure, configure_postgres
from filmweekly.pipeline.workers.runner import spawn_workers

__all__ = ["configure", "configure_postgres", "spawn_workers"]
