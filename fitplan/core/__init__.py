"""Application-level orchestration of cache, queue and remote."""

from .orchestrator import DataOrchestrator

__all__ = ["DataOrchestrator"]
