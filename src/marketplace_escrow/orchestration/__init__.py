"""Orchestration layer — background scheduling of the deadline sweeper."""

from marketplace_escrow.orchestration.scheduler import SweepScheduler

__all__ = ["SweepScheduler"]
