"""
Core Orchestration.

Contains the `ScopeLiftEngine` driver and the per-run trace logger.
"""
