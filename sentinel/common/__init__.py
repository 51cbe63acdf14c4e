"""Shared utilities for Scope Sentinel."""

from sentinel.common.logger import setup_logger

__all__ = ["setup_logger"]
