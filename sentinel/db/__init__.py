"""Database layer for Scope Sentinel."""
