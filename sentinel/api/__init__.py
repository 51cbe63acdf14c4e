"""HTTP API for Scope Sentinel."""
