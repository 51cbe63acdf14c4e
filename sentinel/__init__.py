"""Scope Sentinel: deliverable approval workflow for client projects."""

__version__ = "0.1.0"
