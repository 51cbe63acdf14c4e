"""Core domain logic: configuration, errors, access control and workflow."""
