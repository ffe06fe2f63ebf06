"""Operational plumbing: logging, health, metrics, request scope."""
