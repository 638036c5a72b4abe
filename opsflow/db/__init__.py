"""Persistence layer for OpsFlow."""
