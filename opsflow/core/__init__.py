"""Core decision logic for OpsFlow."""
