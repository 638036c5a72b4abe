"""HTTP transport for OpsFlow."""
