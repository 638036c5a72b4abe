"""Request and response schemas for the OpsFlow API."""
