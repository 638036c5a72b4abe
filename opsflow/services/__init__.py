"""OpsFlow services.

Administrative write paths (catalog, delegations), role directory adapters
and outbound event publishing. Import the service modules directly.
"""
