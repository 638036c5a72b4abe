"""OpsFlow approval chain engine.

Resolves who must approve an operations request, in what order, and tracks
the decisions made against the resolved chain.
"""

__version__ = "0.3.0"
