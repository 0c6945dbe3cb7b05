"""Turn chat message bursts into deduplicated, actionable items."""

__version__ = "0.1.0"
