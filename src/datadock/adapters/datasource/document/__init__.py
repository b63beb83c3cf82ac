"""Document database adapters."""
