"""Key-value store adapters."""
