"""SQL database adapters."""

from datadock.adapters.datasource.sql.base import SQLAdapter

__all__ = ["SQLAdapter"]
