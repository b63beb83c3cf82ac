"""Services - connection registry and data source catalog."""

from datadock.services.catalog import DataSourceCatalog
from datadock.services.connections import ConnectionRegistry

__all__ = ["ConnectionRegistry", "DataSourceCatalog"]
