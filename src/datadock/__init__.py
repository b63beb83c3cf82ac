"""datadock - uniform access to relational, document and key-value data sources."""

__version__ = "0.1.0"
