"""Adapters - Infrastructure implementations.

Adapters are organized by type:
- datasource/: Engine adapters (MySQL, PostgreSQL, MongoDB, Redis)
- storage/: On-disk persistence for the data source catalog
"""
