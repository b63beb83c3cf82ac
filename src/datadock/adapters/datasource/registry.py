"""Adapter registry for managing data source adapters.

This module provides a singleton registry for registering and creating
data source adapters by type, and for validating connection configs
against each type's config schema before any I/O happens.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

from datadock.adapters.datasource.base import BaseAdapter
from datadock.adapters.datasource.errors import (
    MissingRequiredFieldError,
    UnsupportedSourceTypeError,
)
from datadock.adapters.datasource.types import (
    AdapterCapabilities,
    ConfigSchema,
    SourceCategory,
    SourceType,
    SourceTypeDefinition,
)

T = TypeVar("T", bound=BaseAdapter)


def parse_source_type(source_type: SourceType | str) -> SourceType:
    """Parse a source type, raising the taxonomy error for unknown values."""
    if isinstance(source_type, SourceType):
        return source_type
    try:
        return SourceType(source_type)
    except ValueError as e:
        raise UnsupportedSourceTypeError(str(source_type)) from e


class AdapterRegistry:
    """Singleton registry for data source adapters.

    This registry maintains a mapping of source types to adapter classes,
    allowing dynamic creation of adapters based on configuration.
    """

    _instance: AdapterRegistry | None = None
    _adapters: dict[SourceType, type[BaseAdapter]]
    _definitions: dict[SourceType, SourceTypeDefinition]

    def __new__(cls) -> AdapterRegistry:
        """Create or return the singleton instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._adapters = {}
            cls._instance._definitions = {}
        return cls._instance

    @classmethod
    def get_instance(cls) -> AdapterRegistry:
        """Get the singleton instance."""
        return cls()

    def register(
        self,
        source_type: SourceType,
        adapter_class: type[BaseAdapter],
        display_name: str,
        category: SourceCategory,
        icon: str,
        description: str,
        capabilities: AdapterCapabilities,
        config_schema: ConfigSchema,
    ) -> None:
        """Register an adapter class for a source type.

        Args:
            source_type: The source type to register.
            adapter_class: The adapter class to register.
            display_name: Human-readable name for the source type.
            category: Category of the source (relational, document, key-value).
            icon: Icon identifier for the source type.
            description: Description of the source type.
            capabilities: Capabilities of the adapter.
            config_schema: Configuration schema used for validation.
        """
        self._adapters[source_type] = adapter_class
        self._definitions[source_type] = SourceTypeDefinition(
            type=source_type,
            display_name=display_name,
            category=category,
            icon=icon,
            description=description,
            capabilities=capabilities,
            config_schema=config_schema,
        )

    def create(
        self,
        source_type: SourceType | str,
        config: dict[str, Any],
    ) -> BaseAdapter:
        """Create an adapter instance for a source type.

        Args:
            source_type: The source type (can be string or enum).
            config: Configuration dictionary for the adapter.

        Returns:
            Instance of the appropriate adapter.

        Raises:
            UnsupportedSourceTypeError: If source type is not registered.
        """
        source_type = parse_source_type(source_type)

        adapter_class = self._adapters.get(source_type)
        if adapter_class is None:
            raise UnsupportedSourceTypeError(source_type.value)

        return adapter_class(config)

    def validate_config(
        self,
        source_type: SourceType | str,
        config: dict[str, Any],
    ) -> SourceType:
        """Check a config against the required fields of its source type.

        Secret fields must be present but may be empty. Other required
        fields must be present and non-empty.

        Returns:
            The parsed source type.

        Raises:
            UnsupportedSourceTypeError: If the type is unknown.
            MissingRequiredFieldError: If a required field is absent.
        """
        source_type = parse_source_type(source_type)
        definition = self._definitions.get(source_type)
        if definition is None:
            raise UnsupportedSourceTypeError(source_type.value)

        config = config or {}
        for field in definition.config_schema.fields:
            if not field.required:
                continue
            if field.name not in config or config[field.name] is None:
                raise MissingRequiredFieldError(field.name)
            if field.type != "secret" and config[field.name] == "":
                raise MissingRequiredFieldError(field.name)

        for group in definition.config_schema.required_one_of:
            if not any(config.get(name) for name in group):
                raise MissingRequiredFieldError(
                    group[0],
                    message=f"One of these fields is required: {', '.join(group)}",
                )

        return source_type

    def get_adapter_class(self, source_type: SourceType) -> type[BaseAdapter] | None:
        """Get the adapter class for a source type."""
        return self._adapters.get(source_type)

    def get_definition(self, source_type: SourceType) -> SourceTypeDefinition | None:
        """Get the source type definition."""
        return self._definitions.get(source_type)

    def list_types(self) -> list[SourceTypeDefinition]:
        """List all registered source type definitions."""
        return list(self._definitions.values())

    def is_registered(self, source_type: SourceType | str) -> bool:
        """Check if a source type is registered.

        Args:
            source_type: The source type to check.

        Returns:
            True if registered, False otherwise.
        """
        try:
            return parse_source_type(source_type) in self._adapters
        except UnsupportedSourceTypeError:
            return False

    @property
    def registered_types(self) -> list[SourceType]:
        """Get list of all registered source types."""
        return list(self._adapters.keys())


def register_adapter(
    source_type: SourceType,
    display_name: str,
    category: SourceCategory,
    icon: str,
    description: str,
    capabilities: AdapterCapabilities,
    config_schema: ConfigSchema,
) -> Callable[[type[T]], type[T]]:
    """Decorator to register an adapter class.

    Usage:
        @register_adapter(
            source_type=SourceType.POSTGRESQL,
            display_name="PostgreSQL",
            category=SourceCategory.RELATIONAL,
            icon="postgresql",
            description="PostgreSQL database",
            capabilities=AdapterCapabilities(...),
            config_schema=ConfigSchema(...),
        )
        class PostgresAdapter(SQLAdapter):
            ...

    Returns:
        Decorator function.
    """

    def decorator(cls: type[T]) -> type[T]:
        registry = AdapterRegistry.get_instance()
        registry.register(
            source_type=source_type,
            adapter_class=cls,
            display_name=display_name,
            category=category,
            icon=icon,
            description=description,
            capabilities=capabilities,
            config_schema=config_schema,
        )
        return cls

    return decorator


# Global registry instance
_registry = AdapterRegistry.get_instance()


def get_registry() -> AdapterRegistry:
    """Get the global adapter registry instance."""
    return _registry
