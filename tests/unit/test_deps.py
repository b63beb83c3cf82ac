"""Tests for settings and service lifecycle."""

from datadock.adapters.datasource.types import SourceType
from datadock.deps import Settings, lifespan


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch):
        """Verify defaults when no environment is set."""
        monkeypatch.delenv("DATADOCK_DEFAULT_PAGE_SIZE", raising=False)
        monkeypatch.delenv("MYSQL_HOST", raising=False)
        settings = Settings()
        assert settings.default_page_size == 50
        assert settings.mysql_host == "localhost"

    def test_environment_overrides(self, monkeypatch):
        """Verify environment variables are read."""
        monkeypatch.setenv("DATADOCK_DEFAULT_PAGE_SIZE", "25")
        monkeypatch.setenv("REDIS_DB", "3")
        settings = Settings()
        assert settings.default_page_size == 25
        assert settings.engine_defaults(SourceType.REDIS)["db"] == 3

    def test_empty_values_are_dropped(self, monkeypatch):
        """Verify empty engine values never shadow adapter defaults."""
        monkeypatch.setenv("MYSQL_PASSWORD", "")
        monkeypatch.setenv("MYSQL_DATABASE", "")
        defaults = Settings().engine_defaults(SourceType.MYSQL)
        assert "password" not in defaults
        assert "database" not in defaults
        assert defaults["connect_timeout"] == Settings().connect_timeout

    def test_mongodb_defaults(self, monkeypatch):
        """Verify MongoDB defaults carry a URL."""
        monkeypatch.setenv("MONGODB_URL", "mongodb://db:27017")
        defaults = Settings().engine_defaults(SourceType.MONGODB)
        assert defaults["url"] == "mongodb://db:27017"


class TestLifespan:
    """Tests for the service lifespan."""

    async def test_lifespan_closes_sessions(self, monkeypatch, tmp_path, fake_adapter):
        """Verify services start, connect and shut down cleanly."""
        monkeypatch.setenv("DATADOCK_CATALOG_PATH", str(tmp_path / "sources.json"))

        config = {"host": "h", "user": "u", "password": ""}
        async with lifespan(Settings()) as services:
            await services.catalog.create({"name": "db1", "type": "mysql", "config": config})
            result = await services.catalog.connect_by_name("db1")
            assert result.success is True
            assert len(services.registry) == 1

        assert len(services.registry) == 0
        assert services.catalog.get("db1").status == "disconnected"
        assert fake_adapter.instances[0].disconnect_calls == 1
