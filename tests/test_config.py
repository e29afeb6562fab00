from matchcore.config import DatabaseSettings, Settings


def test_explicit_database_settings_are_kept():
    configured = Settings(db=DatabaseSettings(url="sqlite+aiosqlite:///engine.db", echo=True))
    assert configured.db.url == "sqlite+aiosqlite:///engine.db"
    assert configured.db.echo is True


def test_database_settings_from_mapping():
    configured = Settings(db={"url": "postgresql+asyncpg://db/engine", "pool_size": 7})
    assert configured.db.url == "postgresql+asyncpg://db/engine"
    assert configured.db.pool_size == 7
