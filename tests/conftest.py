"""Shared pytest fixtures: a throwaway SQLite database and mock providers."""

import pytest
import pytest_asyncio

from reconciler.core.config import Settings, get_settings
from reconciler.database import (
    Base,
    build_engine,
    build_session_maker,
    get_engine,
    get_session_maker,
    init_db,
)
from reconciler.pipeline.bootstrap import build_runner
from reconciler.pipeline.types import RunConfig, RunMode
from reconciler.services.menus import reset_menu_source
from reconciler.services.menus.mock import MockMenuSource
from reconciler.services.places import reset_place_search_provider
from reconciler.services.places.mock import MockPlaceSearchProvider


class RecordingSleep:
    """Stand-in for asyncio.sleep that records the requested delays."""

    def __init__(self):
        self.calls: list[float] = []
        self.hooks = {}

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        hook = self.hooks.get(seconds)
        if hook is not None:
            hook()


@pytest.fixture(autouse=True)
def clean_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'reconciler.db'}")
    await init_db(engine)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def place_provider() -> MockPlaceSearchProvider:
    return MockPlaceSearchProvider()


@pytest.fixture
def menu_source() -> MockMenuSource:
    return MockMenuSource()


@pytest.fixture
def make_runner(settings, session_maker, place_provider, menu_source, sleep):
    """Factory building a runner on the test database and mock providers."""

    def factory(mode: RunMode = RunMode.PHOTOS, **options):
        values = {
            "mode": mode,
            "batch_pause_seconds": 0.0,
            "retry_delay_seconds": 1.0,
            "inter_request_delay_seconds": 0.2,
            "max_items_per_record": 5 if mode == RunMode.PHOTOS else 500,
        }
        values.update(options)
        return build_runner(
            RunConfig(**values),
            settings=settings,
            session_maker=session_maker,
            place_provider=place_provider,
            menu_source=menu_source,
            sleep=sleep,
        )

    return factory


@pytest.fixture
def app_env(tmp_path, monkeypatch):
    """Point the application settings at a temporary SQLite database."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ENV_MODE", "development")
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'app.db'}")
    monkeypatch.setenv("DATA_DIRECTORY", str(tmp_path / "data"))
    monkeypatch.setenv("BATCH_PAUSE_SECONDS", "0")
    _reset_app_caches()
    yield tmp_path
    _reset_app_caches()


def _reset_app_caches():
    get_engine.cache_clear()
    get_session_maker.cache_clear()
    reset_place_search_provider()
    reset_menu_source()
