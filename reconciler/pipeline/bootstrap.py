"""
Runner Assembly

Wires a ReconciliationRunner from settings and a RunConfig. Every
collaborator can be injected, which is how the CLI, the Celery task and
the tests share one assembly path.

Usage:
    config = RunConfig.from_settings(get_settings(), mode="menus")
    runner = build_runner(config)
    report = await runner.run(names)
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reconciler.core.config import Settings, get_settings
from reconciler.database import get_session_maker
from reconciler.pipeline.duplicates import DuplicateDetector
from reconciler.pipeline.extraction import MenuExtractionAdapter, PhotoExtractionAdapter
from reconciler.pipeline.matcher import ResolutionMatcher
from reconciler.pipeline.runner import (
    CatalogCandidates,
    PlaceSearchCandidates,
    ReconciliationRunner,
)
from reconciler.pipeline.types import RunConfig, RunMode
from reconciler.services.menus import BaseMenuSource, get_menu_source
from reconciler.services.persistence import PersistenceGateway
from reconciler.services.places import BasePlaceSearchProvider, get_place_search_provider
from reconciler.services.rate_limit import RateLimitedClient, SleepFunc
from reconciler.services.run_log import RunLogStore

logger = logging.getLogger(__name__)


def build_runner(
    config: RunConfig,
    settings: Optional[Settings] = None,
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    place_provider: Optional[BasePlaceSearchProvider] = None,
    menu_source: Optional[BaseMenuSource] = None,
    sleep: Optional[SleepFunc] = None,
) -> ReconciliationRunner:
    """
    Assemble a runner for one run.

    Args:
        config: Run configuration (mode picks the provider pair)
        settings: Application settings (cached settings when omitted)
        session_maker: Database sessions (application engine when omitted)
        place_provider: Place search provider for photo runs
        menu_source: Menu source for menu runs
        sleep: Replacement for asyncio.sleep (tests)

    Returns:
        ReconciliationRunner: Ready to `run(names)`
    """
    settings = settings or get_settings()
    session_maker = session_maker or get_session_maker()
    client = RateLimitedClient.from_run_config(config, sleep=sleep)

    if config.mode == RunMode.PHOTOS:
        provider = place_provider or get_place_search_provider()
        candidates = PlaceSearchCandidates(provider, client, search_suffix=config.search_suffix)
        extractor = PhotoExtractionAdapter(
            provider,
            client,
            max_items=config.max_items_per_record,
            max_width=settings.photo_max_width,
        )
        source_name = provider.provider_name
    else:
        source = menu_source or get_menu_source()
        candidates = CatalogCandidates(source, client)
        extractor = MenuExtractionAdapter(
            source,
            client,
            max_items=config.max_items_per_record,
            default_currency=settings.menu_currency,
        )
        source_name = source.provider_name

    logger.debug(f"Runner assembled: mode={config.mode.value}, source={source_name}")

    return ReconciliationRunner(
        config=config,
        client=client,
        candidates=candidates,
        matcher=ResolutionMatcher(threshold=config.similarity_threshold),
        extractor=extractor,
        detector=DuplicateDetector.from_settings(settings),
        gateway=PersistenceGateway(session_maker, source=source_name),
        run_log=RunLogStore(session_maker),
    )
