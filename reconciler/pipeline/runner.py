"""
Reconciliation Runner

Drives a list of input names through resolve -> extract -> dedupe check ->
persist, one name at a time, in fixed-size batches.

Per-input lifecycle (logged at DEBUG):

    PENDING -> RESOLVING -> EXTRACTING -> PERSISTING -> DONE
               RESOLVING  -> NOT_FOUND -> SKIPPED -> DONE
               EXTRACTING -> SKIPPED (no items) -> DONE
               any stage  -> FAILED

Run-level rules:
    - A quota error anywhere halts the run. The current input and every
      input not yet processed get FAILED("quota exceeded, run aborted").
    - Any other per-input failure becomes that input's outcome; the run
      goes on.
    - The cancel event is checked before every input. Once set, every
      remaining input gets FAILED("cancelled").
    - With resume on, inputs whose latest logged outcome is MATCHED,
      NOT_FOUND or EXTRACTION_EMPTY are skipped.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from reconciler.core.exceptions import (
    PersistenceError,
    ProviderError,
    ProviderNotFoundError,
    ProviderQuotaExceededError,
)
from reconciler.pipeline.duplicates import DuplicateDetector
from reconciler.pipeline.extraction import ExtractionAdapter
from reconciler.pipeline.matcher import ResolutionMatcher
from reconciler.pipeline.types import (
    CANCELLED_REASON,
    QUOTA_ABORT_REASON,
    CandidateRecord,
    ItemState,
    MatchResult,
    MatchType,
    OutcomeStatus,
    RunConfig,
    RunOutcome,
    RunReport,
    RunStatus,
    RunSummary,
    StoredEstablishment,
)
from reconciler.services.menus.base import BaseMenuSource
from reconciler.services.persistence import PersistenceGateway
from reconciler.services.places.base import BasePlaceSearchProvider
from reconciler.services.rate_limit import RateLimitedClient
from reconciler.services.run_log import RunLogStore

logger = logging.getLogger(__name__)


# =============================================================================
# CANDIDATE SOURCES
# =============================================================================

class CandidateSource(ABC):
    """Where the candidates an input name is resolved against come from."""

    async def prepare(self) -> None:
        """Called once before the first input of a run."""

    @abstractmethod
    async def candidates_for(self, name: str) -> Sequence[CandidateRecord]:
        pass


class PlaceSearchCandidates(CandidateSource):
    """One provider search per input name."""

    def __init__(
        self,
        provider: BasePlaceSearchProvider,
        client: RateLimitedClient,
        search_suffix: str = "",
    ):
        self.provider = provider
        self.client = client
        self.search_suffix = search_suffix

    def query_for(self, name: str) -> str:
        return f"{name} {self.search_suffix}".strip()

    async def candidates_for(self, name: str) -> Sequence[CandidateRecord]:
        query = self.query_for(name)
        return await self.client.fetch(
            lambda: self.provider.search(query),
            description=f"search '{query}'",
        )


class CatalogCandidates(CandidateSource):
    """A catalog listed once per run and reused for every input name."""

    def __init__(self, source: BaseMenuSource, client: RateLimitedClient):
        self.source = source
        self.client = client
        self._catalog: Optional[list[CandidateRecord]] = None

    async def prepare(self) -> None:
        self._catalog = await self.client.fetch(
            self.source.list_venues,
            description="list menu catalog",
        )
        logger.info(f"📖 Menu catalog loaded: {len(self._catalog)} venues")

    async def candidates_for(self, name: str) -> Sequence[CandidateRecord]:
        if self._catalog is None:
            await self.prepare()
        return self._catalog


# =============================================================================
# RUNNER
# =============================================================================

class ReconciliationRunner:
    """
    Sequential, batch-paced reconciliation of input names.

    Example:
        >>> runner = build_runner(RunConfig(mode=RunMode.PHOTOS))
        >>> report = await runner.run(["Trabuxu Bistro", "Tortuga"])
        >>> print(report.summary.matched)
    """

    def __init__(
        self,
        config: RunConfig,
        client: RateLimitedClient,
        candidates: CandidateSource,
        matcher: ResolutionMatcher,
        extractor: ExtractionAdapter,
        detector: DuplicateDetector,
        gateway: PersistenceGateway,
        run_log: Optional[RunLogStore] = None,
    ):
        self.config = config
        self.client = client
        self.candidates = candidates
        self.matcher = matcher
        self.extractor = extractor
        self.detector = detector
        self.gateway = gateway
        self.run_log = run_log
        self._existing: dict[int, StoredEstablishment] = {}

    async def run(
        self,
        names: Sequence[str],
        cancel_event: Optional[asyncio.Event] = None,
        run_id: Optional[str] = None,
    ) -> RunReport:
        """
        Reconcile every name and return the run report.

        Args:
            names: Operator-supplied venue names, processed in order
            cancel_event: Set it to stop the run before the next input
            run_id: Identifier to log the run under (generated if omitted)

        Returns:
            RunReport: One outcome per processed name plus the summary
        """
        run_id = run_id or str(uuid.uuid4())
        summary = RunSummary()
        report = RunReport(run_id=run_id, summary=summary)
        mode = self.config.mode

        pending = list(names)
        if self.config.resume and self.run_log is not None:
            latest = await self.run_log.latest_outcomes(pending, mode)
            pending = [n for n in pending if not (n in latest and latest[n].is_done)]
            summary.skipped = len(names) - len(pending)
            if summary.skipped:
                logger.info(f"⏭️ Resume: skipping {summary.skipped} already reconciled names")

        self._existing = {s.id: s for s in await self.gateway.load_establishments()}

        if self.run_log is not None:
            await self.run_log.start_run(run_id, self.config, len(pending))

        logger.info(
            f"🚀 Run {run_id} started: {len(pending)} names, mode={mode.value}, "
            f"batch_size={self.config.batch_size}"
        )

        try:
            summary.status = await self._run_pending(pending, report, cancel_event)
        except asyncio.CancelledError:
            summary.status = RunStatus.CANCELLED
            logger.warning(f"🛑 Run {run_id} task cancelled")
            await self._finish(report)
            raise

        await self._finish(report)
        return report

    async def _run_pending(
        self,
        pending: list[str],
        report: RunReport,
        cancel_event: Optional[asyncio.Event],
    ) -> RunStatus:
        if not pending:
            return RunStatus.COMPLETED

        try:
            await self.candidates.prepare()
        except ProviderQuotaExceededError as e:
            logger.error(f"🛑 Quota exceeded before the first name: {e}")
            await self._fail_all(pending, report, QUOTA_ABORT_REASON)
            return RunStatus.ABORTED_QUOTA
        except ProviderError as e:
            logger.error(f"✗ Candidate source unavailable: {e}")
            await self._fail_all(pending, report, str(e))
            return RunStatus.COMPLETED
        except Exception as e:
            logger.exception(f"✗ Candidate source crashed: {e}")
            await self._fail_all(pending, report, f"candidate source error: {e}")
            return RunStatus.COMPLETED

        batch_size = self.config.batch_size
        total_batches = (len(pending) + batch_size - 1) // batch_size

        for index, name in enumerate(pending):
            if index % batch_size == 0:
                if index and self.config.batch_pause_seconds > 0:
                    logger.debug(f"Pausing {self.config.batch_pause_seconds}s between batches")
                    await self.client.sleep(self.config.batch_pause_seconds)
                logger.info(f"📦 Batch {index // batch_size + 1}/{total_batches}")

            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"🛑 Run cancelled, {len(pending) - index} names left")
                await self._fail_all(pending[index:], report, CANCELLED_REASON)
                return RunStatus.CANCELLED

            try:
                outcome = await self.process_one(name)
            except ProviderQuotaExceededError as e:
                logger.error(f"🛑 Quota exceeded on '{name}', aborting run: {e}")
                await self._fail_all(pending[index:], report, QUOTA_ABORT_REASON)
                return RunStatus.ABORTED_QUOTA
            except Exception as e:
                logger.exception(f"✗ Unexpected error on '{name}': {e}")
                outcome = RunOutcome(input=name, status=OutcomeStatus.FAILED, error=str(e))

            await self._emit(outcome, report)

        return RunStatus.COMPLETED

    # =========================================================================
    # ONE INPUT
    # =========================================================================

    def _transition(self, name: str, state: ItemState) -> None:
        logger.debug(f"'{name}' -> {state.value}")

    async def process_one(self, name: str) -> RunOutcome:
        """
        Run one input through the pipeline.

        Raises:
            ProviderQuotaExceededError: The run must halt
        """
        self._transition(name, ItemState.PENDING)
        self._transition(name, ItemState.RESOLVING)

        try:
            candidates = await self.candidates.candidates_for(name)
            match = self.matcher.resolve(name, candidates)
        except ProviderQuotaExceededError:
            raise
        except ProviderNotFoundError:
            match = MatchResult.not_found(name)
        except ProviderError as e:
            self._transition(name, ItemState.FAILED)
            return RunOutcome(input=name, status=OutcomeStatus.FAILED, error=str(e))

        if not match.is_match:
            self._transition(name, ItemState.NOT_FOUND)
            self._transition(name, ItemState.SKIPPED)
            self._transition(name, ItemState.DONE)
            return RunOutcome(
                input=name,
                status=OutcomeStatus.NOT_FOUND,
                match_type=MatchType.NOT_FOUND,
                score=0.0,
            )

        record = match.matched_record
        matched = {
            "external_id": record.external_id,
            "match_type": match.match_type,
            "score": match.score,
        }

        self._transition(name, ItemState.EXTRACTING)
        try:
            extraction = await self.extractor.extract_full(record)
        except ProviderQuotaExceededError:
            raise
        except ProviderError as e:
            self._transition(name, ItemState.FAILED)
            return RunOutcome(input=name, status=OutcomeStatus.FAILED, error=str(e), **matched)

        if not extraction.items:
            self._transition(name, ItemState.SKIPPED)
            self._transition(name, ItemState.DONE)
            return RunOutcome(input=name, status=OutcomeStatus.EXTRACTION_EMPTY, **matched)

        self._transition(name, ItemState.PERSISTING)
        existing_id = self._dedupe_target(extraction.record)
        try:
            establishment_id = await self.gateway.upsert_establishment(
                extraction.record, existing_id=existing_id
            )
            written = await self.gateway.upsert_items(establishment_id, extraction.items)
        except PersistenceError as e:
            self._transition(name, ItemState.FAILED)
            return RunOutcome(input=name, status=OutcomeStatus.PERSIST_ERROR, error=str(e), **matched)

        self._remember(establishment_id, extraction.record)
        self._transition(name, ItemState.DONE)
        return RunOutcome(
            input=name,
            status=OutcomeStatus.MATCHED,
            items_written=written,
            establishment_id=establishment_id,
            **matched,
        )

    def _dedupe_target(self, record: CandidateRecord) -> Optional[int]:
        """
        Stored row the record should be written into, if any.

        A row already carrying the record's external id always wins. Failing
        that, only rows without an external id are candidates for a
        similarity match; a look-alike with a different external id is a
        separate venue as far as the provider is concerned.
        """
        stored_rows = list(self._existing.values())
        if record.external_id:
            for stored in stored_rows:
                if stored.external_id == record.external_id:
                    return stored.id

        probe = StoredEstablishment(
            id=-1,
            name=record.display_name,
            external_id=record.external_id,
            address=record.address,
        )
        unkeyed = [stored for stored in stored_rows if not stored.external_id]
        found = self.detector.find_duplicate_of(probe, unkeyed)
        if found is not None:
            stored, reason = found
            logger.info(
                f"🔗 '{record.display_name}' matches stored #{stored.id} "
                f"'{stored.name}' ({reason}), updating it"
            )
            return stored.id

        found = self.detector.find_duplicate_of(probe, stored_rows)
        if found is not None:
            stored, reason = found
            logger.warning(
                f"'{record.display_name}' resembles #{stored.id} '{stored.name}' ({reason}) "
                f"but external ids differ ({record.external_id} vs {stored.external_id})"
            )
        return None

    def _remember(self, establishment_id: int, record: CandidateRecord) -> None:
        """Keep the in-run view of the store current for later dedupe checks."""
        previous = self._existing.get(establishment_id)
        self._existing[establishment_id] = StoredEstablishment(
            id=establishment_id,
            name=record.display_name or (previous.name if previous else ""),
            external_id=record.external_id or (previous.external_id if previous else None),
            address=record.address or (previous.address if previous else None),
            created_at=previous.created_at if previous else None,
        )

    # =========================================================================
    # OUTCOMES
    # =========================================================================

    async def _emit(self, outcome: RunOutcome, report: RunReport) -> None:
        report.outcomes.append(outcome)
        report.summary.record(outcome)

        icon = {
            OutcomeStatus.MATCHED: "✅",
            OutcomeStatus.NOT_FOUND: "❔",
            OutcomeStatus.EXTRACTION_EMPTY: "➖",
        }.get(outcome.status, "❌")
        logger.info(
            f"{icon} '{outcome.input}': {outcome.status.value}"
            + (f", {outcome.items_written} items written" if outcome.items_written else "")
            + (f" ({outcome.error})" if outcome.error else "")
        )

        if self.run_log is not None:
            try:
                await self.run_log.append(report.run_id, self.config.mode, outcome)
            except PersistenceError as e:
                logger.error(f"Outcome of '{outcome.input}' not logged: {e}")

    async def _fail_all(self, names: Sequence[str], report: RunReport, reason: str) -> None:
        for name in names:
            await self._emit(
                RunOutcome(input=name, status=OutcomeStatus.FAILED, error=reason),
                report,
            )

    async def _finish(self, report: RunReport) -> None:
        summary = report.summary
        if self.run_log is not None:
            try:
                await self.run_log.finish_run(report.run_id, summary)
            except PersistenceError as e:
                logger.error(f"Run {report.run_id} summary not stored: {e}")

        logger.info(
            f"🏁 Run {report.run_id} {summary.status.value}: "
            f"{summary.matched} matched, {summary.not_found} not found, "
            f"{summary.extraction_empty} empty, {summary.persist_errors} persist errors, "
            f"{summary.failed} failed, {summary.items_written} items written, "
            f"{summary.skipped} skipped"
        )
        logger.info(f"📊 Provider calls: {self.client.stats.to_dict()}")
