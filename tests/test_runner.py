"""
End-to-end tests for the reconciliation runner.

Runs the full resolve -> extract -> dedupe -> persist pipeline against the
mock providers and a SQLite database.
"""

import asyncio
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select

from reconciler.core.exceptions import (
    PersistenceError,
    ProviderMalformedError,
    ProviderQuotaExceededError,
    ProviderTransientError,
)
from reconciler.models import Establishment, MenuItem
from reconciler.pipeline.bootstrap import build_runner
from reconciler.pipeline.types import (
    CANCELLED_REASON,
    QUOTA_ABORT_REASON,
    CandidateRecord,
    MatchType,
    OutcomeStatus,
    RunConfig,
    RunMode,
    RunStatus,
)
from reconciler.services.menus.wolt import WoltMenuSource
from reconciler.services.persistence import PersistenceGateway
from reconciler.services.run_log import RunLogStore

UNKNOWN = "Totally Unknown Venue Xyz123"


async def establishments(session_maker):
    async with session_maker() as session:
        return (await session.execute(select(Establishment))).scalars().all()


# ── Photo runs ────────────────────────────────────────────────────────

class TestPhotoRun:

    @pytest.mark.asyncio
    async def test_trabuxu_matched_with_photos(self, make_runner, session_maker):
        report = await make_runner().run(["Trabuxu Bistro"])

        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.MATCHED
        assert outcome.match_type == MatchType.EXACT
        assert outcome.score == 1.0
        assert outcome.external_id == "mock-trabuxu"
        assert outcome.items_written == 3
        assert report.summary.status == RunStatus.COMPLETED
        assert report.summary.matched == 1

        rows = await establishments(session_maker)
        assert len(rows) == 1
        assert rows[0].external_id == "mock-trabuxu"
        assert rows[0].address == "1 Strait Street, Valletta"
        assert rows[0].id == outcome.establishment_id

    @pytest.mark.asyncio
    async def test_unknown_name_creates_nothing(self, make_runner, session_maker):
        report = await make_runner().run([UNKNOWN])

        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.NOT_FOUND
        assert outcome.match_type == MatchType.NOT_FOUND
        assert outcome.score == 0.0
        assert report.summary.not_found == 1
        assert await establishments(session_maker) == []

    @pytest.mark.asyncio
    async def test_fuzzy_match(self, make_runner):
        report = await make_runner().run(["Kings Pubb"])
        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.MATCHED
        assert outcome.match_type == MatchType.FUZZY
        assert outcome.external_id == "mock-kings-pub"

    @pytest.mark.asyncio
    async def test_venue_without_photos_is_empty(self, make_runner, session_maker):
        report = await make_runner().run(["White Tower Lido"])
        assert report.outcomes[0].status == OutcomeStatus.EXTRACTION_EMPTY
        assert report.summary.extraction_empty == 1
        assert await establishments(session_maker) == []

    @pytest.mark.asyncio
    async def test_search_suffix_appended(self, make_runner, place_provider):
        await make_runner(search_suffix="Malta").run(["Tortuga"])
        assert ("search", "Tortuga Malta") in place_provider.calls

    @pytest.mark.asyncio
    async def test_identical_rerun_writes_nothing(self, make_runner, session_maker):
        await make_runner().run(["Tortuga"])
        report = await make_runner().run(["Tortuga"])

        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.MATCHED
        assert outcome.items_written == 0
        assert len(await establishments(session_maker)) == 1

    @pytest.mark.asyncio
    async def test_outcomes_in_input_order(self, make_runner):
        names = ["Tortuga", UNKNOWN, "Kings Pub", "White Tower Lido"]
        report = await make_runner(batch_size=2).run(names)
        assert [o.input for o in report.outcomes] == names
        assert [o.status for o in report.outcomes] == [
            OutcomeStatus.MATCHED,
            OutcomeStatus.NOT_FOUND,
            OutcomeStatus.MATCHED,
            OutcomeStatus.EXTRACTION_EMPTY,
        ]
        assert report.summary.total == 4
        assert report.summary.items_written == 5 + 2

    @pytest.mark.asyncio
    async def test_batch_pause_between_batches(self, make_runner, sleep):
        await make_runner(batch_size=2, batch_pause_seconds=7.0).run(
            [UNKNOWN, UNKNOWN + "a", UNKNOWN + "b", UNKNOWN + "c", UNKNOWN + "d"]
        )
        assert sleep.calls.count(7.0) == 2


# ── Menu runs ─────────────────────────────────────────────────────────

class TestMenuRun:

    @pytest.mark.asyncio
    async def test_trabuxu_menu_lines(self, make_runner, session_maker, menu_source):
        report = await make_runner(RunMode.MENUS).run(["Trabuxu Bistro", "Tortuga"])

        assert [o.status for o in report.outcomes] == [OutcomeStatus.MATCHED] * 2
        assert report.outcomes[0].items_written == 4
        assert report.outcomes[0].external_id == "trabuxu-bistro"

        async with session_maker() as session:
            items = (await session.execute(
                select(MenuItem)
                .where(MenuItem.establishment_id == report.outcomes[0].establishment_id)
                .order_by(MenuItem.position)
            )).scalars().all()
        assert [(i.name, i.price, i.category) for i in items] == [
            ("House Red", Decimal("6.50"), "Wines"),
            ("Gellewza Rosé", Decimal("7.00"), "Wines"),
            ("Maltese Platter", Decimal("14.50"), "Platters"),
            ("Cheese Board", Decimal("12.00"), "Platters"),
        ]

        # The catalog is listed once per run
        assert [c for c in menu_source.calls if c[0] == "list_venues"] == [("list_venues", "")]

    @pytest.mark.asyncio
    async def test_empty_menu(self, make_runner):
        report = await make_runner(RunMode.MENUS).run(["Empty Kitchen"])
        assert report.outcomes[0].status == OutcomeStatus.EXTRACTION_EMPTY

    @pytest.mark.asyncio
    async def test_catalog_failure_fails_every_name(self, make_runner, menu_source):
        menu_source.fail_next(ProviderMalformedError("garbage page", provider="mock"))
        report = await make_runner(RunMode.MENUS).run(["Tortuga", "Kings Pub"])
        assert [o.status for o in report.outcomes] == [OutcomeStatus.FAILED] * 2
        assert report.summary.status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_catalog_quota_aborts(self, make_runner, menu_source):
        menu_source.fail_next(ProviderQuotaExceededError("429", provider="mock"))
        report = await make_runner(RunMode.MENUS).run(["Tortuga"])
        assert report.summary.status == RunStatus.ABORTED_QUOTA
        assert report.outcomes[0].error == QUOTA_ABORT_REASON

    @pytest.mark.asyncio
    async def test_malformed_wolt_catalog_still_reports(self, settings, session_maker, sleep):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"sections": ["oops"]})),
            base_url="https://wolt.test",
        )
        runner = build_runner(
            RunConfig(mode=RunMode.MENUS, batch_pause_seconds=0.0, inter_request_delay_seconds=0.0),
            settings=settings,
            session_maker=session_maker,
            menu_source=WoltMenuSource(base_url="https://wolt.test", lat=35.9, lon=14.5, client=client),
            sleep=sleep,
        )

        report = await runner.run(["Tortuga"], run_id="run-wolt")

        assert report.outcomes[0].status == OutcomeStatus.NOT_FOUND
        run = await RunLogStore(session_maker).get_run("run-wolt")
        assert run["status"] == RunStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_unexpected_catalog_error_fails_every_name(self, make_runner, menu_source, session_maker):
        async def broken_listing():
            raise RuntimeError("catalog exploded")

        menu_source.list_venues = broken_listing
        report = await make_runner(RunMode.MENUS).run(["Tortuga", "Kings Pub"], run_id="run-broken")

        assert [o.status for o in report.outcomes] == [OutcomeStatus.FAILED] * 2
        assert "catalog exploded" in report.outcomes[0].error
        run = await RunLogStore(session_maker).get_run("run-broken")
        assert run["status"] == RunStatus.COMPLETED.value


# ── Failures ──────────────────────────────────────────────────────────

class TestFailures:

    @pytest.mark.asyncio
    async def test_transient_failures_retried(self, make_runner, place_provider, sleep):
        place_provider.fail_next(ProviderTransientError("timeout"), ProviderTransientError("timeout"))
        report = await make_runner(max_retries=3).run(["Tortuga"])
        assert report.outcomes[0].status == OutcomeStatus.MATCHED
        assert sleep.calls.count(1.0) == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_only_that_name(self, make_runner, place_provider):
        place_provider.fail_next(*[ProviderTransientError("timeout") for _ in range(3)])
        report = await make_runner(max_retries=3).run(["Tortuga", "Kings Pub"])
        assert report.outcomes[0].status == OutcomeStatus.FAILED
        assert "timeout" in report.outcomes[0].error
        assert report.outcomes[1].status == OutcomeStatus.MATCHED
        assert report.summary.status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_quota_aborts_remaining_names(self, make_runner, place_provider):
        runner = make_runner()
        original_search = place_provider.search

        async def search(query):
            if query == "Kings Pub":
                raise ProviderQuotaExceededError("OVER_QUERY_LIMIT", provider="mock")
            return await original_search(query)

        place_provider.search = search
        report = await runner.run(["Tortuga", "Kings Pub", "Trabuxu Bistro"])

        assert report.summary.status == RunStatus.ABORTED_QUOTA
        assert [o.status for o in report.outcomes] == [
            OutcomeStatus.MATCHED, OutcomeStatus.FAILED, OutcomeStatus.FAILED,
        ]
        assert report.outcomes[1].error == QUOTA_ABORT_REASON
        assert report.outcomes[2].error == QUOTA_ABORT_REASON
        assert ("search", "Trabuxu Bistro") not in place_provider.calls

    @pytest.mark.asyncio
    async def test_malformed_details_fail_with_match_info(self, make_runner, place_provider):
        async def details(external_id):
            raise ProviderMalformedError("bad json", provider="mock")

        place_provider.details = details
        report = await make_runner().run(["Tortuga"])

        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error == "[mock] bad json"
        assert outcome.match_type == MatchType.EXACT
        assert outcome.external_id == "mock-tortuga"

    @pytest.mark.asyncio
    async def test_persistence_failure(self, make_runner):
        runner = make_runner()

        async def broken(*args, **kwargs):
            raise PersistenceError("disk full")

        runner.gateway.upsert_items = broken
        report = await runner.run(["Tortuga", UNKNOWN])
        assert report.outcomes[0].status == OutcomeStatus.PERSIST_ERROR
        assert report.outcomes[0].external_id == "mock-tortuga"
        assert report.outcomes[1].status == OutcomeStatus.NOT_FOUND
        assert report.summary.persist_errors == 1


# ── Cancellation ──────────────────────────────────────────────────────

class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_event_stops_before_next_name(self, make_runner, sleep):
        cancel = asyncio.Event()
        sleep.hooks[7.0] = cancel.set
        runner = make_runner(batch_size=1, batch_pause_seconds=7.0)

        report = await runner.run(["Tortuga", "Kings Pub", "Trabuxu Bistro"], cancel_event=cancel)

        assert report.summary.status == RunStatus.CANCELLED
        assert report.outcomes[0].status == OutcomeStatus.MATCHED
        assert [o.error for o in report.outcomes[1:]] == [CANCELLED_REASON] * 2

    @pytest.mark.asyncio
    async def test_task_cancellation_records_run(self, make_runner, session_maker, sleep):
        runner = make_runner(batch_size=1, batch_pause_seconds=7.0)

        def cancel_task():
            raise asyncio.CancelledError()

        sleep.hooks[7.0] = cancel_task
        with pytest.raises(asyncio.CancelledError):
            await runner.run(["Tortuga", "Kings Pub"], run_id="run-cancelled")

        run = await RunLogStore(session_maker).get_run("run-cancelled")
        assert run["status"] == RunStatus.CANCELLED.value
        assert [o["input"] for o in run["outcomes"]] == ["Tortuga"]


# ── Resume & run log ──────────────────────────────────────────────────

class TestResume:

    @pytest.mark.asyncio
    async def test_resume_skips_done_names(self, make_runner, place_provider):
        place_provider.fail_next(ProviderMalformedError("bad json"))
        first = await make_runner().run(["Kings Pub", "Tortuga", UNKNOWN])
        assert [o.status for o in first.outcomes] == [
            OutcomeStatus.FAILED, OutcomeStatus.MATCHED, OutcomeStatus.NOT_FOUND,
        ]

        second = await make_runner(resume=True).run(["Kings Pub", "Tortuga", UNKNOWN, "Trabuxu Bistro"])
        assert second.summary.skipped == 2
        assert [o.input for o in second.outcomes] == ["Kings Pub", "Trabuxu Bistro"]
        assert all(o.status == OutcomeStatus.MATCHED for o in second.outcomes)

    @pytest.mark.asyncio
    async def test_resume_is_per_mode(self, make_runner):
        await make_runner(RunMode.MENUS).run(["Tortuga"])
        report = await make_runner(RunMode.PHOTOS, resume=True).run(["Tortuga"])
        assert report.summary.skipped == 0
        assert report.outcomes[0].status == OutcomeStatus.MATCHED

    @pytest.mark.asyncio
    async def test_without_resume_everything_reprocessed(self, make_runner):
        await make_runner().run(["Tortuga"])
        report = await make_runner().run(["Tortuga"])
        assert report.summary.skipped == 0
        assert len(report.outcomes) == 1

    @pytest.mark.asyncio
    async def test_run_log_records_header_and_outcomes(self, make_runner, session_maker):
        report = await make_runner().run(["Tortuga", UNKNOWN], run_id="run-1")

        run = await RunLogStore(session_maker).get_run("run-1")
        assert run["status"] == "completed"
        assert run["mode"] == "photos"
        assert run["total_inputs"] == 2
        assert run["summary"]["matched"] == 1
        assert run["config"]["mode"] == "photos"
        assert [o["status"] for o in run["outcomes"]] == ["matched", "not_found"]
        assert report.run_id == "run-1"

        runs = await RunLogStore(session_maker).list_runs()
        assert [r["run_id"] for r in runs] == ["run-1"]


# ── Dedupe on write ───────────────────────────────────────────────────

class TestDedupeOnWrite:

    @pytest.mark.asyncio
    async def test_reuses_row_without_external_id(self, make_runner, session_maker):
        gateway = PersistenceGateway(session_maker)
        local_id = await gateway.upsert_establishment(CandidateRecord(
            external_id="", display_name="Trabuxu", address="1 Strait Street, Valletta",
        ))

        report = await make_runner().run(["Trabuxu Bistro"])

        assert report.outcomes[0].establishment_id == local_id
        rows = await establishments(session_maker)
        assert len(rows) == 1
        assert rows[0].external_id == "mock-trabuxu"

    @pytest.mark.asyncio
    async def test_lookalike_with_other_external_id_kept_apart(self, make_runner, session_maker):
        gateway = PersistenceGateway(session_maker)
        other_id = await gateway.upsert_establishment(CandidateRecord(
            external_id="elsewhere-1", display_name="Trabuxu", address="1 Strait Street, Valletta",
        ))

        report = await make_runner().run(["Trabuxu Bistro"])

        assert report.outcomes[0].establishment_id != other_id
        assert len(await establishments(session_maker)) == 2

    @pytest.mark.asyncio
    async def test_row_with_same_external_id_wins_over_older_lookalike(
        self, make_runner, session_maker,
    ):
        gateway = PersistenceGateway(session_maker)
        await gateway.upsert_establishment(CandidateRecord(
            external_id="", display_name="Trabuxu Bistro", address="1 Strait Street, Valletta",
        ))
        keyed_id = await gateway.upsert_establishment(CandidateRecord(
            external_id="mock-trabuxu", display_name="Trabuxu Bistro",
            address="1 Strait Street, Valletta",
        ))

        report = await make_runner().run(["Trabuxu Bistro"])
        rerun = await make_runner().run(["Trabuxu Bistro"])

        for outcome in (report.outcomes[0], rerun.outcomes[0]):
            assert outcome.status == OutcomeStatus.MATCHED
            assert outcome.establishment_id == keyed_id
        assert len(await establishments(session_maker)) == 2

    @pytest.mark.asyncio
    async def test_keyed_lookalike_does_not_hide_unkeyed_row(self, make_runner, session_maker):
        gateway = PersistenceGateway(session_maker)
        await gateway.upsert_establishment(CandidateRecord(
            external_id="elsewhere-1", display_name="Trabuxu", address="1 Strait Street, Valletta",
        ))
        local_id = await gateway.upsert_establishment(CandidateRecord(
            external_id="", display_name="Trabuxu", address="1 Strait Street, Valletta",
        ))

        report = await make_runner().run(["Trabuxu Bistro"])

        assert report.outcomes[0].status == OutcomeStatus.MATCHED
        assert report.outcomes[0].establishment_id == local_id
        assert len(await establishments(session_maker)) == 2
