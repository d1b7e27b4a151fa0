"""
Tests for the command line: argument parsing, name files and a full
reconcile against a SQLite database.
"""

import asyncio

import pytest

from reconciler import cli
from reconciler.core.exceptions import PersistenceError
from reconciler.database import build_engine, build_session_maker, init_db
from reconciler.pipeline.types import CandidateRecord
from reconciler.services.persistence import PersistenceGateway


class TestReadNames:

    def test_arguments_then_file(self, tmp_path):
        names_file = tmp_path / "bars.txt"
        names_file.write_text("# Valletta\nTrabuxu Bistro\n\n  Kings Pub  \n", encoding="utf-8")
        assert cli.read_names(["Tortuga", "  "], str(names_file)) == [
            "Tortuga", "Trabuxu Bistro", "Kings Pub",
        ]

    def test_no_file(self):
        assert cli.read_names(["Tortuga"], None) == ["Tortuga"]


class TestParser:

    def test_reconcile_options(self):
        args = cli.build_parser().parse_args([
            "reconcile", "Tortuga", "--mode", "menus", "--batch-size", "5",
            "--backoff", "exponential", "--resume", "--report",
        ])
        assert args.command == "reconcile"
        assert args.names == ["Tortuga"]
        assert args.mode == "menus"
        assert args.batch_size == 5
        assert args.backoff == "exponential"
        assert args.resume and args.report
        assert args.threshold is None

    def test_rejects_unknown_mode(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["reconcile", "x", "--mode", "videos"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_serve_options(self):
        args = cli.build_parser().parse_args(["serve", "--port", "9000"])
        assert args.port == 9000
        assert args.host is None


class TestMain:

    def test_reconcile_menus_end_to_end(self, app_env, capsys):
        # the development menu source fails 5% of calls at random
        code = cli.main([
            "reconcile", "Trabuxu Bistro", "--mode", "menus",
            "--max-retries", "5", "--retry-delay", "0", "--request-delay", "0.15", "--report",
        ])
        output = capsys.readouterr().out
        assert code == 0
        assert "RECONCILIATION REPORT" in output
        assert "matched" in output
        assert (app_env / "data" / "reconciliation_runs.xlsx").exists()

    def test_no_names(self, app_env, capsys):
        assert cli.main(["reconcile"]) == 2
        assert "No names given" in capsys.readouterr().out

    def test_invalid_option_value(self, app_env, capsys):
        assert cli.main(["reconcile", "Tortuga", "--request-delay", "0.01"]) == 2

    def test_dedupe_on_empty_store(self, app_env, capsys):
        assert cli.main(["init-db"]) == 0
        assert cli.main(["dedupe"]) == 0
        assert "0 groups" in capsys.readouterr().out

    def test_dedupe_apply_continues_after_failed_merge(self, app_env, capsys, monkeypatch):
        async def fill():
            engine = build_engine(f"sqlite+aiosqlite:///{app_env / 'app.db'}")
            await init_db(engine)
            try:
                gateway = PersistenceGateway(build_session_maker(engine))
                for name, address in [
                    ("Tortuga", "St George's Bay, St Julian's"),
                    ("Tortuga Bar", "St George's Bay, St Julian's"),
                    ("Kings Pub", "Triq San Gorg, Paceville"),
                    ("Kings", "Triq San Gorg, Paceville"),
                ]:
                    await gateway.upsert_establishment(CandidateRecord(
                        external_id="", display_name=name, address=address,
                    ))
            finally:
                await engine.dispose()

        asyncio.run(fill())

        merge = PersistenceGateway.merge_duplicate_group
        attempted = []

        async def flaky_merge(self, group):
            attempted.append(group.canonical_id)
            if len(attempted) == 1:
                raise PersistenceError("database is locked")
            return await merge(self, group)

        monkeypatch.setattr(PersistenceGateway, "merge_duplicate_group", flaky_merge)

        assert cli.main(["dedupe", "--apply"]) == 1
        out = capsys.readouterr().out
        assert len(attempted) == 2
        assert "database is locked" in out
        assert "1/2 groups merged" in out
