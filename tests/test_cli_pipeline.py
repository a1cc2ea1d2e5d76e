"""
Integration tests for the command line pipeline.

Tests the complete flow from candle files on disk to printed results:
- Settings file + command line overrides
- Single simulation with stub and replay oracles
- Parameter sweep with CSV/JSON output
- Cache building followed by replay
- Error reporting and exit codes
"""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from range_backtest.backtest.oracle import LiveOracle
from range_backtest.backtest.probability_cache import ProbabilityCache, cache_filename
from range_backtest.cli import main
from range_backtest.models import OracleEstimate, ProbabilityRecord

T0 = 1_757_030_400_000  # 2025-09-05 00:00:00 UTC
MINUTE = 60_000
DAY = "2025-09-05"


def candle(minute, close, high=None, low=None):
    return {
        "timestamp": T0 + minute * MINUTE,
        "close": close,
        "high": close if high is None else high,
        "low": close if low is None else low,
    }


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Candle files, settings file and matrix file in a clean directory."""
    for key in list(os.environ):
        if key.startswith("BACKTEST_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)

    data_dir = tmp_path / "data"
    (data_dir / "1m").mkdir(parents=True)

    fine = [candle(m, 100.0) for m in range(60)]
    fine[7] = candle(7, 99.4)
    fine[8] = candle(8, 99.8, 99.8, 99.6)
    (data_dir / f"{DAY}.json").write_text(json.dumps(fine))
    (data_dir / "1m" / f"{DAY}.json").write_text(json.dumps([candle(m, 100.0) for m in range(60)]))

    settings = {
        "dataPath": str(data_dir),
        "range": 0.01,
        "cycleTime": 10,
        "entryLong": 0.25,
        "entryShort": 0.75,
        "minProbability": 0.8,
        "lockBeforeEnd": 60,
        "tpStrategy": "fixed_percent",
        "tpPercent": 0.35,
        "riskModuleSteps": 1,
        "deltaMultiplier": 1,
        "ltmaMultiplier": 2,
        "warmupMinutes": 5,
        "rmStubProbability": 0.9,
    }
    (tmp_path / "simulation.config.json").write_text(json.dumps(settings))

    matrix = {
        "entryPairs": [[0.25, 0.75], [0.1, 0.9]],
        "minProbability": [0.8, 0.95],
        "lockBeforeEnd": [60],
        "tpPercent": [0.35],
    }
    (tmp_path / "matrix.config.json").write_text(json.dumps(matrix))

    return tmp_path


def run_cli(capsys, *argv):
    main(["--text-logs", "--log-level", "WARNING", *argv])
    return json.loads(capsys.readouterr().out)


@pytest.mark.integration
class TestSimulateCommand:

    def test_stub_oracle_run(self, workspace, capsys):
        output = run_cli(
            capsys, "simulate", "--config", "simulation.config.json",
            "--from", DAY, "--to", DAY, "--oracle", "stub", "--trades", "5",
        )

        assert output["success"] is True
        assert output["stats"]["total_trades"] == 1
        trade = output["trades"][0]
        assert trade["side"] == "long"
        assert trade["entry_timestamp"] == T0 + 7 * MINUTE
        assert trade["close_reason"] == "tp"
        assert output["data"]["fine"]["days_loaded"] == 1

    def test_replay_oracle_run(self, workspace, capsys):
        records = [
            ProbabilityRecord(
                timestamp=T0 + m * MINUTE, price=100.0, probability=0.9,
                lower=99.0, upper=101.0, delta=0.0, ltma=100.0,
            )
            for m in range(60)
        ]
        ProbabilityCache(range=0.01, steps=1, from_date=DAY, to_date=DAY, records=records).save(
            workspace / "rm-cache" / cache_filename(0.01, DAY, DAY)
        )

        output = run_cli(
            capsys, "simulate", "--config", "simulation.config.json",
            "--from", DAY, "--to", DAY, "--oracle", "replay",
        )

        assert output["success"] is True
        assert output["stats"]["total_trades"] == 1

    def test_replay_reports_cache_anomalies(self, workspace, capsys):
        records = [
            ProbabilityRecord(
                timestamp=T0 + m * MINUTE, price=100.0, probability=0.9,
                lower=99.0, upper=101.0, delta=0.0, ltma=100.0,
            )
            for m in range(60)
        ]
        path = ProbabilityCache(
            range=0.01, steps=1, from_date=DAY, to_date=DAY, records=records
        ).save(workspace / "rm-cache" / cache_filename(0.01, DAY, DAY))
        document = json.loads(path.read_text())
        document["data"] += [{"timestamp": T0}, {"probability": 1.7}]
        path.write_text(json.dumps(document))

        output = run_cli(
            capsys, "simulate", "--config", "simulation.config.json",
            "--from", DAY, "--to", DAY, "--oracle", "replay",
        )

        assert output["cache"]["anomalies"] == 2
        assert output["cache"]["records"] == 60
        assert output["cache"]["errors"] == 0
        assert output["stats"]["total_trades"] == 1

    def test_markdown_report(self, workspace, capsys):
        run_cli(
            capsys, "simulate", "--config", "simulation.config.json",
            "--from", DAY, "--to", DAY, "--oracle", "stub", "--report", "out/report.md",
        )

        assert "# Range Backtest Report" in (workspace / "out" / "report.md").read_text()

    def test_missing_period_exits_with_error(self, workspace, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--text-logs", "simulate", "--config", "simulation.config.json", "--oracle", "stub"])

        assert exc_info.value.code == 1
        output = json.loads(capsys.readouterr().out)
        assert output["success"] is False
        assert output["error"].startswith("Configuration error")

    def test_missing_data_exits_with_error(self, workspace, capsys):
        with pytest.raises(SystemExit):
            main([
                "--text-logs", "simulate", "--config", "simulation.config.json",
                "--from", "2025-10-01", "--to", "2025-10-02", "--oracle", "stub",
            ])

        assert json.loads(capsys.readouterr().out)["error"].startswith("Data error")

    def test_missing_replay_cache_exits_with_error(self, workspace, capsys):
        with pytest.raises(SystemExit):
            main([
                "--text-logs", "simulate", "--config", "simulation.config.json",
                "--from", DAY, "--to", DAY, "--oracle", "replay",
            ])

        assert json.loads(capsys.readouterr().out)["success"] is False


@pytest.mark.integration
class TestSweepCommand:

    def test_stub_sweep_writes_results(self, workspace, capsys):
        output = run_cli(
            capsys, "sweep", "--config", "simulation.config.json",
            "--from", DAY, "--to", DAY, "--oracle", "stub",
            "--workers", "2", "--output-dir", "results", "--json",
        )

        assert output["success"] is True
        assert output["totalCombinations"] == 4
        assert output["failedCombinations"] == 0
        assert output["results"][0]["stats"]["total_trades"] == 1
        assert len(list((workspace / "results").glob("matrix_*.csv"))) == 1
        assert json.loads(Path(output["json"]).read_text())["totalCombinations"] == 4

    def test_replay_sweep_without_cache_records_failures(self, workspace, capsys):
        output = run_cli(
            capsys, "sweep", "--config", "simulation.config.json",
            "--from", DAY, "--to", DAY, "--oracle", "replay", "--json",
        )

        assert output["totalCombinations"] == 4
        assert output["failedCombinations"] == 4
        assert output["results"] == []

    def test_table_output(self, workspace, capsys):
        main([
            "--text-logs", "sweep", "--config", "simulation.config.json",
            "--from", DAY, "--to", DAY, "--oracle", "stub", "--top", "3",
        ])

        text = capsys.readouterr().out
        assert "SWEEP RESULTS" in text
        assert "TOP 3 CONFIGURATIONS BY PnL:" in text


@pytest.mark.integration
class TestDataInfoCommand:

    def test_lists_files(self, workspace, capsys):
        output = run_cli(capsys, "data-info", "--config", "simulation.config.json")

        assert output["fine"]["total_files"] == 1
        assert output["coarse"]["first_day"] == DAY


async def confident_batch(self, requests, progress_callback=None):
    return [OracleEstimate(0.9, r.lower, r.upper) for r in requests]


@pytest.mark.integration
class TestCacheCommand:

    def test_cache_then_replay(self, workspace, capsys):
        with patch.object(LiveOracle, "fetch_batch", new=confident_batch):
            output = run_cli(
                capsys, "cache", "--config", "simulation.config.json",
                "--from", DAY, "--to", DAY, "--batch-size", "16",
            )

        assert output["success"] is True
        written = output["caches"][0]
        assert written["range"] == 0.01
        assert written["errors"] == 0
        assert Path(written["path"]).name == cache_filename(0.01, DAY, DAY)

        replayed = run_cli(
            capsys, "simulate", "--config", "simulation.config.json",
            "--from", DAY, "--to", DAY, "--oracle", "replay",
        )
        assert replayed["stats"]["total_trades"] == 1


@pytest.mark.integration
class TestLoggingOptions:

    def test_unknown_log_level_exits_with_error(self, workspace, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--log-level", "LOUD", "data-info", "--config", "simulation.config.json"])

        assert exc_info.value.code == 1
        assert "Unknown log level" in json.loads(capsys.readouterr().out)["error"]
