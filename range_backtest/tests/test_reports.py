"""
Tests for markdown, table, CSV and JSON report output.
"""

import json

import pandas as pd
import pytest

from range_backtest.backtest.oracle import StubOracle
from range_backtest.backtest.reports import BacktestReport
from range_backtest.backtest.sweep import SweepConfig, SweepRunner


@pytest.fixture
def engine_run(store_factory, engine_factory, base_params):
    store = store_factory({2: 99.4, 3: (99.8, 99.8, 99.6)})
    return engine_factory(store).run(base_params)


@pytest.fixture
def sweep_report(store_factory, pnl_model):
    store = store_factory({2: 99.4, 3: (99.8, 99.8, 99.6)})
    config = SweepConfig.from_dict({
        "entryPairs": [[0.25, 0.75]],
        "minProbability": [0.8, 0.95],
        "lockBeforeEnd": [60],
        "ranges": [0.01],
        "cycleTimes": [10],
        "tpPercent": [0.25, 0.35],
    })
    runner = SweepRunner(
        store, lambda r: StubOracle(0.9), pnl_model,
        steps=1, delta_multiplier=1, ltma_multiplier=1, warmup_minutes=1,
    )
    return runner.run(config.combinations(), top_n=2, bottom_n=1)


@pytest.mark.unit
class TestMarkdown:

    def test_sections(self, engine_run):
        md = BacktestReport().generate_markdown(engine_run, period=("2025-09-05", "2025-09-05"))

        assert md.startswith("# Range Backtest Report")
        assert "**Period:** 2025-09-05 to 2025-09-05" in md
        assert "| **Total Trades** | 1 |" in md
        assert "## Close Reasons" in md
        assert "| tp | 1 |" in md
        assert "## Top 10 Trades" in md

    def test_saved_to_file(self, engine_run, tmp_path):
        path = tmp_path / "reports" / "run.md"

        md = BacktestReport().generate_markdown(engine_run, output_path=path)

        assert path.read_text() == md

    def test_json_summary(self, engine_run):
        summary = BacktestReport().generate_json_summary(engine_run)

        assert summary["stats"]["total_trades"] == 1
        assert summary["counters"]["trades_opened"] == 1
        assert "trades" not in summary
        json.dumps(summary)


@pytest.mark.unit
class TestSweepOutput:

    def test_table(self, sweep_report):
        text = BacktestReport().format_sweep_table(sweep_report, limit=2)

        assert "TOP 2 CONFIGURATIONS BY PnL:" in text
        assert "WORST 1 CONFIGURATIONS:" in text
        assert "Total configurations tested: 4" in text
        assert "Profitable configs: 2" in text
        assert "fixed_percent:0.35" in text

    def test_table_without_results(self, sweep_report):
        sweep_report.top = []

        assert "No successful combinations" in BacktestReport().format_sweep_table(sweep_report)

    def test_sensitivity_skips_unvaried(self, sweep_report):
        text = BacktestReport().format_sensitivity(sweep_report)

        assert "min_probability:" in text
        assert "range:" not in text

    def test_csv(self, sweep_report, tmp_path):
        path = BacktestReport().save_csv(sweep_report, tmp_path / "matrix.csv")

        df = pd.read_csv(path)
        assert len(df) == 4
        assert list(df["rank"]) == [1, 2, 3, 4]
        assert df["total_pnl"].iloc[0] >= df["total_pnl"].iloc[-1]
        assert {"tp_count", "sl_count", "timeout_count"} <= set(df.columns)

    def test_json_top_n(self, sweep_report, tmp_path):
        path = BacktestReport().save_json(
            sweep_report, tmp_path / "matrix.json", period=("2025-09-05", "2025-09-05"), top_n=3
        )

        document = json.loads(path.read_text())
        assert document["totalCombinations"] == 4
        assert document["failedCombinations"] == 0
        assert document["period"] == {"from": "2025-09-05", "to": "2025-09-05"}
        assert len(document["results"]) == 3
        assert document["results"][0]["stats"]["total_pnl"] > 0
        assert "min_probability" in document["sensitivity"]
