"""Backtest Report Generation - Human-readable and machine-readable output.

Single runs get a markdown report; sweeps get a ranked text table, a CSV of
every combination and a JSON document with the best combinations.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .engine import EngineRun
from .sweep import SweepReport, SweepResult


class BacktestReport:
    """Generates reports from engine runs and sweep reports.

    Example:
        >>> report = BacktestReport()
        >>> print(report.format_sweep_table(sweep_report, limit=20))
        >>> report.save_csv(sweep_report, Path("results/matrix.csv"))
        >>> report.save_json(sweep_report, Path("results/matrix.json"),
        ...                  period=("2025-09-05", "2025-09-11"))
    """

    def __init__(self):
        """Initialize report generator."""
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Single run
    # ------------------------------------------------------------------

    def generate_markdown(
        self,
        run: EngineRun,
        output_path: Optional[Path] = None,
        period: Optional[tuple] = None,
    ) -> str:
        """Generate markdown report from one engine run.

        Args:
            run: EngineRun to generate report from
            output_path: Optional path to save report (if None, returns string)
            period: Optional (from_date, to_date) shown in the header

        Returns:
            Markdown report as string
        """
        md = self._build_markdown_report(run, period)

        if output_path:
            output_path = Path(output_path)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, "w") as f:
                f.write(md)
            self.logger.info(f"Markdown report saved to {output_path}")

        return md

    def _build_markdown_report(self, run: EngineRun, period: Optional[tuple]) -> str:
        stats = run.stats
        md = "# Range Backtest Report\n\n"
        if period:
            md += f"**Period:** {period[0]} to {period[1]}  \n"
        md += f"**Parameters:** `{run.params.label}`  \n"
        md += f"**Generated:** {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')} UTC  \n\n"

        md += "## Performance Metrics\n\n"
        md += "| Metric | Value |\n"
        md += "|--------|-------|\n"
        md += f"| **Total P&L** | ${stats.total_pnl:+,.4f} |\n"
        md += f"| **Total Fees** | ${stats.total_fees:,.4f} |\n"
        md += f"| **Total Trades** | {stats.total_trades} |\n"
        md += f"| **Wins / Losses** | {stats.wins} / {stats.losses} |\n"
        md += f"| **Win Rate** | {stats.win_rate:.1f}% |\n"
        md += f"| **Average P&L** | ${stats.avg_pnl:+.4f} |\n"
        md += f"| **Largest Win** | ${stats.max_win:+.4f} |\n"
        md += f"| **Largest Loss** | ${stats.max_loss:+.4f} |\n"
        md += f"| **Profit Factor** | {stats.profit_factor:.2f} |\n"
        md += f"| **Max Drawdown** | ${stats.max_drawdown:,.4f} |\n"
        md += f"| **Avg Trade Duration** | {stats.avg_trade_duration_minutes:.1f} min |\n\n"

        md += "## Cycle Activity\n\n"
        counters = run.counters
        md += f"- **Oracle Checks:** {counters.oracle_checks:,}\n"
        md += f"- **Oracle Rejected:** {counters.oracle_rejected:,}\n"
        md += f"- **Cycles Started:** {counters.cycles_started:,}\n"
        md += f"- **Cycles Broken:** {counters.cycles_broken:,}\n"
        md += f"- **Long / Short Signals:** {counters.long_signals} / {counters.short_signals}\n\n"

        if stats.by_reason:
            md += "## Close Reasons\n\n"
            md += "| Reason | Count | P&L |\n"
            md += "|--------|-------|-----|\n"
            for reason, entry in stats.by_reason.items():
                md += f"| {reason} | {entry['count']} | ${entry['pnl']:+.4f} |\n"
            md += "\n"

        if run.trades:
            md += "## Top 10 Trades\n\n"
            md += self._build_top_trades_table(run)
            md += "\n"

        md += "## Execution Information\n\n"
        md += f"- **Execution Time:** {run.execution_time_seconds:.2f} seconds\n"

        return md

    def _build_top_trades_table(self, run: EngineRun) -> str:
        """Build table of top 10 trades by net P&L."""
        top_10 = sorted(run.trades, key=lambda t: t.net_pnl, reverse=True)[:10]

        table = "| # | Side | Entry | Exit | Reason | Net P&L | Duration |\n"
        table += "|---|------|-------|------|--------|---------|----------|\n"

        for i, trade in enumerate(top_10, 1):
            duration_min = (trade.duration_ms or 0) / 60000
            table += (
                f"| {i} | {trade.side.value} | ${trade.entry_price:.2f} | "
                f"${trade.fill_price:.2f} | {trade.close_reason.value} | "
                f"${trade.net_pnl:+.4f} | {duration_min:.1f}m |\n"
            )

        return table

    def generate_json_summary(self, run: EngineRun) -> dict:
        """Generate JSON summary of one run for programmatic access."""
        return {
            "params": run.params.to_dict(),
            "counters": run.counters.to_dict(),
            "stats": run.stats.to_dict(),
            "execution_time_seconds": run.execution_time_seconds,
        }

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def format_sweep_table(self, report: SweepReport, limit: int = 20) -> str:
        """Plain-text ranked table of the best and worst combinations."""
        lines = ["=" * 110, "SWEEP RESULTS", "=" * 110]

        if not report.top:
            lines.append("No successful combinations to display.")
            return "\n".join(lines)

        lines.append(f"\nTOP {min(limit, len(report.top))} CONFIGURATIONS BY PnL:\n")
        lines.append(self._table_header())
        lines.append("-" * 110)
        for rank, result in enumerate(report.top[:limit], 1):
            lines.append(self._table_row(f"#{rank}", result))

        if report.bottom:
            lines.append("\n" + "-" * 110)
            lines.append(f"WORST {len(report.bottom)} CONFIGURATIONS:\n")
            lines.append(self._table_header())
            for result in report.bottom:
                lines.append(self._table_row("", result))

        succeeded = report.total_combinations - len(report.failures)
        profitable = sum(1 for r in report.results if r.succeeded and r.stats.total_pnl > 0)

        lines.append("\n" + "=" * 110)
        lines.append("SUMMARY:")
        lines.append(f"Total configurations tested: {report.total_combinations}")
        lines.append(f"Successful: {succeeded}, failed: {len(report.failures)}")
        lines.append(f"Profitable configs: {profitable}")
        lines.append(f"Best PnL: ${report.top[0].stats.total_pnl:.4f}")
        lines.append(f"Execution time: {report.elapsed_seconds:.1f}s")
        lines.append("=" * 110)

        return "\n".join(lines)

    @staticmethod
    def _table_header() -> str:
        return (
            f"{'Rank':<6}{'PnL':<12}{'Trades':<8}{'WinRate':<10}{'Range':<8}"
            f"{'Cycle':<8}{'Entry':<12}{'MinProb':<9}{'Lock':<7}{'TP':<22}{'Close':<14}"
        )

    @staticmethod
    def _table_row(rank: str, result: SweepResult) -> str:
        params, stats = result.params, result.stats
        return (
            f"{rank:<6}{'$' + format(stats.total_pnl, '.4f'):<12}{stats.total_trades:<8}"
            f"{format(stats.win_rate, '.1f') + '%':<10}{format(params.range * 100, '.1f') + '%':<8}"
            f"{str(params.cycle_time_minutes) + 'm':<8}{params.entry_pair:<12}"
            f"{params.min_probability:<9}{str(params.lock_before_end_seconds) + 's':<7}"
            f"{params.take_profit.label:<22}{params.close_strategy:<14}"
        )

    def format_sensitivity(self, report: SweepReport) -> str:
        """Plain-text sensitivity tables, one per dimension."""
        lines: List[str] = []

        for dimension, rows in report.sensitivity.items():
            if len(rows) < 2:
                continue  # Not varied

            lines.append(f"\n{dimension}:")
            for row in rows:
                lines.append(
                    f"  {str(row['value']):<24} avg PnL ${row['avg_pnl']:+.4f}  "
                    f"avg WR {row['avg_win_rate']:.1f}%  (n={row['count']})"
                )

        return "\n".join(lines)

    def save_csv(self, report: SweepReport, output_path: Path) -> Path:
        """Save every combination (ranked, failures last) as CSV."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        df = report.to_frame()
        df.insert(0, "rank", range(1, len(df) + 1))
        df.to_csv(output_path, index=False)

        self.logger.info(f"CSV saved to {output_path}")
        return output_path

    def save_json(
        self,
        report: SweepReport,
        output_path: Path,
        period: Optional[tuple] = None,
        top_n: int = 100,
    ) -> Path:
        """Save the best ``top_n`` combinations as a JSON document."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        document = self.generate_sweep_summary(report, period, top_n)
        with open(output_path, "w") as f:
            json.dump(document, f, indent=2)

        self.logger.info(f"JSON saved to {output_path}")
        return output_path

    def generate_sweep_summary(
        self,
        report: SweepReport,
        period: Optional[tuple] = None,
        top_n: int = 100,
    ) -> dict:
        """Sweep document with the best ``top_n`` results."""
        ranked = [r for r in report.results if r.succeeded][:top_n]

        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "period": {"from": period[0], "to": period[1]} if period else None,
            "totalCombinations": report.total_combinations,
            "failedCombinations": len(report.failures),
            "executionTime": round(report.elapsed_seconds, 3),
            "results": [r.to_dict() for r in ranked],
            "sensitivity": report.sensitivity,
        }
