#!/usr/bin/env python3
"""Range backtester CLI.

Commands:
    simulate    Run one parameter set and print its summary
    sweep       Run a parameter grid from a matrix file
    cache       Precompute oracle answers for one or more ranges
    data-info   Show which candle files are available

Every command reads settings from BACKTEST_* environment variables, an
optional JSON settings file (--config) and command line overrides, in that
order.
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from .backtest.cache_builder import ProbabilityCacheBuilder
from .backtest.data_loader import HistoricalDataLoader
from .backtest.engine import CycleEngine
from .backtest.oracle import LiveOracle, ProbabilityOracle, ReplayOracle, StubOracle
from .backtest.probability_cache import ProbabilityCache
from .backtest.reports import BacktestReport
from .backtest.sweep import SweepConfig, SweepRunner
from .config import BacktestConfig
from .exceptions import BacktesterError, ConfigurationError, DataError
from .logging_config import setup_logging

logger = logging.getLogger(__name__)


def json_output(data: dict):
    """Print JSON output for machine consumption."""
    print(json.dumps(data, indent=2, default=str))


def _fail(command: str, error: Exception):
    """Report a failed command as JSON and exit with status 1."""
    if isinstance(error, ConfigurationError):
        logger.error("cli_configuration_error", extra={"command": command, "error": str(error)})
        json_output({"success": False, "error": f"Configuration error: {error}"})
    elif isinstance(error, DataError):
        logger.error("cli_data_error", extra={"command": command, "error": str(error)})
        json_output({"success": False, "error": f"Data error: {error}"})
    elif isinstance(error, BacktesterError):
        logger.error("cli_command_failed", extra={"command": command, "error": str(error)})
        json_output({"success": False, "error": str(error)})
    else:
        logger.critical(
            "cli_unexpected_error", extra={"command": command, "error": str(error)}, exc_info=True
        )
        json_output({"success": False, "error": f"Unexpected error: {error}"})
    sys.exit(1)


def load_config(args) -> BacktestConfig:
    """Environment, then settings file, then command line overrides."""
    config = BacktestConfig.from_env()

    if getattr(args, "config", None):
        config = BacktestConfig.from_file(Path(args.config), base=config)

    overrides = {}
    for option, key in (
        ("from_date", "fromDate"),
        ("to_date", "toDate"),
        ("range", "range"),
        ("data_path", "dataPath"),
        ("oracle", "oracleMode"),
        ("workers", "maxWorkers"),
    ):
        value = getattr(args, option, None)
        if value is not None:
            overrides[key] = value

    if overrides:
        config = BacktestConfig.from_dict(overrides, base=config)

    return config.ensure_valid()


def oracle_factory(config: BacktestConfig) -> Callable[[float], ProbabilityOracle]:
    """Oracle per band range for the configured oracle mode."""
    if config.oracle_mode == "stub":
        return lambda range_: StubOracle(config.stub_probability)

    if config.oracle_mode == "live":
        live = LiveOracle(
            url=config.oracle_url,
            max_retries=config.oracle_max_retries,
            timeout=config.oracle_timeout_seconds,
            concurrency=config.oracle_concurrency,
        )
        return lambda range_: live

    return lambda range_: ReplayOracle(ProbabilityCache.load(config.cache_path(range_)))


def _require_period(config: BacktestConfig):
    if not config.from_date or not config.to_date:
        raise ConfigurationError("fromDate and toDate are required (settings file, env or --from/--to)")


def cmd_simulate(args):
    """Run the single parameter set described by the settings."""
    try:
        config = load_config(args)
        _require_period(config)

        store, load_report = HistoricalDataLoader(Path(config.data_path)).load(
            config.from_date, config.to_date
        )
        params = config.parameter_set()
        oracle = oracle_factory(config)(params.range)

        engine = CycleEngine(store, oracle, config.pnl_model(), **config.engine_settings())
        run = engine.run(params)

        report = BacktestReport()
        if args.report:
            report.generate_markdown(
                run, Path(args.report), period=(config.from_date, config.to_date)
            )

        summary = report.generate_json_summary(run)
        summary["data"] = load_report.to_dict()
        if args.trades:
            summary["trades"] = [t.to_dict() for t in run.trades[: args.trades]]
        if isinstance(oracle, LiveOracle):
            summary["oracle"] = oracle.stats()
        elif isinstance(oracle, ReplayOracle):
            summary["cache"] = {
                "path": str(config.cache_path(params.range)),
                "records": len(oracle.cache.records),
                "anomalies": oracle.cache.anomalies,
                "errors": oracle.cache.error_count,
            }

        json_output({"success": True, **summary})

    except Exception as e:
        _fail("simulate", e)


def cmd_sweep(args):
    """Run every combination of a matrix file."""
    try:
        config = load_config(args)
        _require_period(config)

        sweep_config = SweepConfig.from_file(
            Path(args.matrix),
            default_range=config.range,
            default_cycle_time=config.cycle_time,
            default_tp_strategy=config.tp_strategy,
        )
        param_sets = sweep_config.combinations()

        store, _ = HistoricalDataLoader(Path(config.data_path)).load(
            config.from_date, config.to_date
        )

        runner = SweepRunner(
            store,
            oracle_factory(config),
            config.pnl_model(),
            max_workers=config.max_workers,
            **config.engine_settings(),
        )
        report = runner.run(param_sets, top_n=args.top, bottom_n=args.bottom)

        period = (config.from_date, config.to_date)
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
        results_dir = Path(args.output_dir or config.results_dir)

        writer = BacktestReport()
        csv_path = writer.save_csv(report, results_dir / f"matrix_{stamp}.csv")
        json_path = writer.save_json(
            report, results_dir / f"matrix_{stamp}.json", period=period, top_n=args.json_top
        )

        if args.json:
            json_output({
                "success": True,
                "csv": str(csv_path),
                "json": str(json_path),
                **writer.generate_sweep_summary(report, period, top_n=args.top),
            })
        else:
            print(writer.format_sweep_table(report, limit=args.top))
            print(writer.format_sensitivity(report))

    except Exception as e:
        _fail("sweep", e)


async def cmd_cache(args):
    """Build probability caches for the requested ranges."""
    try:
        config = load_config(args)
        _require_period(config)

        ranges: List[float] = args.ranges or [config.range]

        store, _ = HistoricalDataLoader(Path(config.data_path)).load(
            config.from_date, config.to_date
        )
        oracle = LiveOracle(
            url=config.oracle_url,
            max_retries=config.oracle_max_retries,
            timeout=args.timeout or config.oracle_timeout_seconds,
            concurrency=config.oracle_concurrency,
        )
        builder = ProbabilityCacheBuilder(
            store,
            oracle,
            steps=config.risk_module_steps,
            delta_multiplier=config.delta_multiplier,
            ltma_multiplier=config.ltma_multiplier,
            warmup_minutes=config.warmup_minutes,
            batch_size=args.batch_size or config.oracle_concurrency,
        )

        written = []
        for range_ in ranges:
            cache = await builder.build_async(range_, config.from_date, config.to_date)
            path = cache.save(config.cache_path(range_))
            written.append({
                "range": range_,
                "path": str(path),
                "records": len(cache.records),
                "errors": cache.error_count,
                "distribution": cache.probability_distribution(),
            })

        json_output({"success": True, "caches": written, "oracle": oracle.stats()})

    except Exception as e:
        _fail("cache", e)


def cmd_data_info(args):
    """Describe candle files on disk."""
    try:
        config = load_config(args)
        loader = HistoricalDataLoader(Path(config.data_path))
        json_output({"success": True, **loader.get_data_info(config.from_date, config.to_date)})
    except Exception as e:
        _fail("data-info", e)


def _add_common(parser: argparse.ArgumentParser, with_range: bool = True):
    parser.add_argument("--config", help="JSON settings file")
    parser.add_argument("--from", dest="from_date", help="First day (YYYY-MM-DD)")
    parser.add_argument("--to", dest="to_date", help="Last day (YYYY-MM-DD)")
    parser.add_argument("--data-path", help="Candle data directory")
    if with_range:
        parser.add_argument("--range", type=float, help="Band half-width (0.007 = 0.7%%)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="range-backtest",
        description="Backtester for the oracle-gated range strategy",
    )
    parser.add_argument(
        "--log-level", help="Logging level (default: LOG_LEVEL or INFO)"
    )
    parser.add_argument(
        "--text-logs", action="store_true", help="Plain text logs instead of JSON"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Simulate command
    simulate_parser = subparsers.add_parser("simulate", help="Run one parameter set")
    _add_common(simulate_parser)
    simulate_parser.add_argument(
        "--oracle", choices=("live", "replay", "stub"), help="Probability source"
    )
    simulate_parser.add_argument("--report", help="Write a markdown report to this path")
    simulate_parser.add_argument(
        "--trades", type=int, default=0, help="Include the first N trades in the output"
    )

    # Sweep command
    sweep_parser = subparsers.add_parser("sweep", help="Run a parameter grid")
    _add_common(sweep_parser)
    sweep_parser.add_argument(
        "--oracle", choices=("live", "replay", "stub"), help="Probability source"
    )
    sweep_parser.add_argument(
        "--matrix", default="matrix.config.json", help="Matrix file (JSON)"
    )
    sweep_parser.add_argument("--top", type=int, default=20, help="Best results to show")
    sweep_parser.add_argument("--bottom", type=int, default=10, help="Worst results to show")
    sweep_parser.add_argument(
        "--json-top", type=int, default=100, help="Results kept in the JSON document"
    )
    sweep_parser.add_argument("--workers", type=int, help="Worker threads")
    sweep_parser.add_argument("--output-dir", help="Results directory")
    sweep_parser.add_argument("--json", action="store_true", help="Print JSON instead of tables")

    # Cache command
    cache_parser = subparsers.add_parser("cache", help="Precompute oracle answers")
    _add_common(cache_parser, with_range=False)
    cache_parser.add_argument(
        "ranges", nargs="*", type=float, help="Ranges to cache (default: configured range)"
    )
    cache_parser.add_argument("--batch-size", type=int, help="Requests per batch")
    cache_parser.add_argument("--timeout", type=float, help="Per-request timeout in seconds")

    # Data info command
    data_parser = subparsers.add_parser("data-info", help="Show available candle files")
    _add_common(data_parser, with_range=False)

    return parser


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        setup_logging(args.log_level, use_json=not args.text_logs, command=args.command)
    except ConfigurationError as e:
        _fail(args.command, e)

    if args.command == "simulate":
        cmd_simulate(args)
    elif args.command == "sweep":
        cmd_sweep(args)
    elif args.command == "cache":
        asyncio.run(cmd_cache(args))
    elif args.command == "data-info":
        cmd_data_info(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
