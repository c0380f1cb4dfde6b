"""Command line entry points for the panel cohort audit engine."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from pathlib import Path
from typing import Any

import structlog

from panel_cohort_audit.analyses.capture import PeerScope
from panel_cohort_audit.analyses.loyalty import EligibilityMode
from panel_cohort_audit.config import EngineConfig
from panel_cohort_audit.engine import (
    DimensionRequest,
    MetricRequest,
    MetricResult,
    PanelAuditEngine,
)
from panel_cohort_audit.errors import PanelAuditError
from panel_cohort_audit.foundation.store import InMemoryTransactionStore
from panel_cohort_audit.foundation.transaction_contract import TransactionLine, load_lines
from panel_cohort_audit.observability import LOG_LEVELS, configure_logging
from panel_cohort_audit.synthetic.generator import PanelScenario, generate_panel

logger = structlog.get_logger(__name__)

MAX_INPUT_BYTES = 25 * 1024 * 1024  # 25 MiB cap to avoid accidental OOM

#: subcommand -> engine method
METRIC_COMMANDS = {
    "capture": "capture_leakage",
    "switching": "switching_destinations",
    "waterfall": "retention_waterfall",
    "basket": "basket_breadth",
    "loyalty": "brand_loyalty",
    "children": "dimension_children",
    "kpis": "kpi_summary",
    "daily": "kpi_daily",
    "retailers": "retailer_distribution",
    "coverage": "coverage_report",
    "segments": "buyer_segments",
}


def _load_lines(path: Path) -> list[TransactionLine]:
    resolved = path.resolve()
    size = resolved.stat().st_size
    if size > MAX_INPUT_BYTES:
        raise ValueError(
            f"Input file {resolved} is {size} bytes; exceeds limit of {MAX_INPUT_BYTES} bytes"
        )
    with path.open("r", encoding="utf-8") as fh:
        payload = json.load(fh)
    if not isinstance(payload, list):
        raise ValueError("Expected a list of transaction lines in the input file")
    return load_lines(payload)


def _parse_reconciled(value: str) -> bool | None:
    lowered = value.lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    if lowered in ("any", "none", "null"):
        return None
    raise argparse.ArgumentTypeError(f"expected true/false/any, got {value!r}")


def _add_request_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("input", type=Path, help="Path to JSON file with transaction lines")
    parser.add_argument("--start", required=True, help="Window start (inclusive, YYYY-MM-DD)")
    parser.add_argument("--end", required=True, help="Window end (exclusive, YYYY-MM-DD)")
    parser.add_argument("--issuer", required=True, help="Target issuer id")
    parser.add_argument("--store", help="Restrict in-issuer activity to one store")
    parser.add_argument(
        "--reconciled",
        type=_parse_reconciled,
        default=None,
        help="Reconciliation filter: true, false or any (default: any)",
    )
    parser.add_argument("--domain", default="product", help="Dimension domain (product/commerce)")
    parser.add_argument("--level", default="l1", help="Dimension level l1..l4")
    parser.add_argument(
        "--path",
        default="",
        help="Slash-separated drill-down path, e.g. FOOD/DAIRY",
    )
    parser.add_argument(
        "--peer-scope",
        choices=[scope.value for scope in PeerScope],
        default=PeerScope.ALL.value,
    )
    parser.add_argument("--category", help="Category value (waterfall, loyalty, all)")
    parser.add_argument(
        "--eligibility",
        choices=[mode.value for mode in EligibilityMode],
        default=EligibilityMode.RECEIPTS.value,
    )
    parser.add_argument("--k", type=int, help="Override the k-anonymity threshold")
    parser.add_argument("--min-n", type=int, help="Override the minimum eligible users")
    parser.add_argument("--output", type=Path, help="Write the JSON result here instead of stdout")


def _request_from_args(args: argparse.Namespace) -> MetricRequest:
    path = tuple(part for part in args.path.split("/")) if args.path else ()
    return MetricRequest(
        start=args.start,
        end=args.end,
        issuer_id=args.issuer,
        store_id=args.store,
        reconciled=args.reconciled,
        dimension=DimensionRequest(domain=args.domain, level=args.level, path=path),
        peer_scope=PeerScope(args.peer_scope),
        category_value=args.category,
        eligibility=EligibilityMode(args.eligibility),
    )


def _config_from_args(args: argparse.Namespace) -> EngineConfig:
    config = EngineConfig.from_env()
    overrides: dict[str, Any] = {}
    if args.k is not None:
        overrides["k_threshold"] = args.k
    if args.min_n is not None:
        overrides["min_n"] = args.min_n
    if overrides:
        config = EngineConfig(**{**config.model_dump(), **overrides})
    return config


def _write_json(payload: Any, output: Path | None) -> None:
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        with output.open("w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, sort_keys=True, default=str)
    else:  # stdout fallback enables piping in shell usage.
        json.dump(payload, fp=sys.stdout, indent=2, sort_keys=True, default=str)
        print()


def _result_payload(result: MetricResult) -> dict[str, Any]:
    return result.model_dump(mode="json")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="panel-audit", description="Panel cohort analytics over a JSON line export."
    )
    parser.add_argument("--log-level", default="WARNING", type=str.upper, choices=LOG_LEVELS)
    subparsers = parser.add_subparsers(dest="command", required=True)

    for command, method in METRIC_COMMANDS.items():
        sub = subparsers.add_parser(command, help=f"Run {method}")
        _add_request_arguments(sub)

    run_all = subparsers.add_parser("all", help="Run the five core metrics in parallel")
    _add_request_arguments(run_all)

    synth = subparsers.add_parser("synthesize", help="Write a synthetic panel as JSON lines")
    synth.add_argument("--users", type=int, default=200)
    synth.add_argument("--start", type=date.fromisoformat, required=True)
    synth.add_argument("--end", type=date.fromisoformat, required=True)
    synth.add_argument("--seed", type=int)
    synth.add_argument("--output", type=Path)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``panel-audit`` console script.

    Returns
    -------
    int
        0 on success, 2 when the engine rejects the request or the store is
        unavailable.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "synthesize":
        lines = generate_panel(
            args.users, args.start, args.end, scenario=PanelScenario(seed=args.seed)
        )
        _write_json([line.as_record() for line in lines], args.output)
        logger.info("synthetic_panel_written", lines=len(lines))
        return 0

    try:
        request = _request_from_args(args)
        config = _config_from_args(args)
        lines = _load_lines(args.input)
        with PanelAuditEngine(InMemoryTransactionStore(lines), config) as engine:
            if args.command == "all":
                results = engine.run_all(request)
                payload: Any = {name: _result_payload(r) for name, r in results.items()}
            else:
                result = getattr(engine, METRIC_COMMANDS[args.command])(request)
                payload = _result_payload(result)
    except PanelAuditError as exc:
        logger.error("request_failed", **exc.as_dict())
        json.dump(exc.as_dict(), fp=sys.stderr, default=str)
        print(file=sys.stderr)
        return 2

    _write_json(payload, args.output)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
