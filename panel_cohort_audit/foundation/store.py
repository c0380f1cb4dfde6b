"""Transaction store capability and the guarded gateway in front of it.

The engine needs exactly one capability from its environment: scan the
ledger for lines matching a window, issuer/store, dimension path and
reconciliation flag. Anything that implements :class:`TransactionStore` can
back the engine; two in-process implementations are provided.

All store access goes through :class:`StoreGateway`, which bounds each scan by
a timeout, trips a circuit breaker on repeated failures and retries
:class:`~panel_cohort_audit.errors.StoreUnavailable` with exponential backoff.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence, runtime_checkable

import pandas as pd
import structlog
from opentelemetry import trace
from pybreaker import CircuitBreaker, CircuitBreakerError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from panel_cohort_audit.config import EngineConfig
from panel_cohort_audit.errors import StoreUnavailable
from panel_cohort_audit.foundation.dimensions import ResolvedDimension
from panel_cohort_audit.foundation.transaction_contract import (
    DIMENSION_LEVELS,
    TransactionLine,
    Window,
    normalise_dimension_value,
    parse_reconciled,
)

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class ScanQuery:
    """Filter pushed down to the store.

    ``None`` on any optional field means "do not filter on it".
    """

    window: Window
    issuer_id: str | None = None
    store_id: str | None = None
    dimension: ResolvedDimension | None = None
    reconciled: bool | None = None

    def matches(self, line: TransactionLine) -> bool:
        if not self.window.contains(line.invoice_date):
            return False
        if self.issuer_id is not None and line.issuer_id != self.issuer_id:
            return False
        if self.store_id is not None and line.store_id != self.store_id:
            return False
        if self.reconciled is not None and line.reconciled is not self.reconciled:
            return False
        if self.dimension is not None and not self.dimension.matches(line):
            return False
        return True

    def describe(self) -> dict[str, object]:
        return {
            **self.window.as_dict(),
            "issuer_id": self.issuer_id,
            "store_id": self.store_id,
            "dimension": self.dimension.column if self.dimension else None,
            "path": dict(self.dimension.path_filter) if self.dimension else {},
            "reconciled": self.reconciled,
        }


@runtime_checkable
class TransactionStore(Protocol):
    """Scan/filter capability over transaction lines."""

    def scan(self, query: ScanQuery) -> Sequence[TransactionLine]:
        ...


class InMemoryTransactionStore:
    """Store backed by an immutable list of lines."""

    def __init__(self, lines: Iterable[TransactionLine]):
        self._lines = tuple(lines)

    def __len__(self) -> int:
        return len(self._lines)

    def scan(self, query: ScanQuery) -> list[TransactionLine]:
        return [line for line in self._lines if query.matches(line)]


class DataFrameTransactionStore:
    """Store backed by a pandas DataFrame in the flat record layout.

    Columns follow :meth:`TransactionLine.as_record`. Filtering is done with
    boolean masks; only matching rows are materialised as lines.
    """

    REQUIRED_COLUMNS = ("user_id", "invoice_id", "invoice_date", "issuer_id", "line_amount")

    def __init__(self, frame: pd.DataFrame):
        missing = [col for col in self.REQUIRED_COLUMNS if col not in frame.columns]
        if missing:
            raise ValueError(f"DataFrame missing required columns: {missing}")

        frame = frame.copy()
        for domain in ("product", "commerce"):
            for level in DIMENSION_LEVELS:
                column = f"{domain}_{level}"
                if column not in frame.columns:
                    frame[column] = None
                frame[column] = frame[column].map(normalise_dimension_value)
        frame["issuer_id"] = frame["issuer_id"].map(normalise_dimension_value)
        if "reconciled" not in frame.columns:
            frame["reconciled"] = None
        frame = frame.astype(object).where(frame.notna(), None)
        frame["reconciled"] = frame["reconciled"].map(parse_reconciled)

        self._frame = frame
        self._dates = pd.to_datetime(frame["invoice_date"]).dt.normalize()

    def __len__(self) -> int:
        return len(self._frame)

    def scan(self, query: ScanQuery) -> list[TransactionLine]:
        frame = self._frame
        mask = (self._dates >= pd.Timestamp(query.window.start)) & (
            self._dates < pd.Timestamp(query.window.end)
        )
        if query.issuer_id is not None:
            mask &= frame["issuer_id"] == query.issuer_id
        if query.store_id is not None and "store_id" in frame.columns:
            mask &= frame["store_id"].astype(str) == query.store_id
        if query.reconciled is not None:
            mask &= frame["reconciled"].map(lambda flag: flag is query.reconciled)
        if query.dimension is not None:
            for idx, expected in query.dimension.path_filter:
                column = f"{query.dimension.domain}_{DIMENSION_LEVELS[idx]}"
                mask &= frame[column] == expected

        records = frame[mask].to_dict("records")
        return [
            TransactionLine.from_record(record, index=idx)
            for idx, record in enumerate(records)
        ]


class StoreGateway:
    """Timeout, circuit breaker, retry and tracing around a store.

    Parameters
    ----------
    store:
        Any :class:`TransactionStore`.
    config:
        Supplies timeout, retry and breaker settings.
    """

    def __init__(self, store: TransactionStore, config: EngineConfig | None = None):
        self.store = store
        self.config = config or EngineConfig()
        self.breaker = CircuitBreaker(
            fail_max=self.config.store_breaker_fail_max,
            reset_timeout=self.config.store_breaker_reset_seconds,
            name=f"store:{type(store).__name__}",
        )
        self._executor = ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="panel-store-scan"
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "StoreGateway":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def scan(self, query: ScanQuery) -> list[TransactionLine]:
        """Scan the store, retrying :class:`StoreUnavailable` with backoff.

        Raises
        ------
        StoreUnavailable
            When every attempt failed, timed out or hit an open circuit.
        """
        retrying = Retrying(
            retry=retry_if_exception_type(StoreUnavailable),
            stop=stop_after_attempt(self.config.store_retry_attempts),
            wait=wait_exponential(
                multiplier=0.1, max=self.config.store_retry_max_wait_seconds
            ),
            reraise=True,
        )
        return retrying(self._scan_once, query)

    def _scan_once(self, query: ScanQuery) -> list[TransactionLine]:
        with tracer.start_as_current_span("store.scan") as span:
            span.set_attribute("store.type", type(self.store).__name__)
            span.set_attribute("store.window", f"{query.window.start}/{query.window.end}")
            try:
                lines = self.breaker.call(self._timed_scan, query)
            except CircuitBreakerError as exc:
                logger.warning("store_circuit_open", breaker=self.breaker.name)
                raise StoreUnavailable(
                    "Transaction store circuit is open",
                    {"breaker": self.breaker.name},
                ) from exc
            span.set_attribute("store.lines", len(lines))
        logger.debug("store_scan_complete", lines=len(lines), **query.describe())
        return lines

    def _timed_scan(self, query: ScanQuery) -> list[TransactionLine]:
        future = self._executor.submit(self.store.scan, query)
        try:
            return list(future.result(timeout=self.config.store_timeout_seconds))
        except FuturesTimeout as exc:
            future.cancel()
            logger.warning(
                "store_scan_timeout", timeout_seconds=self.config.store_timeout_seconds
            )
            raise StoreUnavailable(
                f"Transaction store scan exceeded {self.config.store_timeout_seconds}s",
                {"timeout_seconds": self.config.store_timeout_seconds},
            ) from exc
        except OSError as exc:
            logger.warning("store_scan_failed", error=str(exc))
            raise StoreUnavailable(
                f"Transaction store scan failed: {exc}", {"cause": type(exc).__name__}
            ) from exc
