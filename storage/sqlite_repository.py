"""SQLite-backed persistence layer for scan ticks and simulated trades."""
from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ledger import Resolution, TradeRecord
from storage.models import ScanTickRecord, TradeRow, TradeSummary

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _to_iso(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(ISO_FORMAT)


class SQLiteRepository:
    """Provides async-friendly helpers for persisting monitor activity."""

    def __init__(self, db_path: Path | str = Path("data/flash_arb_history.db")) -> None:
        self.db_path = Path(db_path)
        if self.db_path != Path(":memory:"):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._connection = sqlite3.connect(
            str(self.db_path),
            detect_types=sqlite3.PARSE_DECLTYPES,
            check_same_thread=False,
        )
        self._connection.row_factory = sqlite3.Row
        self._configure()
        self._create_schema()

    def _configure(self) -> None:
        with self._lock:
            cursor = self._connection.cursor()
            try:
                cursor.execute("PRAGMA journal_mode=WAL;")
            except sqlite3.DatabaseError:
                pass
            cursor.close()

    def _create_schema(self) -> None:
        statements = [
            """
            CREATE TABLE IF NOT EXISTS scan_tick (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                observed_at TEXT NOT NULL,
                chain TEXT NOT NULL,
                samples_count INTEGER NOT NULL,
                gas_price_gwei REAL,
                candidates_count INTEGER NOT NULL DEFAULT 0,
                admitted_opportunity_id TEXT
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS trade_record (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                opportunity_id TEXT NOT NULL,
                chain TEXT NOT NULL,
                pair TEXT NOT NULL,
                buy_venue TEXT NOT NULL,
                sell_venue TEXT NOT NULL,
                resolution TEXT NOT NULL,
                spread_bps INTEGER NOT NULL,
                loan_amount_usd REAL NOT NULL,
                net_profit_usd REAL NOT NULL,
                realized_cost_usd REAL NOT NULL,
                tx_reference TEXT NOT NULL,
                resolved_at TEXT NOT NULL,
                risk_level TEXT,
                risk_score INTEGER,
                raw_payload TEXT
            );
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_trade_record_resolved_at
                ON trade_record(resolved_at);
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_scan_tick_observed_at
                ON scan_tick(observed_at);
            """,
        ]

        with self._lock:
            cursor = self._connection.cursor()
            for statement in statements:
                cursor.execute(statement)
            self._connection.commit()
            cursor.close()

    async def record_scan_tick(
        self,
        *,
        chain: str,
        samples_count: int,
        gas_price_gwei: Optional[float],
        candidates_count: int = 0,
        admitted_opportunity_id: Optional[str] = None,
        observed_at: Optional[datetime] = None,
    ) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            self._record_scan_tick_sync,
            chain,
            samples_count,
            gas_price_gwei,
            candidates_count,
            admitted_opportunity_id,
            observed_at or datetime.now(timezone.utc),
        )

    def _record_scan_tick_sync(
        self,
        chain: str,
        samples_count: int,
        gas_price_gwei: Optional[float],
        candidates_count: int,
        admitted_opportunity_id: Optional[str],
        observed_at: datetime,
    ) -> int:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                INSERT INTO scan_tick (
                    observed_at,
                    chain,
                    samples_count,
                    gas_price_gwei,
                    candidates_count,
                    admitted_opportunity_id
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    _to_iso(observed_at),
                    chain,
                    samples_count,
                    gas_price_gwei,
                    candidates_count,
                    admitted_opportunity_id,
                ),
            )
            self._connection.commit()
            tick_id = cursor.lastrowid
            cursor.close()
        return tick_id

    async def record_trade(self, record: TradeRecord, *, chain: str) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._record_trade_sync, record, chain)

    def _record_trade_sync(self, record: TradeRecord, chain: str) -> int:
        opportunity = record.opportunity
        verdict = record.risk_verdict
        raw_payload = {
            "price_usd": opportunity.price_usd,
            "liquidity_usd": opportunity.liquidity_usd,
            "price_impact_pct": opportunity.price_impact_pct,
            "slippage_tolerance_pct": opportunity.slippage_tolerance_pct,
            "flash_fee_usd": opportunity.flash_fee_usd,
            "estimated_gas_usd": opportunity.estimated_gas_usd,
            "route": opportunity.path(),
            "risk_reason": verdict.reason if verdict else None,
        }
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                INSERT INTO trade_record (
                    opportunity_id,
                    chain,
                    pair,
                    buy_venue,
                    sell_venue,
                    resolution,
                    spread_bps,
                    loan_amount_usd,
                    net_profit_usd,
                    realized_cost_usd,
                    tx_reference,
                    resolved_at,
                    risk_level,
                    risk_score,
                    raw_payload
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    opportunity.id,
                    chain,
                    opportunity.symbol,
                    opportunity.buy_venue,
                    opportunity.sell_venue,
                    record.resolution.value,
                    opportunity.spread_bps,
                    opportunity.loan_amount_usd,
                    record.realized_profit_usd,
                    record.realized_cost_usd,
                    record.tx_reference,
                    _to_iso(record.resolved_at),
                    verdict.risk_level.value if verdict else None,
                    verdict.score if verdict else None,
                    json.dumps(raw_payload),
                ),
            )
            self._connection.commit()
            trade_id = cursor.lastrowid
            cursor.close()
        return trade_id

    async def fetch_recent_trades(self, limit: int = 10) -> list[TradeRow]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._fetch_recent_trades_sync, limit)

    def _fetch_recent_trades_sync(self, limit: int) -> list[TradeRow]:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                SELECT * FROM trade_record
                ORDER BY resolved_at DESC, id DESC
                LIMIT ?
                """,
                (limit,)
            )
            rows = cursor.fetchall()
            cursor.close()
        records: list[TradeRow] = []
        for row in rows:
            records.append(
                TradeRow(
                    id=row["id"],
                    opportunity_id=row["opportunity_id"],
                    chain=row["chain"],
                    pair=row["pair"],
                    buy_venue=row["buy_venue"],
                    sell_venue=row["sell_venue"],
                    resolution=row["resolution"],
                    spread_bps=row["spread_bps"],
                    loan_amount_usd=row["loan_amount_usd"],
                    net_profit_usd=row["net_profit_usd"],
                    realized_cost_usd=row["realized_cost_usd"],
                    tx_reference=row["tx_reference"],
                    resolved_at=datetime.strptime(row["resolved_at"], ISO_FORMAT),
                    risk_level=row["risk_level"],
                    risk_score=row["risk_score"],
                )
            )
        return records

    async def fetch_recent_ticks(self, limit: int = 20) -> list[ScanTickRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._fetch_recent_ticks_sync, limit)

    def _fetch_recent_ticks_sync(self, limit: int) -> list[ScanTickRecord]:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                SELECT * FROM scan_tick
                ORDER BY observed_at DESC, id DESC
                LIMIT ?
                """,
                (limit,)
            )
            rows = cursor.fetchall()
            cursor.close()
        return [
            ScanTickRecord(
                id=row["id"],
                observed_at=datetime.strptime(row["observed_at"], ISO_FORMAT),
                chain=row["chain"],
                samples_count=row["samples_count"],
                gas_price_gwei=row["gas_price_gwei"],
                candidates_count=row["candidates_count"],
                admitted_opportunity_id=row["admitted_opportunity_id"],
            )
            for row in rows
        ]

    async def fetch_trade_summary(self) -> TradeSummary:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._fetch_trade_summary_sync)

    def _fetch_trade_summary_sync(self) -> TradeSummary:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                SELECT
                    COUNT(*) AS trade_count,
                    COALESCE(SUM(CASE WHEN resolution = ? THEN 1 ELSE 0 END), 0) AS auto_executed,
                    COALESCE(SUM(CASE WHEN resolution = ? THEN 1 ELSE 0 END), 0) AS user_executed,
                    COALESCE(SUM(net_profit_usd), 0.0) AS total_profit_usd,
                    COALESCE(SUM(realized_cost_usd), 0.0) AS total_cost_usd
                FROM trade_record
                """,
                (Resolution.AUTO_EXECUTED.value, Resolution.USER_EXECUTED.value),
            )
            row = cursor.fetchone()
            cursor.close()
        return TradeSummary(
            trade_count=row["trade_count"],
            auto_executed=row["auto_executed"],
            user_executed=row["user_executed"],
            total_profit_usd=float(row["total_profit_usd"]),
            total_cost_usd=float(row["total_cost_usd"]),
        )

    async def close(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._close_sync)

    def _close_sync(self) -> None:
        with self._lock:
            self._connection.commit()
            self._connection.close()


__all__ = ["SQLiteRepository", "ScanTickRecord", "TradeRow", "TradeSummary"]
