r"""retail_forecast\app\services\repository.py

Read-only access to the store tables the forecasting engine consumes.

The tables are exports of the store database (``products``, ``sales``,
``stock_levels`` and ``transactions``) placed under ``DATA_DIR``.  Every call
re-reads its table; nothing is cached between requests.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from ..core.config import get_settings
from ..core.errors import UpstreamFetchError
from ..models.schemas import Product, SaleRecord, SalesPoint, StockSnapshot, TransactionCount
from .io_utils import prefer_parquet

LOGGER = logging.getLogger(__name__)

PRODUCT_COLUMNS = ["id", "name", "category", "price", "current_stock", "active"]
SALES_COLUMNS = ["product_id", "date", "qty_sold"]
STOCK_COLUMNS = ["product_id", "created_at", "current_stock"]
TRANSACTION_COLUMNS = ["created_at"]


def _require_counts(frame: pd.DataFrame, column: str, table: str) -> pd.DataFrame:
    """Coerce ``column`` to integers, rejecting blank or non-numeric cells."""

    values = pd.to_numeric(frame[column], errors="coerce")
    bad = int(values.isna().sum())
    if bad:
        raise UpstreamFetchError(table, f"column '{column}' has {bad} blank or non-numeric value(s)")
    frame = frame.copy()
    frame[column] = values.astype("int64")
    return frame


def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "t"}
    if pd.isna(value):  # type: ignore[arg-type]
        return True
    return bool(value)


class RetailRepository:
    """Query helpers over the exported store tables."""

    def __init__(self, data_root: str | None = None) -> None:
        self.data_root = Path(data_root or get_settings().data_dir)

    # ------------------------------------------------------------------
    def _path(self, table: str) -> Path:
        return self.data_root / f"{table}.csv"

    def data_files_present(self) -> bool:
        return all(
            self._path(t).exists() or self._path(t).with_suffix(".parquet").exists()
            for t in ("products", "sales")
        )

    # ------------------------------------------------------------------
    def list_products(self, active_only: bool = False) -> List[Product]:
        frame = prefer_parquet(self._path("products"))
        if "id" not in frame.columns or "name" not in frame.columns:
            raise UpstreamFetchError("products", "missing columns ['id', 'name']")
        for col in PRODUCT_COLUMNS:
            if col not in frame.columns:
                frame[col] = None

        products: List[Product] = []
        for row in frame[PRODUCT_COLUMNS].itertuples(index=False):
            active = _as_bool(row.active)
            if active_only and not active:
                continue
            products.append(
                Product(
                    id=str(row.id),
                    name=str(row.name),
                    category=str(row.category) if pd.notna(row.category) else "General",
                    price=float(row.price) if pd.notna(row.price) else 0.0,
                    current_stock=int(row.current_stock) if pd.notna(row.current_stock) else 0,
                    active=active,
                )
            )
        return products

    def get_product(self, product_id: str) -> Optional[Product]:
        for product in self.list_products():
            if product.id == str(product_id):
                return product
        return None

    def product_names(self) -> Dict[str, str]:
        return {p.id: p.name for p in self.list_products()}

    # ------------------------------------------------------------------
    def _sales_frame(self, product_id: Optional[str], since: Optional[datetime]) -> pd.DataFrame:
        frame = prefer_parquet(self._path("sales"), columns=SALES_COLUMNS, parse_dates=["date"])
        frame["product_id"] = frame["product_id"].astype("string")
        if product_id is not None:
            frame = frame[frame["product_id"] == str(product_id)]
        if since is not None:
            frame = frame[frame["date"] >= pd.Timestamp(since)]
        frame = frame.dropna(subset=["product_id", "date"])
        frame = _require_counts(frame, "qty_sold", "sales")
        return frame.sort_values("date", kind="stable")

    def fetch_sales(
        self,
        product_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[SaleRecord]:
        """Return sale rows ordered by time, optionally for one product."""

        frame = self._sales_frame(product_id, since)
        return [
            SaleRecord(
                product_id=str(row.product_id),
                timestamp=row.date.to_pydatetime(),
                quantity=int(row.qty_sold),
            )
            for row in frame.itertuples(index=False)
        ]

    def fetch_sales_points(self, product_id: str, since: Optional[datetime] = None) -> List[SalesPoint]:
        return [
            SalesPoint(date=record.timestamp, quantity=record.quantity)
            for record in self.fetch_sales(product_id, since)
        ]

    def fetch_stock(self, product_id: str, since: Optional[datetime] = None) -> List[StockSnapshot]:
        frame = prefer_parquet(self._path("stock_levels"), columns=STOCK_COLUMNS, parse_dates=["created_at"])
        frame = frame[frame["product_id"].astype("string") == str(product_id)]
        frame = frame.dropna(subset=["created_at"])
        if since is not None:
            frame = frame[frame["created_at"] >= pd.Timestamp(since)]
        frame = _require_counts(frame, "current_stock", "stock_levels")
        frame = frame.sort_values("created_at", kind="stable")
        return [
            StockSnapshot(timestamp=row.created_at.to_pydatetime(), current_stock=int(row.current_stock))
            for row in frame.itertuples(index=False)
        ]

    def fetch_transaction_counts(self, since: Optional[datetime] = None) -> List[TransactionCount]:
        """Return the number of transactions per calendar day."""

        frame = prefer_parquet(
            self._path("transactions"), columns=TRANSACTION_COLUMNS, parse_dates=["created_at"]
        )
        if since is not None:
            frame = frame[frame["created_at"] >= pd.Timestamp(since)]
        if frame.empty:
            return []
        counts = frame.groupby(frame["created_at"].dt.date).size().sort_index()
        return [TransactionCount(date=day, count=int(n)) for day, n in counts.items()]

    # ------------------------------------------------------------------
    def top_products(self, limit: int, days: int, as_of: date) -> List[Product]:
        """Return up to ``limit`` products ranked by units sold in the last ``days`` days."""

        since = datetime.combine(as_of - timedelta(days=days), datetime.min.time())
        frame = self._sales_frame(None, since)
        if frame.empty:
            return []
        totals = frame.groupby("product_id")["qty_sold"].sum().sort_values(ascending=False, kind="stable")
        ranked_ids = [str(pid) for pid in totals.index[:limit]]

        catalogue = {p.id: p for p in self.list_products()}
        missing = [pid for pid in ranked_ids if pid not in catalogue]
        if missing:
            LOGGER.warning("Top sellers missing from product table: %s", missing)
        return [catalogue[pid] for pid in ranked_ids if pid in catalogue]

