from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from ..core.errors import UpstreamFetchError


def prefer_parquet(
    csv_path: str | Path,
    *,
    columns: Optional[Iterable[str]] = None,
    parse_dates: Optional[Iterable[str]] = None,
) -> pd.DataFrame:
    """Load a store table preferring Parquet with CSV fallback.

    Parameters
    ----------
    csv_path:
        Location of the canonical CSV export. ``<name>.parquet`` next to it
        wins when present.
    columns:
        Columns that must be present. A missing column is reported as an
        upstream failure rather than surfacing as a ``KeyError`` later on.
    parse_dates:
        Columns converted with :func:`pandas.to_datetime`.

    Raises
    ------
    UpstreamFetchError
        When neither file exists or the file cannot be parsed.
    """

    csv_path = Path(csv_path)
    pq_path = csv_path.with_suffix(".parquet")
    table = csv_path.stem
    column_list = list(columns) if columns is not None else None

    try:
        if pq_path.exists():
            frame = pd.read_parquet(pq_path)
        elif csv_path.exists():
            frame = pd.read_csv(csv_path, memory_map=True)
        else:
            raise UpstreamFetchError(table, f"{csv_path} not found")
    except UpstreamFetchError:
        raise
    except (OSError, ValueError, pd.errors.ParserError) as exc:
        raise UpstreamFetchError(table, f"unable to read {csv_path.name}: {exc}") from exc

    if column_list is not None:
        missing = [col for col in column_list if col not in frame.columns]
        if missing:
            raise UpstreamFetchError(table, f"missing columns {missing}")
        frame = frame[column_list].copy()

    for col in parse_dates or ():
        try:
            frame[col] = pd.to_datetime(frame[col], format="ISO8601")
            if frame[col].dt.tz is not None:
                frame[col] = frame[col].dt.tz_convert(None)
        except (TypeError, ValueError) as exc:
            raise UpstreamFetchError(table, f"column '{col}' holds invalid timestamps") from exc

    return frame
