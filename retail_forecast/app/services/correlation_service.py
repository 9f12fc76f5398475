r"""retail_forecast\app\services\correlation_service.py

Frequently-bought-together pairs.

Sales carry no guaranteed basket/transaction key, so products sold within the
same clock hour are treated as bought together.  This is an approximation at
hour granularity: two unrelated customers in the same hour count as a
co-occurrence, and one basket split across an hour boundary does not.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from datetime import datetime
from itertools import combinations
from typing import Dict, Iterable, List, Mapping, Optional, Set

from ..models.schemas import ProductPairAffinity, SaleRecord

LOGGER = logging.getLogger(__name__)


def hour_bucket(moment: datetime) -> datetime:
    """Truncate ``moment`` to the start of its hour."""

    return moment.replace(minute=0, second=0, microsecond=0)


def pair_frequencies(sales: Iterable[SaleRecord]) -> Counter[tuple[str, str]]:
    """Count hour-buckets in which each unordered product pair co-occurs."""

    buckets: Dict[datetime, Set[str]] = defaultdict(set)
    for sale in sales:
        if sale.product_id:
            buckets[hour_bucket(sale.timestamp)].add(sale.product_id)

    counts: Counter[tuple[str, str]] = Counter()
    for products in buckets.values():
        if len(products) < 2:
            continue
        for pair in combinations(sorted(products), 2):
            counts[pair] += 1
    return counts


def top_pairs(
    sales: Iterable[SaleRecord],
    limit: int = 4,
    names: Optional[Mapping[str, str]] = None,
) -> List[ProductPairAffinity]:
    """Return the ``limit`` most frequent pairs, most frequent first.

    Ties are broken by the sorted pair key so the output is deterministic.
    """

    if limit <= 0:
        return []

    counts = pair_frequencies(sales)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:limit]
    names = names or {}
    LOGGER.debug("Correlation analysis found %d distinct pairs", len(counts))

    return [
        ProductPairAffinity(
            product_a=a,
            product_b=b,
            frequency=frequency,
            product_a_name=names.get(a, "Unknown"),
            product_b_name=names.get(b, "Unknown"),
        )
        for (a, b), frequency in ranked
    ]
