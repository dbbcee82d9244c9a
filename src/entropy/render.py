"""
Plain-text table rendering shared by ``entropy ls`` and the dashboard.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence

from .core.reconcile import LeaseView

LEASE_HEADERS = ("ALIAS", "IP_ADDRESS", "TIER", "REGION", "STATUS", "TTL")


def format_table(headers: Sequence[str], rows: Iterable[Sequence[str]]) -> str:
    materialized: List[Sequence[str]] = [tuple(str(cell) for cell in row) for row in rows]
    widths = [len(header) for header in headers]
    for row in materialized:
        for index, cell in enumerate(row):
            widths[index] = max(widths[index], len(cell))

    def line(cells: Sequence[str]) -> str:
        return "| " + " | ".join(cell.ljust(widths[i]) for i, cell in enumerate(cells)) + " |"

    rule = "+" + "+".join("-" * (width + 2) for width in widths) + "+"
    out = [rule, line(headers), rule]
    out.extend(line(row) for row in materialized)
    out.append(rule)
    return "\n".join(out)


def lease_rows(views: Iterable[LeaseView]) -> List[Sequence[str]]:
    return [
        (view.alias, view.ip, view.lease.tier, view.lease.region, view.status, view.ttl)
        for view in views
    ]


def format_leases(views: Sequence[LeaseView]) -> str:
    return format_table(LEASE_HEADERS, lease_rows(views))
