"""
Merge the local lease registry with the orchestrator's view of the fleet.

The orchestrator is authoritative for whether a lease is alive, paused or
gone; the registry only contributes what the orchestrator does not know
(aliases, key paths) and gets its pending IP addresses filled in lazily.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import EntropyError, LeaseNotFoundError, LocalStoreError
from .orchestrator import STATUS_SUSPENDED, RemoteLeaseView
from .registry import PENDING_IP, Lease, LeaseRegistry
from .timefmt import format_duration, utcnow

__all__ = [
    "ALIVE",
    "DEAD",
    "GRACE_PERIOD",
    "LeaseView",
    "PAUSED",
    "Reconciler",
    "SyncResult",
    "UNKNOWN",
    "derive_view",
    "derive_views",
]

ALIVE = "ALIVE"
PAUSED = "PAUSED"
DEAD = "DEAD"
UNKNOWN = "UNKNOWN"
GRACE_PERIOD = "grace period"


@dataclass(frozen=True)
class LeaseView:
    """What a presentation layer shows for one lease."""

    lease: Lease
    status: str
    ttl: str
    ttl_seconds: Optional[int] = None
    ip: str = ""

    @property
    def alias(self) -> str:
        return self.lease.alias

    def as_dict(self) -> Dict[str, object]:
        return {
            "alias": self.lease.alias,
            "provider_id": self.lease.provider_id,
            "server_name": self.lease.server_name,
            "ip": self.ip,
            "tier": self.lease.tier,
            "region": self.lease.region,
            "status": self.status,
            "ttl": self.ttl,
            "ttl_seconds": self.ttl_seconds,
            "expires_at": self.lease.expires_at.isoformat(),
        }


def _remaining(expires_at: Optional[datetime], now: datetime) -> int:
    if expires_at is None:
        return 0
    return max(0, int(round((expires_at - now).total_seconds())))


def derive_view(
    lease: Lease,
    remote: Optional[RemoteLeaseView],
    now: datetime,
    *,
    reconciled: bool = True,
) -> LeaseView:
    """
    Derive status and TTL for ``lease``.

    ``reconciled=False`` means no remote snapshot exists at all; the local
    expiry is then the only hint and the status is ``UNKNOWN``.
    """
    if not reconciled:
        seconds = _remaining(lease.expires_at, now)
        return LeaseView(lease, UNKNOWN, format_duration(seconds), seconds, lease.ip)
    if remote is None:
        return LeaseView(lease, DEAD, "0s", 0, lease.ip)

    ip = lease.ip
    if lease.ip_pending and remote.ip and remote.ip != PENDING_IP:
        ip = remote.ip
    if remote.status == STATUS_SUSPENDED:
        return LeaseView(lease, PAUSED, GRACE_PERIOD, None, ip)

    seconds = _remaining(remote.expires_at or lease.expires_at, now)
    return LeaseView(lease, ALIVE, format_duration(seconds), seconds, ip)


def derive_views(
    leases: Sequence[Lease],
    remotes: Optional[Mapping[int, RemoteLeaseView]],
    now: datetime,
) -> Tuple[LeaseView, ...]:
    if remotes is None:
        return tuple(derive_view(lease, None, now, reconciled=False) for lease in leases)
    return tuple(derive_view(lease, remotes.get(lease.provider_id), now) for lease in leases)


@dataclass(frozen=True)
class SyncResult:
    """
    One reconciliation pass.

    ``remotes`` is ``None`` when no remote snapshot has ever been obtained.
    ``stale`` is set when this pass could not reach the orchestrator and
    reused older data; ``error`` then carries the reason.
    """

    leases: Tuple[Lease, ...]
    remotes: Optional[Mapping[int, RemoteLeaseView]]
    views: Tuple[LeaseView, ...]
    synced_at: datetime
    stale: bool = False
    error: Optional[EntropyError] = field(default=None, compare=False)

    def recompute(self, now: datetime) -> "SyncResult":
        """Recount TTLs against ``now`` without touching network or disk."""
        return replace(self, views=derive_views(self.leases, self.remotes, now))


class Reconciler:
    """
    Runs sync passes for one session.

    ``fetch_remote`` returns the orchestrator's leases keyed by provider id
    and may raise any :class:`~entropy.core.errors.EntropyError`; such
    failures degrade the pass instead of propagating. Registry failures do
    propagate.
    """

    def __init__(
        self,
        registry: LeaseRegistry,
        fetch_remote: Callable[[], Mapping[int, RemoteLeaseView]],
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.registry = registry
        self.fetch_remote = fetch_remote
        self._clock = clock or utcnow
        self._last_remotes: Optional[Mapping[int, RemoteLeaseView]] = None

    @property
    def last_remotes(self) -> Optional[Mapping[int, RemoteLeaseView]]:
        return self._last_remotes

    def _converge(self, leases: List[Lease], remotes: Mapping[int, RemoteLeaseView]) -> List[Lease]:
        converged: List[Lease] = []
        for lease in leases:
            remote = remotes.get(lease.provider_id)
            if (
                remote is not None
                and lease.ip_pending
                and remote.ip
                and remote.ip != PENDING_IP
            ):
                try:
                    lease = self.registry.update(lease.provider_id, ip=remote.ip)
                except LeaseNotFoundError:
                    logging.info("Lease %s was removed during sync", lease.alias)
                    continue
                except LocalStoreError:
                    logging.error("Could not record address %s for %s", remote.ip, lease.alias)
                    raise
                logging.info("Lease %s now reachable at %s", lease.alias, lease.ip)
            converged.append(lease)
        return converged

    def sync(self) -> SyncResult:
        leases = self.registry.list_all()
        try:
            remotes = dict(self.fetch_remote())
        except EntropyError as exc:
            logging.warning("Fleet sync failed, showing last known state: %s", exc)
            now = self._clock()
            return SyncResult(
                leases=tuple(leases),
                remotes=self._last_remotes,
                views=derive_views(leases, self._last_remotes, now),
                synced_at=now,
                stale=True,
                error=exc,
            )

        self._last_remotes = remotes
        leases = self._converge(leases, remotes)
        now = self._clock()
        return SyncResult(
            leases=tuple(leases),
            remotes=remotes,
            views=derive_views(leases, remotes, now),
            synced_at=now,
        )
