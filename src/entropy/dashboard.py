"""
Interactive fleet dashboard.

The dashboard is a finite-state machine: a single loop takes one event at a
time from a queue and feeds it to :func:`reduce`, which returns the next
state plus the effects to start. Effects run on a thread pool and report
back by posting events; nothing outside the loop touches the state.

Input is line based: ``r`` refreshes, ``n ALIAS [TIER REGION DURATION]``
provisions, ``d ALIAS`` destroys, ``s ALIAS`` leaves and connects over SSH,
``q`` quits.
"""

from __future__ import annotations

import logging
import queue
import sys
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, Optional, TextIO, Tuple, Union

from .core.context import EntropyContext
from .core.reconcile import LeaseView, SyncResult
from .core.timefmt import utcnow
from .render import format_leases

__all__ = [
    "Dashboard",
    "DashboardState",
    "KeyInput",
    "RunDestroy",
    "RunProvision",
    "RunSync",
    "Quit",
    "SyncFinished",
    "TaskFinished",
    "Tick",
    "reduce",
]


# events


@dataclass(frozen=True)
class Tick:
    now: datetime


@dataclass(frozen=True)
class SyncFinished:
    result: SyncResult


@dataclass(frozen=True)
class KeyInput:
    line: str


@dataclass(frozen=True)
class TaskFinished:
    label: str
    message: str = ""
    error: Optional[BaseException] = None


Event = Union[Tick, SyncFinished, KeyInput, TaskFinished]


# effects


@dataclass(frozen=True)
class RunSync:
    pass


@dataclass(frozen=True)
class RunDestroy:
    alias: str


@dataclass(frozen=True)
class RunProvision:
    alias: str
    tier: str = "eco-small"
    region: str = "nbg1"
    duration: str = "1h"


@dataclass(frozen=True)
class Quit:
    pass


Effect = Union[RunSync, RunDestroy, RunProvision, Quit]


@dataclass(frozen=True)
class DashboardState:
    wallet: str
    sync_interval: timedelta = timedelta(seconds=20)
    snapshot: Optional[SyncResult] = None
    views: Tuple[LeaseView, ...] = ()
    status: str = "IDLE"
    last_sync: Optional[datetime] = None
    sync_in_flight: bool = False
    running: bool = True
    ssh_target: Optional[str] = None
    revision: int = field(default=0, compare=False)

    def _bump(self, **changes) -> "DashboardState":
        return replace(self, revision=self.revision + 1, **changes)


def _request_sync(state: DashboardState, status: Optional[str] = None) -> Tuple[DashboardState, Tuple[Effect, ...]]:
    if state.sync_in_flight:
        return (state._bump(status=status) if status else state), ()
    changes = {"sync_in_flight": True}
    if status:
        changes["status"] = status
    return state._bump(**changes), (RunSync(),)


def _reduce_key(state: DashboardState, line: str) -> Tuple[DashboardState, Tuple[Effect, ...]]:
    parts = line.split()
    if not parts:
        return state, ()
    key, args = parts[0].lower(), parts[1:]

    if key in ("q", "quit", "ctrl+c"):
        return state._bump(running=False), (Quit(),)
    if key in ("r", "ctrl+r", "refresh"):
        return _request_sync(state, "FORCING_SYNC...")
    if key == "d" and args:
        return state._bump(status=f"DESTROYING_{args[0]}"), (RunDestroy(args[0]),)
    if key == "n" and args:
        return (
            state._bump(status="PROVISIONING_X402_NODE..."),
            (RunProvision(*args[:4]),),
        )
    if key == "s" and args:
        return state._bump(running=False, ssh_target=args[0]), (Quit(),)
    return state._bump(status=f"UNKNOWN_COMMAND: {line.strip()}"), ()


def reduce(state: DashboardState, event: Event) -> Tuple[DashboardState, Tuple[Effect, ...]]:
    """Return the state after ``event`` and the effects to start."""
    if isinstance(event, Tick):
        if state.snapshot is not None:
            state = replace(state, views=state.snapshot.recompute(event.now).views)
        stale = state.last_sync is None or event.now - state.last_sync >= state.sync_interval
        if stale and not state.sync_in_flight:
            return _request_sync(state)
        return state, ()

    if isinstance(event, SyncFinished):
        result = event.result
        status = "FLEET_SYNCED"
        if result.stale:
            status = f"OFFLINE: {result.error}" if result.error else "OFFLINE"
        return (
            state._bump(
                snapshot=result,
                views=result.views,
                last_sync=result.synced_at,
                sync_in_flight=False,
                status=status,
            ),
            (),
        )

    if isinstance(event, KeyInput):
        return _reduce_key(state, event.line)

    if isinstance(event, TaskFinished):
        if event.label == "sync":
            status = f"SYNC_ERROR: {event.error}" if event.error else state.status
            return state._bump(sync_in_flight=False, status=status), ()
        if event.error is not None:
            status = f"{event.label.upper()}_ERROR: {event.error}"
        else:
            status = event.message or f"{event.label.upper()}_SUCCESS"
        return _request_sync(state, status)

    raise TypeError(f"Unknown dashboard event {event!r}")


def render(state: DashboardState, version: str = "") -> str:
    header = f"X402_SYSTEMS // AGENT_TERMINAL_{version}".rstrip("_")
    lines = [header, f" AUTH_WALLET: {state.wallet}", ""]
    lines.append(format_leases(state.views))
    lines.append("")
    lines.append(f" MGMT: {state.status}")
    lines.append(" n ALIAS [TIER REGION DURATION]: new node • r: sync • s ALIAS: ssh • d ALIAS: delete • q: quit")
    return "\n".join(lines)


class Dashboard:
    """
    Runs the event loop against an :class:`EntropyContext`.

    ``provision`` performs one provisioning request; the CLI passes a helper
    that resolves the default SSH key.
    """

    def __init__(
        self,
        context: EntropyContext,
        *,
        provision: Callable[..., object],
        out: TextIO = sys.stdout,
        tick_seconds: float = 1.0,
        version: str = "",
        max_workers: int = 4,
    ) -> None:
        self.context = context
        self.provision = provision
        self.out = out
        self.tick_seconds = tick_seconds
        self.version = version
        self.events: "queue.Queue[Event]" = queue.Queue()
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="entropy")
        self._stop = threading.Event()
        self.state = DashboardState(
            wallet=context.identities.display_id(),
            sync_interval=timedelta(seconds=context.config.sync_interval_seconds),
        )

    def post(self, event: Event) -> None:
        self.events.put(event)

    def _post_when_done(
        self,
        future: "Future[object]",
        label: str,
        on_success: Callable[[object], Event],
    ) -> None:
        def done(completed: "Future[object]") -> None:
            error = completed.exception()
            if error is not None:
                logging.error("%s failed: %s", label, error)
                self.post(TaskFinished(label, error=error))
            else:
                self.post(on_success(completed.result()))

        future.add_done_callback(done)

    def _start(self, effect: Effect) -> None:
        if isinstance(effect, RunSync):
            future = self.executor.submit(self.context.reconciler().sync)
            self._post_when_done(future, "sync", SyncFinished)
        elif isinstance(effect, RunDestroy):
            future = self.executor.submit(self.context.fleet().destroy, effect.alias)
            self._post_when_done(
                future, "destroy", lambda _: TaskFinished("destroy", f"DESTROYED_{effect.alias}")
            )
        elif isinstance(effect, RunProvision):
            future = self.executor.submit(
                self.provision,
                self.context,
                alias=effect.alias,
                tier=effect.tier,
                region=effect.region,
                duration=effect.duration,
            )
            self._post_when_done(
                future, "provision", lambda _: TaskFinished("provision", "PROVISION_SUCCESS")
            )
        elif isinstance(effect, Quit):
            self._stop.set()

    def _ticker(self) -> None:
        while not self._stop.wait(self.tick_seconds):
            self.post(Tick(utcnow()))

    def _reader(self, source: TextIO) -> None:
        for line in source:
            self.post(KeyInput(line))
            if self._stop.is_set():
                return
        self.post(KeyInput("q"))

    def _draw(self) -> None:
        self.out.write("\x1b[2J\x1b[H" + render(self.state, self.version) + "\n")
        self.out.flush()

    def run(self, source: Optional[TextIO] = None) -> DashboardState:
        threading.Thread(target=self._ticker, name="entropy-tick", daemon=True).start()
        threading.Thread(
            target=self._reader, args=(source or sys.stdin,), name="entropy-keys", daemon=True
        ).start()
        self.post(Tick(utcnow()))

        try:
            while self.state.running:
                event = self.events.get()
                previous = self.state
                self.state, effects = reduce(self.state, event)
                for effect in effects:
                    self._start(effect)
                if self.state is not previous:
                    self._draw()
        finally:
            self._stop.set()
            self.executor.shutdown(wait=False)
        return self.state
