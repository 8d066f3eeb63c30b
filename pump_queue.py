"""Sequential pump queue driving the displacement simulation.

Pump requests are drained strictly in submission order, one at a time, by
repeated calls to :func:`transport_engine.advance`.  Timing is left to the
caller: a UI timer, an event loop or a test can call :meth:`tick` or
:meth:`advance_by` whenever it wants the next increment.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
import logging
import math

import pandas as pd

from parcel_ledger import Ledger, empty_ledger, ledger_snapshot, ledger_table, normalise_fluid_type
from transport_engine import SimulationConfig, advance, normalise_config
from volume_utils import calculate_volumes
from well_geometry import Geometry, normalise_geometry

logger = logging.getLogger(__name__)


class QueueState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PumpRequest:
    """Pump ``total_volume`` bbl of ``fluid_type`` from surface."""

    fluid_type: str
    total_volume: float


ProgressCallback = Callable[..., None]


class CementingSimulator:
    """Owns the geometry, the parcel ledger and the pump queue.

    Only this object writes to the ledger.  Readers get detached snapshots
    taken between steps, so they never see a half-finished cascade.
    """

    def __init__(
        self,
        geometry: Geometry | Mapping[str, object] | None = None,
        *,
        config: SimulationConfig | Mapping[str, object] | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        self._config = normalise_config(config)
        self._geometry = normalise_geometry(geometry)
        self._ledger = empty_ledger(self._pipe_count(self._geometry))
        self._queue: deque[PumpRequest] = deque()
        self._remaining = 0.0
        self._pumped: dict[str, float] = {}
        self._progress = progress_callback

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------
    @property
    def config(self) -> SimulationConfig:
        return self._config

    @property
    def geometry(self) -> Geometry | None:
        return self._geometry

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    @property
    def state(self) -> QueueState:
        return QueueState.DRAINING if self._queue else QueueState.IDLE

    @property
    def active_request(self) -> PumpRequest | None:
        return self._queue[0] if self._queue else None

    @property
    def remaining_volume(self) -> float:
        return self._remaining if self._queue else 0.0

    @property
    def pending(self) -> tuple[PumpRequest, ...]:
        """Requests not yet completed, the active one first."""

        return tuple(self._queue)

    @property
    def pumped_volumes(self) -> dict[str, float]:
        return dict(self._pumped)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    @staticmethod
    def _pipe_count(geometry: Geometry | None) -> int:
        return geometry.pipe_count if geometry is not None else 0

    def _notify(self, kind: str, **kwargs) -> None:
        if self._progress is not None:
            self._progress(kind, **kwargs)

    def set_geometry(self, geometry: Geometry | Mapping[str, object] | None) -> None:
        """Replace the geometry.

        A change in the number of pipe segments empties the ledger and
        discards every active and queued request.  Otherwise the parcels stay
        where they are and the next step cascades any excess.
        """

        new_geometry = normalise_geometry(geometry)
        old_count = self._pipe_count(self._geometry)
        new_count = self._pipe_count(new_geometry)
        self._geometry = new_geometry
        if new_count != old_count:
            logger.debug("Pipe count changed from %d to %d; resetting", old_count, new_count)
            self.reset()

    def enqueue_pump(self, fluid_type, volume) -> PumpRequest | None:
        """Queue a pump request; invalid requests are dropped and ``None`` returned."""

        fluid = normalise_fluid_type(fluid_type)
        try:
            total = float(volume)
        except (TypeError, ValueError):
            total = float("nan")
        if fluid is None or not math.isfinite(total) or total <= 0.0:
            logger.info("Dropping pump request %r of %r bbl", fluid_type, volume)
            return None

        request = PumpRequest(fluid_type=fluid, total_volume=total)
        self._queue.append(request)
        if len(self._queue) == 1:
            self._start(request)
        return request

    def reset(self) -> None:
        """Empty the ledger and the queue and return to :attr:`QueueState.IDLE`."""

        discarded = len(self._queue)
        self._queue.clear()
        self._remaining = 0.0
        self._pumped = {}
        self._ledger = empty_ledger(self._pipe_count(self._geometry))
        logger.debug("Simulation reset; %d request(s) discarded", discarded)
        self._notify("reset", request=None, remaining=0.0)

    def tick(self) -> float:
        """Advance the active request by one ``tick_rate`` increment."""

        return self.advance_by(self._config.tick_rate)

    def advance_by(self, step: float) -> float:
        """Advance the active request by up to ``step`` bbl.

        Returns the volume actually pumped, ``0.0`` when idle or when
        ``step`` is not a finite positive number.
        """

        if not self._queue:
            return 0.0
        try:
            requested = float(step)
        except (TypeError, ValueError):
            return 0.0
        if not math.isfinite(requested) or requested <= 0.0:
            return 0.0

        request = self._queue[0]
        pumped = min(self._remaining, requested)
        self._ledger = advance(
            self._ledger,
            self._geometry,
            request.fluid_type,
            pumped,
            config=self._config,
        )
        self._pumped[request.fluid_type] = self._pumped.get(request.fluid_type, 0.0) + pumped
        self._remaining -= pumped
        if self._remaining <= self._config.tolerance:
            self._finish(request)
        return pumped

    def drain(self) -> int:
        """Tick until the queue is empty and return the number of ticks run."""

        ticks = 0
        while self._queue and ticks < self._config.max_ticks_per_drain:
            self.tick()
            ticks += 1
        if self._queue:
            logger.warning(
                "Drain stopped after %d ticks with %d request(s) pending",
                ticks,
                len(self._queue),
            )
        return ticks

    def _start(self, request: PumpRequest) -> None:
        self._remaining = request.total_volume
        logger.debug("Pumping %.3f bbl of %s", request.total_volume, request.fluid_type)
        self._notify("request_start", request=request, remaining=self._remaining)

    def _finish(self, request: PumpRequest) -> None:
        self._queue.popleft()
        self._remaining = 0.0
        logger.debug("Finished %.3f bbl of %s", request.total_volume, request.fluid_type)
        self._notify("request_done", request=request, remaining=0.0)
        if self._queue:
            self._start(self._queue[0])

    # ------------------------------------------------------------------
    # Readouts
    # ------------------------------------------------------------------
    def get_volumes(self) -> dict[str, float]:
        return calculate_volumes(self._geometry).as_dict()

    def get_ledger_snapshot(self) -> dict[str, object]:
        return ledger_snapshot(self._ledger)

    def ledger_frame(self) -> pd.DataFrame:
        return ledger_table(self._ledger, self._geometry)


__all__ = [
    "QueueState",
    "PumpRequest",
    "CementingSimulator",
]
