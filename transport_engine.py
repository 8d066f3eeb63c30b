"""Discrete displacement of fluid parcels down the string and into the annulus."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import logging
import math

from parcel_ledger import (
    Ledger,
    Parcel,
    append_tail,
    compress,
    empty_ledger,
    normalise_fluid_type,
    push_head,
    sequence_volume,
    take_tail,
)
from volume_utils import VOLUME_TOLERANCE, annulus_capacity, pipe_capacities
from well_geometry import Geometry

logger = logging.getLogger(__name__)

DEFAULT_TICK_BBL = 0.5
DEFAULT_MAX_TICKS = 1_000_000


@dataclass(frozen=True)
class SimulationConfig:
    """Tunable knobs for the displacement simulation."""

    tick_rate: float = DEFAULT_TICK_BBL
    tolerance: float = VOLUME_TOLERANCE
    cap_annulus: bool = True
    max_ticks_per_drain: int = DEFAULT_MAX_TICKS


def _positive_float(value, default: float) -> float:
    try:
        val = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(val) or val <= 0.0:
        return default
    return val


def normalise_config(config: SimulationConfig | Mapping[str, object] | None) -> SimulationConfig:
    if config is None:
        return SimulationConfig()
    if isinstance(config, SimulationConfig):
        return config
    if not isinstance(config, Mapping):
        raise TypeError(f"Cannot build a simulation config from {type(config).__name__}")
    cap = config.get("cap_annulus", True)
    try:
        max_ticks = int(config.get("max_ticks_per_drain", DEFAULT_MAX_TICKS))
    except (TypeError, ValueError):
        max_ticks = DEFAULT_MAX_TICKS
    return SimulationConfig(
        tick_rate=_positive_float(config.get("tick_rate"), DEFAULT_TICK_BBL),
        tolerance=_positive_float(config.get("tolerance"), VOLUME_TOLERANCE),
        cap_annulus=bool(cap) if cap is not None else True,
        max_ticks_per_drain=max(max_ticks, 1),
    )


def annulus_overflow(ledger: Ledger, geometry: Geometry | None) -> float:
    """Return annulus volume held above its analytic capacity (bbl)."""

    ceiling = annulus_capacity(geometry)
    if ceiling is None:
        return 0.0
    return max(sequence_volume(ledger.annulus) - ceiling, 0.0)


def advance(
    ledger: Ledger | None,
    geometry: Geometry | None,
    fluid_type,
    step: float,
    *,
    config: SimulationConfig | Mapping[str, object] | None = None,
) -> Ledger:
    """Pump ``step`` bbl of ``fluid_type`` in at surface and return the new ledger.

    The new parcel enters the top of pipe ``0``.  Each full pipe then hands
    its excess, bottom-most parcel first, to the top of the next pipe; the
    last pipe hands it to the annulus.  Every sequence is compressed
    afterwards.  With no pipes the volume goes straight to the annulus.

    When ``config.cap_annulus`` is set and the geometry bounds the annulus,
    volume above the annulus capacity is removed from its top end and
    added to :attr:`Ledger.discarded`.

    ``ledger`` is never mutated.  A ledger sized for a different number of
    pipes is replaced by an empty one before stepping; missing geometry
    yields the empty ledger.
    """

    cfg = normalise_config(config)
    tol = cfg.tolerance

    if geometry is None:
        return empty_ledger(0)
    if ledger is None or ledger.pipe_count != geometry.pipe_count:
        if ledger is not None:
            logger.debug(
                "Ledger sized for %d pipes reset for %d pipes",
                ledger.pipe_count,
                geometry.pipe_count,
            )
        ledger = empty_ledger(geometry.pipe_count)

    fluid = normalise_fluid_type(fluid_type)
    try:
        volume = float(step)
    except (TypeError, ValueError):
        volume = float("nan")
    if fluid is None or not math.isfinite(volume) or volume <= 0.0:
        return ledger

    injected = Parcel(fluid, volume)
    pipes = list(ledger.pipes)
    annulus = ledger.annulus

    if not pipes:
        annulus = append_tail(annulus, (injected,))
    else:
        pipes[0] = push_head(pipes[0], (injected,))
        last = len(pipes) - 1
        for idx, capacity in enumerate(pipe_capacities(geometry)):
            used = sequence_volume(pipes[idx])
            if used <= capacity + tol:
                continue
            pipes[idx], departed = take_tail(pipes[idx], used - capacity, tolerance=tol)
            if idx < last:
                pipes[idx + 1] = push_head(pipes[idx + 1], departed)
            else:
                annulus = append_tail(annulus, departed)

    pipes = [compress(seq) for seq in pipes]
    annulus = compress(annulus)

    discarded = float(ledger.discarded)
    if cfg.cap_annulus:
        ceiling = annulus_capacity(geometry)
        if ceiling is not None:
            excess = sequence_volume(annulus) - ceiling
            if excess > tol:
                annulus, spilled = take_tail(annulus, excess, tolerance=tol)
                lost = sequence_volume(spilled)
                discarded += lost
                logger.info("Annulus full (%.3f bbl); discarded %.6f bbl", ceiling, lost)

    return Ledger(pipes=tuple(pipes), annulus=annulus, discarded=discarded)


__all__ = [
    "DEFAULT_TICK_BBL",
    "SimulationConfig",
    "normalise_config",
    "annulus_overflow",
    "advance",
]
