"""Ordered fluid parcels held by each pipe segment and by the annulus.

Pipe sequences run top to bottom (index ``0`` nearest surface).  The annulus
sequence runs in arrival order with index ``0`` drawn at the bottom of the
annulus.  Adjacent parcels of the same fluid are always merged, so a
compressed sequence alternates fluid types.

All helpers return new tuples and never mutate their inputs.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
import logging
import math

import pandas as pd

from volume_utils import VOLUME_TOLERANCE, annulus_fluid_heights, pipe_fluid_heights
from well_geometry import Geometry, pipe_depths

logger = logging.getLogger(__name__)


class FluidType(str, Enum):
    """Fluids pumped during a liner cementing job."""

    CEMENT = "Cement"
    MUD_PUSH = "Mud Push"
    SPACER = "Spacer"
    MUD = "Mud"

    def __str__(self) -> str:
        return self.value


_FLUID_ALIASES = {member.value.lower(): member.value for member in FluidType}
_FLUID_ALIASES.update({member.name.lower(): member.value for member in FluidType})


def normalise_fluid_type(value) -> str | None:
    """Return the canonical fluid tag for ``value`` or ``None`` when blank.

    Known fluids are matched case-insensitively by label (``"mud push"``) or
    enum name (``"MUD_PUSH"``).  Any other non-blank label is kept verbatim
    so custom fluids can be tracked too.
    """

    if isinstance(value, FluidType):
        return value.value
    if value is None:
        return None
    label = str(value).strip()
    if not label:
        return None
    return _FLUID_ALIASES.get(label.lower(), label)


@dataclass(frozen=True)
class Parcel:
    """Contiguous plug of one fluid."""

    fluid_type: str
    volume: float

    def __post_init__(self) -> None:
        try:
            vol = float(self.volume)
        except (TypeError, ValueError):
            vol = float("nan")
        if not math.isfinite(vol) or vol < 0.0:
            logger.warning(
                "Clamping invalid parcel volume %r of %s to zero", self.volume, self.fluid_type
            )
            vol = 0.0
        object.__setattr__(self, "volume", vol)
        object.__setattr__(self, "fluid_type", str(self.fluid_type))


@dataclass(frozen=True)
class Ledger:
    """Where every parcel sits: one sequence per pipe plus the annulus.

    ``discarded`` accumulates the volume spilled past a full annulus.
    """

    pipes: tuple[tuple[Parcel, ...], ...] = ()
    annulus: tuple[Parcel, ...] = ()
    discarded: float = 0.0

    @property
    def pipe_count(self) -> int:
        return len(self.pipes)

    @property
    def total_volume(self) -> float:
        return ledger_total(self)


def empty_ledger(pipe_count: int = 0) -> Ledger:
    return Ledger(pipes=tuple(() for _ in range(max(int(pipe_count), 0))))


def sequence_volume(parcels: Iterable[Parcel]) -> float:
    return float(sum(p.volume for p in parcels))


def ledger_total(ledger: Ledger) -> float:
    """Return the volume held in the pipes and annulus (``discarded`` excluded)."""

    return sum(sequence_volume(seq) for seq in ledger.pipes) + sequence_volume(ledger.annulus)


def compress(parcels: Iterable[Parcel]) -> tuple[Parcel, ...]:
    """Return ``parcels`` with adjacent parcels of equal fluid merged.

    Empty parcels are dropped first so that fluids separated only by a
    zero-volume parcel merge as well.
    """

    merged: list[Parcel] = []
    for parcel in parcels:
        if parcel is None or parcel.volume <= 0.0:
            continue
        if merged and merged[-1].fluid_type == parcel.fluid_type:
            prev = merged[-1]
            merged[-1] = Parcel(prev.fluid_type, prev.volume + parcel.volume)
        else:
            merged.append(parcel)
    return tuple(merged)


def take_tail(
    parcels: Sequence[Parcel],
    volume: float,
    *,
    tolerance: float = VOLUME_TOLERANCE,
) -> tuple[tuple[Parcel, ...], tuple[Parcel, ...]]:
    """Remove ``volume`` from the end of ``parcels``.

    Returns ``(remaining, removed)`` where ``removed`` lists the departed
    parcels in the order they left, last element of ``parcels`` first.  The
    last parcel touched is split when it holds more than what is still
    owed; a parcel within ``tolerance`` of the owed volume leaves whole.
    """

    remaining = list(parcels)
    owed = max(float(volume or 0.0), 0.0)
    removed: list[Parcel] = []
    while remaining and owed > tolerance:
        tail = remaining[-1]
        if tail.volume <= owed + tolerance:
            remaining.pop()
            removed.append(tail)
            owed -= tail.volume
            continue
        remaining[-1] = Parcel(tail.fluid_type, tail.volume - owed)
        removed.append(Parcel(tail.fluid_type, owed))
        owed = 0.0
    return tuple(remaining), tuple(removed)


def push_head(parcels: Sequence[Parcel], arrivals: Iterable[Parcel]) -> tuple[Parcel, ...]:
    """Feed ``arrivals`` into the top of a pipe sequence.

    ``arrivals`` are in departure order: each one enters above the previous,
    so the first to arrive ends up deepest.  The junction is merged when the
    fluids match.
    """

    head = list(arrivals)
    head.reverse()
    return compress(head + list(parcels))


def append_tail(parcels: Sequence[Parcel], arrivals: Iterable[Parcel]) -> tuple[Parcel, ...]:
    """Append ``arrivals`` to the arrival end of an annulus sequence."""

    return compress(list(parcels) + list(arrivals))


def _parcel_dicts(parcels: Iterable[Parcel]) -> list[dict[str, float | str]]:
    return [{"type": p.fluid_type, "volume": p.volume} for p in parcels]


def ledger_snapshot(ledger: Ledger) -> dict[str, object]:
    """Return a plain, detached copy of ``ledger`` for rendering."""

    return {
        "pipes": [_parcel_dicts(seq) for seq in ledger.pipes],
        "annulus": _parcel_dicts(ledger.annulus),
        "discarded": float(ledger.discarded),
    }


LEDGER_TABLE_COLUMNS = [
    "Location",
    "Index",
    "Fluid",
    "Volume (bbl)",
    "Start (m)",
    "End (m)",
]


def ledger_table(ledger: Ledger, geometry: Geometry | None) -> pd.DataFrame:
    """Return one row per parcel with the interval it occupies.

    Pipe intervals are measured depths from surface.  Annulus intervals are
    heights above the annulus bottom (metres over the open hole, or
    fractions of ``1.0`` when no wellbore is defined).
    """

    rows = []
    depths = pipe_depths(geometry)
    pipes = geometry.pipes if geometry is not None else ()
    for idx, seq in enumerate(ledger.pipes):
        if idx >= len(pipes):
            break
        location = f"Pipe {idx + 1}"
        cursor = depths[idx][0]
        heights = pipe_fluid_heights(pipes[idx], seq)
        for pos, (parcel, (_fluid, height)) in enumerate(zip(seq, heights)):
            rows.append(
                {
                    "Location": location,
                    "Index": pos,
                    "Fluid": parcel.fluid_type,
                    "Volume (bbl)": parcel.volume,
                    "Start (m)": cursor,
                    "End (m)": cursor + height,
                }
            )
            cursor += height

    cursor = 0.0
    heights = annulus_fluid_heights(geometry, ledger.annulus)
    for pos, (parcel, (_fluid, height)) in enumerate(zip(ledger.annulus, heights)):
        rows.append(
            {
                "Location": "Annulus",
                "Index": pos,
                "Fluid": parcel.fluid_type,
                "Volume (bbl)": parcel.volume,
                "Start (m)": cursor,
                "End (m)": cursor + height,
            }
        )
        cursor += height
    return pd.DataFrame(rows, columns=LEDGER_TABLE_COLUMNS)


__all__ = [
    "FluidType",
    "normalise_fluid_type",
    "Parcel",
    "Ledger",
    "empty_ledger",
    "sequence_volume",
    "ledger_total",
    "compress",
    "take_tail",
    "push_head",
    "append_tail",
    "ledger_snapshot",
    "ledger_table",
]
