"""Closed-form well volume helpers.

Diameters are in inches, depths and lengths in metres and every returned
volume is in barrels.  ``K`` folds the circular-area factor and both unit
conversions together so that a bore of inner diameter ``id`` and length
``L`` holds ``id ** 2 * L * K`` barrels.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass
import math

import numpy as np
import pandas as pd

from well_geometry import Casing, Geometry, OpenHole, PipeSegment, last_casing_bottom, pipe_depths

INCH_TO_M = 0.0254
M3_TO_BBL = 6.2898
# bbl per metre of length per square inch of diameter
K = (math.pi / 4.0) * INCH_TO_M ** 2 * M3_TO_BBL

# Absolute tolerance (bbl) for every capacity and overflow comparison.
VOLUME_TOLERANCE = 1e-9

# Fluid assumed to occupy any part of a section not claimed by a parcel.
BASE_FLUID = "Mud"

READOUT_KEYS = (
    "wellVolume",
    "openHoleVolume",
    "internalStringVolume",
    "linerVolume",
    "internalStringDisplacement",
    "annulusVolume",
)


def _bore_volume(diameter_in: float, length_m: float) -> float:
    if length_m <= 0 or diameter_in <= 0:
        return 0.0
    return diameter_in ** 2 * length_m * K


def casing_volume(casing: Casing) -> float:
    """Return the internal volume of ``casing`` (0 when invalid)."""

    if not casing.valid:
        return 0.0
    return _bore_volume(casing.id, casing.bottom - casing.top)


def open_hole_volume(open_hole: OpenHole | None, casing_bottom: float, *, has_casings: bool = True) -> float:
    """Return the volume of the open hole section below ``casing_bottom``."""

    if open_hole is None or not has_casings or not open_hole.valid:
        return 0.0
    return _bore_volume(open_hole.size, max(open_hole.depth - casing_bottom, 0.0))


def pipe_internal_volume(pipe: PipeSegment) -> float:
    if not pipe.valid:
        return 0.0
    return _bore_volume(pipe.id, pipe.length)


def pipe_metal_displacement(pipe: PipeSegment) -> float:
    if not pipe.valid:
        return 0.0
    return (pipe.od ** 2 - pipe.id ** 2) * pipe.length * K


def pipe_external_volume(pipe: PipeSegment) -> float:
    if not pipe.valid:
        return 0.0
    return _bore_volume(pipe.od, pipe.length)


def _sum(values: Iterable[float]) -> float:
    arr = np.fromiter(values, dtype=float)
    if arr.size == 0:
        return 0.0
    return float(arr.sum())


def pipe_capacities(geometry: Geometry | None) -> list[float]:
    """Return internal capacities index-aligned with ``geometry.pipes``."""

    if geometry is None:
        return []
    return [pipe_internal_volume(p) for p in geometry.pipes]


@dataclass(frozen=True)
class WellVolumes:
    """Aggregate volumes for one geometry, all in barrels."""

    well_volume: float = 0.0
    open_hole_volume: float = 0.0
    total_well_volume: float = 0.0
    internal_string_volume: float = 0.0
    liner_volume: float = 0.0
    internal_string_displacement: float = 0.0
    external_string_volume: float = 0.0
    annulus_volume: float = 0.0

    def as_dict(self) -> dict[str, float]:
        """Return the readout mapping shown next to the well schematic.

        ``wellVolume`` in the readout is the full hole volume (casings plus
        open hole) as displayed by the volumes panel.
        """

        return {
            "wellVolume": self.total_well_volume,
            "openHoleVolume": self.open_hole_volume,
            "internalStringVolume": self.internal_string_volume,
            "linerVolume": self.liner_volume,
            "internalStringDisplacement": self.internal_string_displacement,
            "annulusVolume": self.annulus_volume,
        }

    def to_series(self) -> pd.Series:
        return pd.Series(asdict(self), dtype=float)


def calculate_volumes(geometry: Geometry | None) -> WellVolumes:
    """Return every aggregate volume for ``geometry``.

    Missing geometry or empty collections produce zero-valued aggregates
    rather than errors so callers can query the readout while the geometry
    is still being entered.
    """

    if geometry is None:
        return WellVolumes()

    well = _sum(casing_volume(c) for c in geometry.casings)
    hole = open_hole_volume(
        geometry.open_hole,
        last_casing_bottom(geometry),
        has_casings=geometry.has_wellbore,
    )
    total = well + hole

    capacities = pipe_capacities(geometry)
    internal = _sum(capacities)
    liner = capacities[-1] if capacities else 0.0
    displacement = _sum(pipe_metal_displacement(p) for p in geometry.pipes)
    external = _sum(pipe_external_volume(p) for p in geometry.pipes)

    return WellVolumes(
        well_volume=well,
        open_hole_volume=hole,
        total_well_volume=total,
        internal_string_volume=internal,
        liner_volume=liner,
        internal_string_displacement=displacement,
        external_string_volume=external,
        annulus_volume=max(total - external, 0.0),
    )


def annulus_capacity(geometry: Geometry | None) -> float | None:
    """Return the annulus ceiling in barrels or ``None`` when unbounded.

    Without at least one valid casing there is no wellbore wall around the
    string, so nothing bounds the annulus.
    """

    if geometry is None or not geometry.has_wellbore:
        return None
    return calculate_volumes(geometry).annulus_volume


def fluid_column_heights(
    parcels: Sequence,
    capacity: float,
    length: float,
) -> list[tuple[str, float]]:
    """Return ``(fluid_type, height)`` pairs for ``parcels`` in a section.

    ``parcels`` is any sequence of objects exposing ``fluid_type`` and
    ``volume``.  Heights follow parcel order; the last pair is the residual
    :data:`BASE_FLUID` column filling whatever length is left.
    """

    try:
        cap = float(capacity)
        span = float(length)
    except (TypeError, ValueError):
        cap, span = 0.0, 0.0
    if not math.isfinite(span) or span <= 0:
        span = 0.0

    heights: list[tuple[str, float]] = []
    used = 0.0
    for parcel in parcels:
        if cap <= 0 or span <= 0:
            height = 0.0
        else:
            height = max(float(parcel.volume), 0.0) / cap * span
        heights.append((str(parcel.fluid_type), height))
        used += height
    heights.append((BASE_FLUID, max(span - used, 0.0)))
    return heights


def pipe_fluid_heights(pipe: PipeSegment, parcels: Sequence) -> list[tuple[str, float]]:
    """Return column heights (m) of ``parcels`` inside ``pipe``, top first."""

    length = pipe.length if pipe.valid else 0.0
    return fluid_column_heights(parcels, pipe_internal_volume(pipe), length)


def annulus_fluid_heights(geometry: Geometry | None, parcels: Sequence) -> list[tuple[str, float]]:
    """Return annulus column heights, bottom first.

    With a wellbore the heights are metres over the open hole section drawn
    by the schematic.  Without one the annulus volume is only a ratio
    denominator and the heights are fractions of ``1.0``.
    """

    capacity = calculate_volumes(geometry).annulus_volume
    hole = geometry.open_hole if geometry is not None else None
    if geometry is not None and geometry.has_wellbore and hole is not None and hole.valid:
        span = max(hole.depth - last_casing_bottom(geometry), 0.0)
    else:
        span = 1.0
    return fluid_column_heights(parcels, capacity, span)


VOLUME_TABLE_COLUMNS = [
    "Section",
    "Top (m)",
    "Bottom (m)",
    "OD (in)",
    "ID (in)",
    "Capacity (bbl)",
    "Valid",
]


def volume_table(geometry: Geometry | None) -> pd.DataFrame:
    """Return one row per casing, open hole and pipe segment."""

    if geometry is None:
        return pd.DataFrame(columns=VOLUME_TABLE_COLUMNS)

    rows = []
    for idx, casing in enumerate(geometry.casings, start=1):
        rows.append(
            {
                "Section": f"Casing {idx}",
                "Top (m)": casing.top,
                "Bottom (m)": casing.bottom,
                "OD (in)": casing.od,
                "ID (in)": casing.id,
                "Capacity (bbl)": casing_volume(casing),
                "Valid": casing.valid,
            }
        )
    hole = geometry.open_hole
    if hole is not None:
        top = last_casing_bottom(geometry)
        rows.append(
            {
                "Section": "Open hole",
                "Top (m)": top,
                "Bottom (m)": hole.depth,
                "OD (in)": hole.size,
                "ID (in)": hole.size,
                "Capacity (bbl)": open_hole_volume(hole, top, has_casings=geometry.has_wellbore),
                "Valid": hole.valid,
            }
        )
    last = len(geometry.pipes) - 1
    for idx, (pipe, (top, bottom)) in enumerate(zip(geometry.pipes, pipe_depths(geometry))):
        rows.append(
            {
                "Section": "Liner" if idx == last else f"Pipe {idx + 1}",
                "Top (m)": top,
                "Bottom (m)": bottom,
                "OD (in)": pipe.od,
                "ID (in)": pipe.id,
                "Capacity (bbl)": pipe_internal_volume(pipe),
                "Valid": pipe.valid,
            }
        )
    return pd.DataFrame(rows, columns=VOLUME_TABLE_COLUMNS)


__all__ = [
    "K",
    "INCH_TO_M",
    "M3_TO_BBL",
    "VOLUME_TOLERANCE",
    "BASE_FLUID",
    "READOUT_KEYS",
    "WellVolumes",
    "casing_volume",
    "open_hole_volume",
    "pipe_internal_volume",
    "pipe_metal_displacement",
    "pipe_external_volume",
    "pipe_capacities",
    "calculate_volumes",
    "annulus_capacity",
    "fluid_column_heights",
    "pipe_fluid_heights",
    "annulus_fluid_heights",
    "volume_table",
]
