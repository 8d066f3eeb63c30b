"""Well geometry description consumed by the volume and transport helpers.

A geometry is made of three parts:

``casings``
    Cemented steel strings, each with an outer/inner diameter in inches and
    a top/bottom measured depth in metres.
``open_hole``
    Optional uncased section below the last casing, described by its bit
    size (inches) and total depth (metres).
``pipes``
    The internal string run inside the well, ordered from surface (index
    ``0``) to bottom.  The last segment is the liner.

Entries that break their invariants are kept in the geometry so that the
pipe indices stay aligned with the parcel ledger, but they report
``valid == False`` and contribute neither volume nor transport capacity.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import logging
import math

logger = logging.getLogger(__name__)


def _coerce_float(value, default: float = 0.0) -> float:
    """Convert *value* to ``float`` when possible, otherwise return ``default``."""

    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and not value.strip():
        return float(default)
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


def _all_finite(*values: float) -> bool:
    return all(math.isfinite(v) for v in values)


@dataclass(frozen=True)
class Casing:
    """Cemented casing string between ``top`` and ``bottom`` (m)."""

    od: float
    id: float
    top: float
    bottom: float

    @property
    def valid(self) -> bool:
        if not _all_finite(self.od, self.id, self.top, self.bottom):
            return False
        return self.bottom > self.top and 0.0 < self.id < self.od

    @property
    def length(self) -> float:
        return max(self.bottom - self.top, 0.0) if self.valid else 0.0


@dataclass(frozen=True)
class OpenHole:
    """Uncased hole of diameter ``size`` (in) drilled to ``depth`` (m)."""

    size: float
    depth: float

    @property
    def valid(self) -> bool:
        if not _all_finite(self.size, self.depth):
            return False
        return self.size > 0.0 and self.depth > 0.0


@dataclass(frozen=True)
class PipeSegment:
    """One joint section of the internal string."""

    od: float
    id: float
    length: float

    @property
    def valid(self) -> bool:
        if not _all_finite(self.od, self.id, self.length):
            return False
        return self.length > 0.0 and 0.0 < self.id < self.od


@dataclass(frozen=True)
class Geometry:
    """Immutable well description for one simulation run."""

    casings: tuple[Casing, ...] = ()
    open_hole: OpenHole | None = None
    pipes: tuple[PipeSegment, ...] = ()

    @property
    def pipe_count(self) -> int:
        return len(self.pipes)

    @property
    def has_wellbore(self) -> bool:
        """Return ``True`` when at least one valid casing bounds the annulus."""

        return any(c.valid for c in self.casings)


def normalise_casing(entry: Casing | Mapping[str, object]) -> Casing:
    if isinstance(entry, Casing):
        return entry
    if not isinstance(entry, Mapping):
        raise TypeError(f"Cannot build a casing from {type(entry).__name__}")
    return Casing(
        od=_coerce_float(entry.get("od"), float("nan")),
        id=_coerce_float(entry.get("id"), float("nan")),
        top=_coerce_float(entry.get("top"), float("nan")),
        bottom=_coerce_float(entry.get("bottom"), float("nan")),
    )


def normalise_open_hole(entry: OpenHole | Mapping[str, object] | None) -> OpenHole | None:
    """Return an :class:`OpenHole` or ``None`` when the section is blank.

    The entry form hands over ``{"size": "", "depth": ""}`` until the user
    fills the fields in, so empty and zero values mean "no open hole".
    """

    if entry is None or isinstance(entry, OpenHole):
        return entry
    if not isinstance(entry, Mapping):
        raise TypeError(f"Cannot build an open hole from {type(entry).__name__}")
    size = _coerce_float(entry.get("size"), 0.0)
    depth = _coerce_float(entry.get("depth"), 0.0)
    if not size and not depth:
        return None
    return OpenHole(size=size, depth=depth)


def normalise_pipe(entry: PipeSegment | Mapping[str, object]) -> PipeSegment:
    if isinstance(entry, PipeSegment):
        return entry
    if not isinstance(entry, Mapping):
        raise TypeError(f"Cannot build a pipe segment from {type(entry).__name__}")
    return PipeSegment(
        od=_coerce_float(entry.get("od"), float("nan")),
        id=_coerce_float(entry.get("id"), float("nan")),
        length=_coerce_float(entry.get("length"), float("nan")),
    )


def _first_present(mapping: Mapping[str, object], *keys: str):
    for key in keys:
        value = mapping.get(key)
        if value is not None:
            return value
    return None


def normalise_geometry(value: Geometry | Mapping[str, object] | None) -> Geometry | None:
    """Return a :class:`Geometry` built from ``value``.

    ``value`` may already be a :class:`Geometry`, a mapping shaped like the
    entry form payload (``casings``, ``openHole``/``open_hole`` and
    ``drillPipes``/``drill_pipes``/``pipes``) or ``None``.  When valid
    casings are present a shallower open hole depth is raised to the deepest
    casing bottom.  Invalid entries are kept but reported through the module
    logger.
    """

    if value is None:
        return None
    if isinstance(value, Geometry):
        geometry = value
    elif isinstance(value, Mapping):
        casings_raw = value.get("casings") or ()
        pipes_raw = _first_present(value, "pipes", "drill_pipes", "drillPipes") or ()
        hole_raw = _first_present(value, "open_hole", "openHole")
        casings = tuple(normalise_casing(c) for c in casings_raw if c is not None)
        pipes = tuple(normalise_pipe(p) for p in pipes_raw if p is not None)
        open_hole = normalise_open_hole(hole_raw)
        geometry = Geometry(casings=casings, open_hole=open_hole, pipes=pipes)
    else:
        raise TypeError(f"Cannot build a geometry from {type(value).__name__}")

    geometry = _extend_open_hole(geometry)
    _report_invalid(geometry)
    return geometry


def _extend_open_hole(geometry: Geometry) -> Geometry:
    hole = geometry.open_hole
    if hole is None or not geometry.has_wellbore:
        return geometry
    bottom = last_casing_bottom(geometry)
    if math.isfinite(hole.depth) and hole.depth < bottom:
        hole = OpenHole(size=hole.size, depth=bottom)
        return Geometry(casings=geometry.casings, open_hole=hole, pipes=geometry.pipes)
    return geometry


def _report_invalid(geometry: Geometry) -> None:
    for idx, casing in enumerate(geometry.casings):
        if not casing.valid:
            logger.warning("Casing %d excluded from volumes: %r", idx, casing)
    if geometry.open_hole is not None and not geometry.open_hole.valid:
        logger.warning("Open hole excluded from volumes: %r", geometry.open_hole)
    for idx, pipe in enumerate(geometry.pipes):
        if not pipe.valid:
            logger.warning("Pipe segment %d has zero capacity: %r", idx, pipe)


def last_casing_bottom(geometry: Geometry | None) -> float:
    """Return the deepest bottom of the valid casings (``0`` if none).

    Casings may be entered in any order, so the shoe above the open hole is
    the deepest one rather than the last row.
    """

    if geometry is None:
        return 0.0
    return float(max((c.bottom for c in geometry.casings if c.valid), default=0.0))


def string_length(geometry: Geometry | None) -> float:
    """Return the combined length of all valid pipe segments in metres."""

    if geometry is None:
        return 0.0
    return float(sum(p.length for p in geometry.pipes if p.valid))


def pipe_depths(geometry: Geometry | None) -> list[tuple[float, float]]:
    """Return ``(top, bottom)`` depths of each pipe segment, surface first."""

    if geometry is None:
        return []
    depths: list[tuple[float, float]] = []
    cursor = 0.0
    for pipe in geometry.pipes:
        length = pipe.length if pipe.valid else 0.0
        depths.append((cursor, cursor + length))
        cursor += length
    return depths


def total_depth(geometry: Geometry | None) -> float:
    """Return the deepest point described by ``geometry``."""

    if geometry is None:
        return 0.0
    candidates = [string_length(geometry)]
    candidates.extend(c.bottom for c in geometry.casings if c.valid)
    hole = geometry.open_hole
    if hole is not None and hole.valid:
        candidates.append(hole.depth)
    return float(max(candidates))


__all__ = [
    "Casing",
    "OpenHole",
    "PipeSegment",
    "Geometry",
    "normalise_casing",
    "normalise_open_hole",
    "normalise_pipe",
    "normalise_geometry",
    "last_casing_bottom",
    "string_length",
    "pipe_depths",
    "total_depth",
]
