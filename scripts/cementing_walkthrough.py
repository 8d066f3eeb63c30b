"""Print a step-by-step liner cementing displacement for a two-pipe string."""

from __future__ import annotations

import logging
from pathlib import Path
import sys
from typing import Iterable

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from parcel_ledger import FluidType, Parcel
from pump_queue import CementingSimulator
from volume_utils import volume_table


def _format_parcels(parcels: Iterable[Parcel], *, limit: int | None = None) -> str:
    parts = [f"{p.volume:6.2f} bbl {p.fluid_type}" for p in parcels if p.volume > 1e-9]
    if not parts:
        return "(base fluid)"
    if limit is not None and limit > 0 and len(parts) > limit:
        remaining = len(parts) - limit
        parts = parts[:limit] + [f"… (+{remaining} more)"]
    return "; ".join(parts)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    geometry = {
        "casings": [
            {"od": 13.375, "id": 12.415, "top": 0.0, "bottom": 800.0},
            {"od": 9.625, "id": 8.681, "top": 0.0, "bottom": 2200.0},
        ],
        "openHole": {"size": 8.5, "depth": 2600.0},
        "drillPipes": [
            {"od": 5.0, "id": 4.276, "length": 2000.0},
            {"od": 7.0, "id": 6.184, "length": 550.0},
        ],
    }
    program = [
        (FluidType.SPACER, 20.0),
        (FluidType.CEMENT, 45.0),
        (FluidType.MUD_PUSH, 75.0),
    ]

    sim = CementingSimulator(geometry, config={"tick_rate": 1.0})
    print(volume_table(sim.geometry).to_string(index=False))
    print()
    for key, value in sim.get_volumes().items():
        print(f"{key:>28}: {value:9.2f} bbl")
    print()

    header = "| Stage | Pumped (bbl) | Pipe 1 (top→bottom) | Liner (top→bottom) | Annulus (first in→last in) |"
    print(header)
    print("| --- | ---: | --- | --- | --- |")

    for fluid, volume in program:
        sim.enqueue_pump(fluid, volume)
        sim.drain()
        ledger = sim.ledger
        pumped = sum(sim.pumped_volumes.values())
        print(
            f"| {fluid.value} {volume:.0f} bbl | {pumped:8.2f} | "
            f"{_format_parcels(ledger.pipes[0], limit=4)} | "
            f"{_format_parcels(ledger.pipes[1], limit=4)} | "
            f"{_format_parcels(ledger.annulus, limit=4)} |"
        )

    print()
    print(sim.ledger_frame().to_string(index=False))
    if sim.ledger.discarded > 0:
        print(f"\nDiscarded past full annulus: {sim.ledger.discarded:.2f} bbl")


if __name__ == "__main__":
    main()
