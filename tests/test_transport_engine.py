import math
from pathlib import Path
import sys

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from parcel_ledger import Ledger, Parcel, empty_ledger, ledger_total, sequence_volume
from transport_engine import SimulationConfig, advance, annulus_overflow, normalise_config
from volume_utils import K, pipe_capacities
from well_geometry import Casing, Geometry, PipeSegment

TOL = 1e-9


def _pipe_with_capacity(bbl: float, id_in: float = 4.0) -> PipeSegment:
    return PipeSegment(od=id_in + 1.0, id=id_in, length=bbl / (id_in ** 2 * K))


def _casing_with_capacity(bbl: float, id_in: float = 8.0) -> Casing:
    return Casing(od=id_in + 1.0, id=id_in, top=0.0, bottom=bbl / (id_in ** 2 * K))


def _pump(ledger, geometry, fluid, total, step=0.5, config=None):
    remaining = total
    while remaining > TOL:
        inc = min(remaining, step)
        ledger = advance(ledger, geometry, fluid, inc, config=config)
        remaining -= inc
    return ledger


def test_normalise_config_defaults_and_mapping():
    assert normalise_config(None) == SimulationConfig()
    cfg = normalise_config({"tick_rate": "2", "tolerance": -1, "cap_annulus": False})
    assert cfg.tick_rate == 2.0
    assert cfg.tolerance == SimulationConfig().tolerance
    assert cfg.cap_annulus is False
    assert normalise_config({"tick_rate": float("nan")}).tick_rate == SimulationConfig().tick_rate


@pytest.mark.parametrize("config", [[("tick_rate", 1.0)], 2.5, "fast"])
def test_normalise_config_rejects_unknown_types(config):
    with pytest.raises(TypeError):
        normalise_config(config)


def test_missing_geometry_returns_identity_ledger():
    ledger = Ledger(pipes=((Parcel("Cement", 1.0),),))
    result = advance(ledger, None, "Cement", 1.0)
    assert result == empty_ledger(0)
    assert result.annulus == ()


@pytest.mark.parametrize("step", [0.0, -1.0, float("nan"), float("inf"), "abc"])
def test_invalid_step_leaves_ledger_unchanged(step):
    geometry = Geometry(pipes=(_pipe_with_capacity(10.0),))
    ledger = Ledger(pipes=((Parcel("Cement", 1.0),),))
    assert advance(ledger, geometry, "Cement", step) is ledger


def test_blank_fluid_leaves_ledger_unchanged():
    geometry = Geometry(pipes=(_pipe_with_capacity(10.0),))
    ledger = empty_ledger(1)
    assert advance(ledger, geometry, "  ", 1.0) is ledger


def test_injection_merges_at_top_of_first_pipe():
    geometry = Geometry(pipes=(_pipe_with_capacity(10.0),))
    ledger = advance(None, geometry, "Cement", 1.0)
    ledger = advance(ledger, geometry, "Cement", 2.0)
    assert ledger.pipes == ((Parcel("Cement", 3.0),),)

    ledger = advance(ledger, geometry, "Spacer", 1.0)
    assert ledger.pipes == ((Parcel("Spacer", 1.0), Parcel("Cement", 3.0)),)


def test_mismatched_ledger_is_reset(caplog):
    caplog.set_level("DEBUG", logger="transport_engine")
    geometry = Geometry(pipes=(_pipe_with_capacity(10.0), _pipe_with_capacity(10.0)))
    stale = Ledger(pipes=((Parcel("Mud Push", 4.0),),))

    ledger = advance(stale, geometry, "Cement", 1.0)

    assert ledger.pipes == ((Parcel("Cement", 1.0),), ())
    assert "reset" in caplog.text


def test_input_ledger_is_not_mutated():
    geometry = Geometry(pipes=(_pipe_with_capacity(2.0),))
    before = Ledger(pipes=((Parcel("Cement", 2.0),),))
    snapshot = Ledger(pipes=before.pipes, annulus=before.annulus, discarded=before.discarded)

    after = advance(before, geometry, "Spacer", 1.0)

    assert before == snapshot
    assert [p.fluid_type for p in after.pipes[0]] == ["Spacer", "Cement"]
    assert math.isclose(after.pipes[0][1].volume, 1.0, abs_tol=1e-9)
    assert after.annulus[0].fluid_type == "Cement"
    assert math.isclose(after.annulus[0].volume, 1.0, abs_tol=1e-9)


def test_scenario_single_pipe_overflows_into_annulus():
    geometry = Geometry(pipes=(_pipe_with_capacity(20.0),))

    ledger = _pump(empty_ledger(1), geometry, "Cement", 25.0)

    assert len(ledger.pipes[0]) == 1
    assert ledger.pipes[0][0].fluid_type == "Cement"
    assert math.isclose(ledger.pipes[0][0].volume, 20.0, abs_tol=1e-6)
    assert len(ledger.annulus) == 1
    assert ledger.annulus[0].fluid_type == "Cement"
    assert math.isclose(ledger.annulus[0].volume, 5.0, abs_tol=1e-6)
    assert ledger.discarded == 0.0


def test_scenario_two_pipes_cement_then_spacer():
    geometry = Geometry(pipes=(_pipe_with_capacity(10.0), _pipe_with_capacity(10.0)))

    ledger = _pump(empty_ledger(2), geometry, "Cement", 8.0)
    ledger = _pump(ledger, geometry, "Spacer", 8.0)

    top, bottom = ledger.pipes
    assert [p.fluid_type for p in top] == ["Spacer", "Cement"]
    assert math.isclose(top[0].volume, 8.0, abs_tol=1e-6)
    assert math.isclose(top[1].volume, 2.0, abs_tol=1e-6)
    assert [p.fluid_type for p in bottom] == ["Cement"]
    # 16 bbl pumped: 10 bbl fill the top pipe, the 6 bbl of cement pushed out sit below
    assert math.isclose(bottom[0].volume, 6.0, abs_tol=1e-6)
    assert math.isclose(ledger_total(ledger), 16.0, abs_tol=1e-6)
    assert ledger.annulus == ()


def test_scenario_no_pipes_annulus_is_capped():
    geometry = Geometry(casings=(_casing_with_capacity(15.0),))

    ledger = _pump(empty_ledger(0), geometry, "Mud Push", 20.0)

    assert len(ledger.annulus) == 1
    assert ledger.annulus[0].fluid_type == "Mud Push"
    assert math.isclose(ledger.annulus[0].volume, 15.0, abs_tol=1e-6)
    assert math.isclose(ledger.discarded, 5.0, abs_tol=1e-6)


def test_no_pipes_uncapped_annulus_keeps_everything():
    geometry = Geometry(casings=(_casing_with_capacity(15.0),))
    config = SimulationConfig(cap_annulus=False)

    ledger = _pump(empty_ledger(0), geometry, "Mud Push", 20.0, config=config)

    assert math.isclose(sequence_volume(ledger.annulus), 20.0, abs_tol=1e-6)
    assert ledger.discarded == 0.0
    assert math.isclose(annulus_overflow(ledger, geometry), 5.0, abs_tol=1e-6)


def test_capped_annulus_spills_last_arrival_first():
    geometry = Geometry(casings=(_casing_with_capacity(10.0),))
    ledger = advance(empty_ledger(0), geometry, "Spacer", 8.0)
    ledger = advance(ledger, geometry, "Cement", 4.0)

    assert ledger.annulus[0] == Parcel("Spacer", 8.0)
    assert ledger.annulus[1].fluid_type == "Cement"
    assert math.isclose(ledger.annulus[1].volume, 2.0, abs_tol=1e-6)
    assert math.isclose(ledger.discarded, 2.0, abs_tol=1e-6)


def test_overflow_keeps_departure_order_across_boundaries():
    geometry = Geometry(pipes=(_pipe_with_capacity(10.0), _pipe_with_capacity(10.0)))
    full = Ledger(
        pipes=((Parcel("A", 3.0), Parcel("B", 3.0), Parcel("C", 4.0)), ()),
    )

    ledger = advance(full, geometry, "D", 6.0)

    top, bottom = ledger.pipes
    assert [p.fluid_type for p in top] == ["D", "A", "B"]
    assert math.isclose(top[2].volume, 1.0, abs_tol=1e-9)
    # C left first so it sits deepest in the next pipe
    assert [p.fluid_type for p in bottom] == ["B", "C"]
    assert math.isclose(bottom[0].volume, 2.0, abs_tol=1e-9)
    assert math.isclose(bottom[1].volume, 4.0, abs_tol=1e-9)


def test_last_pipe_delivers_to_annulus_in_departure_order():
    geometry = Geometry(pipes=(_pipe_with_capacity(5.0),))
    full = Ledger(pipes=((Parcel("A", 2.0), Parcel("B", 3.0)),))

    ledger = advance(full, geometry, "C", 5.0)

    assert ledger.pipes[0] == (Parcel("C", 5.0),)
    assert [p.fluid_type for p in ledger.annulus] == ["B", "A"]


def test_invalid_pipe_passes_fluid_straight_through():
    geometry = Geometry(
        pipes=(
            _pipe_with_capacity(5.0),
            PipeSegment(od=5.0, id=6.0, length=100.0),
            _pipe_with_capacity(5.0),
        )
    )

    ledger = _pump(empty_ledger(3), geometry, "Cement", 8.0)

    assert ledger.pipes[1] == ()
    assert math.isclose(sequence_volume(ledger.pipes[2]), 3.0, abs_tol=1e-6)


def test_capacity_invariant_and_conservation_over_many_steps():
    geometry = Geometry(
        pipes=(_pipe_with_capacity(7.0), _pipe_with_capacity(3.5, id_in=3.0), _pipe_with_capacity(12.0))
    )
    capacities = pipe_capacities(geometry)
    program = [("Spacer", 4.0), ("Cement", 9.3), ("Mud Push", 6.1), ("Cement", 2.2)]
    steps = [0.3, 0.77, 1.9, 0.05]

    ledger = empty_ledger(3)
    injected = 0.0
    count = 0
    for fluid, total in program:
        remaining = total
        while remaining > TOL:
            inc = min(remaining, steps[count % len(steps)])
            count += 1
            ledger = advance(ledger, geometry, fluid, inc)
            remaining -= inc
            injected += inc
            for seq, cap in zip(ledger.pipes, capacities):
                assert sequence_volume(seq) <= cap + TOL
                for upper, lower in zip(seq, seq[1:]):
                    assert upper.fluid_type != lower.fluid_type
            assert math.isclose(ledger_total(ledger), injected, abs_tol=1e-6)

    assert ledger.discarded == 0.0
    assert math.isclose(injected, 21.6, abs_tol=1e-9)
