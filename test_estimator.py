"""
Test suite for the kinematic estimator and the presentation layer.

Tests:
1. kinematics/estimator.py - turn math, rate derivation, dead reckoning
2. LNAV (route-constrained) prediction with lateral offset
3. kinematics/presentation.py - smoothing offsets and their decay

Usage:
    python -m pytest test_estimator.py
    python test_estimator.py
"""
from __future__ import annotations

import math
import sys
from pathlib import Path

import pytest

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent))

from kinematics.estimator import (
    LnavContext,
    compute_rates,
    normalize_heading,
    predict_position,
    predict_position_on_route,
    predict_state,
    predict_state_on_route,
    shortest_turn,
)
from kinematics.presentation import (
    SmoothingOffsets,
    apply_smoothing,
    begin_smoothing,
    quantize_altitude,
)
from trackcore.config import KTS_TO_MS
from trackcore.geodesy import haversine_km
from trackcore.models import AircraftSnapshot, KinematicState, PhysicsRates, ZERO_RATES

ONE_DEG_KM = 6371.0 * math.pi / 180.0


def make_state(lat=0.0, lon=0.0, heading=90.0, groundspeed=120.0, altitude=10000.0) -> KinematicState:
    return KinematicState(lat=lat, lon=lon, heading=heading, groundspeed=groundspeed, altitude=altitude)


def make_snapshot(**overrides) -> AircraftSnapshot:
    values = dict(entity_id=1, callsign="TST1", lat=0.0, lon=0.0, altitude=10000.0, groundspeed=120.0, heading=90.0)
    values.update(overrides)
    return AircraftSnapshot(**values)


# ============================================================================
# Turn math
# ============================================================================

def test_shortest_turn_crosses_north():
    assert shortest_turn(350, 10) == pytest.approx(20.0)
    assert shortest_turn(10, 350) == pytest.approx(-20.0)
    assert shortest_turn(90, 90) == 0.0


def test_shortest_turn_half_circle_is_positive():
    assert shortest_turn(0, 180) == 180.0
    assert shortest_turn(180, 0) == 180.0


def test_shortest_turn_stays_within_half_circle():
    for current in range(0, 360, 15):
        for target in range(0, 360, 15):
            turn = shortest_turn(current, target)
            assert -180.0 < turn <= 180.0
            assert (current + turn - target) % 360.0 == pytest.approx(0.0, abs=1e-9)


def test_normalize_heading():
    assert normalize_heading(370.0) == pytest.approx(10.0)
    assert normalize_heading(-10.0) == pytest.approx(350.0)
    assert 0.0 <= normalize_heading(-1e-15) < 360.0


# ============================================================================
# Rates
# ============================================================================

def test_compute_rates_from_two_snapshots():
    prev = make_snapshot(heading=350.0, altitude=10000.0, groundspeed=120.0)
    cur = make_snapshot(heading=10.0, altitude=10500.0, groundspeed=130.0)
    rates = compute_rates(prev, cur, 10.0)
    assert rates.turn_rate == pytest.approx(2.0)
    assert rates.climb_rate == pytest.approx(50.0)
    assert rates.accel_rate == pytest.approx(1.0)


def test_compute_rates_non_positive_dt_gives_zero():
    prev = make_snapshot(heading=0.0)
    cur = make_snapshot(heading=90.0)
    assert compute_rates(prev, cur, 0.0) == ZERO_RATES
    assert compute_rates(prev, cur, -15.0) == ZERO_RATES


# ============================================================================
# Dead reckoning
# ============================================================================

def test_predict_position_constant_heading():
    lat, lon = predict_position(0.0, 0.0, 90.0, 120.0, 3600.0)
    expected_km = 120.0 * KTS_TO_MS * 3600.0 / 1000.0
    assert lat == pytest.approx(0.0, abs=1e-9)
    assert lon == pytest.approx(expected_km / ONE_DEG_KM, rel=1e-9)


def test_predict_state_zero_elapsed_is_identity():
    last = make_state(lat=12.0, lon=34.0, heading=45.0)
    state = predict_state(last, PhysicsRates(1.0, 10.0, 1.0), 0.0)
    assert state == last


def test_predict_state_wraps_heading():
    state = predict_state(make_state(heading=350.0), PhysicsRates(turn_rate=2.0), 10.0)
    assert state.heading == pytest.approx(10.0)
    assert 0.0 <= state.heading < 360.0


def test_predict_state_speed_never_negative():
    last = make_state(groundspeed=100.0)
    state = predict_state(last, PhysicsRates(accel_rate=-10.0), 20.0)
    assert state.groundspeed == 0.0
    assert (state.lat, state.lon) == (last.lat, last.lon)


def test_predict_state_altitude_not_clamped():
    state = predict_state(make_state(altitude=500.0), PhysicsRates(climb_rate=-100.0), 10.0)
    assert state.altitude == pytest.approx(-500.0)


def test_predict_state_moves_along_heading():
    last = make_state(heading=0.0, groundspeed=300.0)
    state = predict_state(last, ZERO_RATES, 60.0)
    assert state.lat > last.lat
    assert state.lon == pytest.approx(last.lon, abs=1e-9)
    assert haversine_km(last.lat, last.lon, state.lat, state.lon) == pytest.approx(300 * KTS_TO_MS * 60 / 1000, rel=1e-6)


def test_predicted_distance_scales_with_elapsed_time():
    last = make_state(lat=20.0, lon=30.0, heading=63.0, groundspeed=250.0)
    short = predict_state(last, ZERO_RATES, 60.0)
    long = predict_state(last, ZERO_RATES, 180.0)
    d_short = haversine_km(last.lat, last.lon, short.lat, short.lon)
    d_long = haversine_km(last.lat, last.lon, long.lat, long.lon)
    assert d_long == pytest.approx(d_short * 180.0 / 60.0, rel=1e-6)


# ============================================================================
# LNAV
# ============================================================================

EQUATOR_ROUTE = [(0.0, 0.0), (0.0, 1.0), (0.0, 2.0)]


def test_engage_snaps_onto_route():
    lnav = LnavContext.engage(EQUATOR_ROUTE, (0.0, 0.5))
    assert lnav is not None
    assert lnav.start_distance_km == pytest.approx(0.5 * ONE_DEG_KM, rel=1e-6)
    assert lnav.offset_km == pytest.approx(0.0, abs=1e-9)


def test_engage_rejects_unusable_path():
    assert LnavContext.engage([(0.0, 0.0)], (0.0, 0.0)) is None
    assert LnavContext.engage([(1.0, 1.0), (1.0, 1.0)], (0.0, 0.0)) is None


def test_predict_on_route_advances_along_route():
    lnav = LnavContext.engage(EQUATOR_ROUTE, (0.0, 0.5))
    lat, lon, bearing = predict_position_on_route(lnav, 120.0, 600.0)
    travel_km = 120.0 * KTS_TO_MS * 600.0 / 1000.0
    assert lat == pytest.approx(0.0, abs=1e-6)
    assert lon == pytest.approx(0.5 + travel_km / ONE_DEG_KM, abs=1e-6)
    assert bearing == pytest.approx(90.0, abs=1e-3)


def test_predict_on_route_keeps_lateral_offset():
    # 0.05 deg south of an eastbound route is right of track
    lnav = LnavContext.engage(EQUATOR_ROUTE, (-0.05, 0.5))
    assert lnav.offset_km > 0
    lat, _, _ = predict_position_on_route(lnav, 120.0, 600.0)
    assert lat == pytest.approx(-0.05, abs=1e-3)


def test_small_offset_is_ignored():
    lnav = LnavContext(route=LnavContext.engage(EQUATOR_ROUTE, (0.0, 0.0)).route, start_distance_km=10.0, offset_km=0.05)
    lat, _, _ = predict_position_on_route(lnav, 120.0, 60.0)
    assert lat == pytest.approx(0.0, abs=1e-9)


def test_predict_on_route_stops_at_route_end():
    lnav = LnavContext.engage(EQUATOR_ROUTE, (0.0, 1.9))
    lat, lon, bearing = predict_position_on_route(lnav, 450.0, 3600.0)
    assert (lat, lon) == (0.0, 2.0)
    assert bearing == pytest.approx(90.0, abs=1e-3)


def test_advanced_moves_reference_distance():
    lnav = LnavContext.engage(EQUATOR_ROUTE, (0.0, 0.5))
    moved = lnav.advanced(10.0)
    assert moved.start_distance_km == pytest.approx(lnav.start_distance_km + 10.0)
    assert moved.offset_km == lnav.offset_km


def test_predict_state_on_route_follows_route_heading():
    snap = make_snapshot(lat=0.0, lon=0.5, heading=0.0, altitude=20000.0)
    lnav = LnavContext.engage(EQUATOR_ROUTE, snap.position)
    state = predict_state_on_route(snap, PhysicsRates(climb_rate=10.0), lnav, 60.0)
    assert state.heading == pytest.approx(90.0, abs=1e-3)
    assert state.lat == pytest.approx(0.0, abs=1e-6)
    assert state.altitude == pytest.approx(20600.0)


# ============================================================================
# Presentation smoothing
# ============================================================================

def test_decay_factor_eases_out():
    offsets = SmoothingOffsets(lat=1.0, lon=1.0, heading=10.0, started_at=100.0, duration=4.0)
    assert offsets.decay_factor(100.0) == 1.0
    assert offsets.decay_factor(102.0) == pytest.approx(0.125)
    assert offsets.decay_factor(104.0) == 0.0
    assert offsets.decay_factor(200.0) == 0.0
    assert offsets.is_active(103.9)
    assert not offsets.is_active(104.0)


def test_smoothing_reproduces_displayed_state_at_start():
    displayed = make_state(lat=1.0, lon=2.0, heading=350.0)
    corrected = make_state(lat=1.1, lon=2.2, heading=10.0)
    offsets = begin_smoothing(displayed, corrected, now=50.0, duration=3.5)
    assert offsets.heading == pytest.approx(-20.0)

    shown = apply_smoothing(corrected, offsets, 50.0)
    assert shown.lat == pytest.approx(1.0)
    assert shown.lon == pytest.approx(2.0)
    assert shown.heading == pytest.approx(350.0)


def test_smoothing_vanishes_after_window():
    displayed = make_state(lat=1.0)
    corrected = make_state(lat=1.1)
    offsets = begin_smoothing(displayed, corrected, now=0.0, duration=3.5)
    assert apply_smoothing(corrected, offsets, 3.5) is corrected
    assert apply_smoothing(corrected, None, 0.0) is corrected


def test_quantize_altitude():
    assert quantize_altitude(35012.0) == 35000
    assert quantize_altitude(35013.0) == 35025
    assert quantize_altitude(0.0) == 0


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
