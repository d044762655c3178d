"""
Test suite for navigation data, route resolution and route deviation.

Tests:
1. routing/navdata.py - packed coordinate parsing, registry ingestion and lookups
2. routing/resolver.py - direct legs, airways, SID/STAR substitution, caching
3. routing/deviation.py - cross-track deviation from the resolved route

Usage:
    python -m pytest test_route_resolver.py
    python test_route_resolver.py
"""
from __future__ import annotations

import json
import math
import sys
from pathlib import Path

import pytest

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent))

from routing.deviation import is_off_course, route_deviation_nm
from routing.navdata import NavRegistry, load_nav_registry, parse_coordinate_string
from routing.resolver import (
    ROLE_AIRPORT,
    ROLE_AIRWAY,
    ROLE_ENROUTE,
    ROLE_SID,
    ROLE_STAR,
    RouteResolver,
    densify,
    resolve_route,
    tokenize_route,
)

ONE_DEG_NM = 6371.0 * math.pi / 180.0 * 0.539957

RAW_NAVDATA = {
    "airports": {"yaaa": [0.0, 0.0], "YBBB": [0.0, 10.0]},
    "waypoints": {
        "ALPHA": [0.0, 2.0],
        "BRAVO": [0.0, 4.0],
        "CHARL": [0.0, 6.0],
        "DELTA": [0.0, 8.0],
        "CS": [1.0, 1.0],
        "BROKEN": "not-a-coordinate",
    },
    "airways": {
        "J1": ["ALPHA", "BRAVO", "CHARL", "DELTA"],
        "J2": [{"lat": 0.0, "lon": 1.0, "id": "W1"}, {"lat": 0.0, "lon": 5.0, "id": "W2"}, {"lat": 0.0, "lon": 9.0, "id": "W3"}],
        "J3": ["CS VOR", "ALPHA"],
        "J4": ["NOWHERE"],
    },
    "sids": {"YAAA": {"DEP1": {"09": [[0.0, 0.5], "ALPHA"]}}},
    "stars": {"YBBB": {"ARR1": {"27": ["DELTA", "-000000.000+0093000.000"]}}},
}


def make_registry() -> NavRegistry:
    return NavRegistry.from_dict(RAW_NAVDATA)


def resolve(route: str, registry: NavRegistry | None = None, segment_points: int = 20):
    registry = registry or make_registry()
    return resolve_route(
        route, registry.airport("YAAA"), registry.airport("YBBB"), registry,
        departure_id="YAAA", arrival_id="YBBB", segment_points=segment_points,
    )


def roles(result):
    return [wp.role for wp in result.waypoints]


# ============================================================================
# Navigation registry
# ============================================================================

def test_parse_packed_dms_coordinate():
    lat, lon = parse_coordinate_string("-335604.200+1511333.300")
    assert lat == pytest.approx(-(33 + 56 / 60 + 4.2 / 3600))
    assert lon == pytest.approx(151 + 13 / 60 + 33.3 / 3600)


def test_parse_rejects_other_strings():
    assert parse_coordinate_string("BOREE") is None
    assert parse_coordinate_string("") is None
    assert parse_coordinate_string(None) is None


def test_registry_normalises_and_skips_malformed_entries():
    registry = make_registry()
    assert registry.airport("YAAA") == (0.0, 0.0)
    assert "BROKEN" not in registry.waypoints
    # airways with fewer than two usable fixes are dropped
    assert registry.airway("J4") is None
    assert [fix.ident for fix in registry.airway("J2")] == ["W1", "W2", "W3"]


def test_airway_name_with_navaid_suffix_resolves():
    fixes = make_registry().airway("J3")
    assert fixes[0].coordinate == (1.0, 1.0)
    assert fixes[0].ident == "CS VOR"


def test_lookup_point_falls_back_to_airports():
    registry = make_registry()
    assert registry.lookup_point("BRAVO") == (0.0, 4.0)
    assert registry.lookup_point("YBBB") == (0.0, 10.0)
    assert registry.lookup_point("ZZZZ") is None


def test_procedures_keep_packed_coordinates_as_generic_points():
    registry = make_registry()
    sid = registry.sid("YAAA", "DEP1", "09")
    assert [p.name for p in sid] == ["DEP1", "ALPHA"]
    star = registry.star("YBBB", "ARR1", "27")
    assert star[-1].name == "WPT"
    assert star[-1].lon == pytest.approx(9.5)
    assert registry.sid("YAAA", "DEP1", "27") == ()


def test_registry_is_read_only():
    registry = make_registry()
    with pytest.raises(TypeError):
        registry.waypoints["NEW"] = (1.0, 1.0)


def test_load_nav_registry(tmp_path):
    path = tmp_path / "navdata.json"
    path.write_text(json.dumps(RAW_NAVDATA), encoding="utf-8")
    registry = load_nav_registry(path)
    assert registry.airport("YBBB") == (0.0, 10.0)


# ============================================================================
# Route resolution
# ============================================================================

def test_tokenize_drops_dct():
    assert tokenize_route("alpha DCT  bravo dct") == ["ALPHA", "BRAVO"]
    assert tokenize_route("") == []


def test_empty_route_is_direct_between_airports():
    result = resolve("")
    assert roles(result) == [ROLE_AIRPORT, ROLE_AIRPORT]
    assert len(result.path) == 20
    assert result.path[0] == (0.0, 0.0)
    assert result.path[-1] == (0.0, 10.0)
    assert result.labels == ()


def test_direct_waypoints():
    result = resolve("DCT ALPHA DCT DELTA")
    assert roles(result) == [ROLE_AIRPORT, ROLE_ENROUTE, ROLE_ENROUTE, ROLE_AIRPORT]
    assert [wp.name for wp in result.waypoints] == ["YAAA", "ALPHA", "DELTA", "YBBB"]
    # three legs sharing endpoints
    assert len(result.path) == 3 * 20 - 2


def test_unknown_tokens_are_skipped():
    assert resolve("ALPHA ZZZZZ DELTA").waypoints == resolve("ALPHA DELTA").waypoints


def test_airway_expands_intermediate_fixes():
    result = resolve("ALPHA J1 DELTA")
    assert roles(result) == [
        ROLE_AIRPORT, ROLE_ENROUTE, ROLE_AIRWAY, ROLE_AIRWAY, ROLE_ENROUTE, ROLE_AIRPORT,
    ]
    assert [wp.name for wp in result.waypoints if wp.role == ROLE_AIRWAY] == ["BRAVO", "CHARL"]
    assert len(result.labels) == 3
    assert {label.text for label in result.labels} == {"J1"}
    first = result.labels[0]
    assert first.lon == pytest.approx(3.0, abs=1e-9)
    assert first.bearing == pytest.approx(90.0, abs=1e-6)


def test_airway_flown_backwards():
    registry = make_registry()
    result = resolve_route(
        "DELTA J1 ALPHA", registry.airport("YBBB"), registry.airport("YAAA"), registry,
        departure_id="YBBB", arrival_id="YAAA",
    )
    assert [wp.name for wp in result.waypoints if wp.role == ROLE_AIRWAY] == ["CHARL", "BRAVO"]
    assert all(label.bearing == pytest.approx(270.0, abs=1e-6) for label in result.labels)


def test_airway_single_hop_only_labels_the_leg():
    result = resolve("BRAVO J2 CHARL")
    assert ROLE_AIRWAY not in roles(result)
    assert len(result.labels) == 1
    assert result.labels[0].text == "J2"
    assert result.labels[0].lon == pytest.approx(5.0, abs=1e-9)


def test_airway_exit_defaults_to_arrival():
    result = resolve("ALPHA J1")
    # exit anchor is YBBB (0, 10): nearest J1 fix is DELTA
    assert [wp.name for wp in result.waypoints if wp.role == ROLE_AIRWAY] == ["BRAVO", "CHARL"]
    assert result.path[-1] == (0.0, 10.0)


def test_sid_replaces_departure_and_star_precedes_arrival():
    result = resolve("DEP1/09 ALPHA DELTA ARR1/27")
    waypoints = result.waypoints
    assert waypoints[0].role == ROLE_SID
    assert waypoints[0].name == "DEP1"
    assert ROLE_AIRPORT not in [wp.role for wp in waypoints[:-1]]
    assert [wp.role for wp in waypoints if wp.role == ROLE_STAR] == [ROLE_STAR, ROLE_STAR]
    assert waypoints[-1].role == ROLE_AIRPORT
    assert result.path[0] == (0.0, 0.5)
    assert result.path[-1] == (0.0, 10.0)


def test_unknown_sid_keeps_departure_airport():
    result = resolve("NOPE1/09 ALPHA")
    assert result.waypoints[0].role == ROLE_AIRPORT
    assert result.path[0] == (0.0, 0.0)
    assert [wp.name for wp in result.waypoints if wp.role == ROLE_ENROUTE] == ["ALPHA"]


def test_missing_airports_leave_only_enroute_points():
    registry = make_registry()
    result = resolve_route("ALPHA", None, None, registry)
    # a single key point cannot be densified
    assert result.path == ((0.0, 2.0),)
    assert roles(result) == [ROLE_ENROUTE]


def test_densify_skips_coincident_points():
    path = densify([(0.0, 0.0), (0.0, 0.0), (0.0, 1.0)], 5)
    assert len(path) == 5
    assert densify([(0.0, 0.0)], 5) == [(0.0, 0.0)]


def test_resolver_caches_by_route_and_airports():
    resolver = RouteResolver(make_registry())
    first = resolver.resolve("ALPHA DELTA", "yaaa", "YBBB")
    assert resolver.resolve("ALPHA DELTA", "YAAA", "YBBB") is first
    assert resolver.resolve("ALPHA BRAVO", "YAAA", "YBBB") is not first
    resolver.clear()
    assert resolver.resolve("ALPHA DELTA", "YAAA", "YBBB") is not first


def test_resolver_cache_is_bounded():
    resolver = RouteResolver(make_registry(), max_cache=2)
    for route in ("ALPHA", "BRAVO", "CHARL"):
        resolver.resolve(route, "YAAA", "YBBB")
    assert len(resolver._cache) == 2


# ============================================================================
# Deviation
# ============================================================================

def test_deviation_zero_on_route():
    result = resolve("ALPHA DELTA")
    lat, lon = result.path[7]
    assert route_deviation_nm(lat, lon, result.path) == pytest.approx(0.0, abs=1e-6)


def test_deviation_one_degree_off():
    result = resolve("")
    deviation = route_deviation_nm(1.0, 5.0, result.path)
    assert deviation == pytest.approx(ONE_DEG_NM, rel=1e-3)
    assert is_off_course(deviation)
    assert not is_off_course(4.9)


def test_deviation_without_path():
    assert route_deviation_nm(1.0, 1.0, None) == 0.0
    assert route_deviation_nm(1.0, 1.0, [(0.0, 0.0)]) == 0.0


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
