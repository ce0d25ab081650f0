"""Rejection of unusable GPS fixes."""

from __future__ import annotations

import math

from cycle_tracker.models import LocationSample
from cycle_tracker.tracking import SampleFilter

from conftest import START


def _sample(lat: float = 51.5, lon: float = -0.12, **kwargs) -> LocationSample:
    return LocationSample(latitude=lat, longitude=lon, timestamp=START, **kwargs)


def test_accepts_fix_without_accuracy() -> None:
    assert SampleFilter().accept(_sample(accuracy_m=None))


def test_accuracy_boundary_is_inclusive() -> None:
    flt = SampleFilter()
    assert flt.accept(_sample(accuracy_m=50.0))
    assert not flt.accept(_sample(accuracy_m=50.1))
    assert not flt.accept(_sample(accuracy_m=80.0))


def test_speed_is_never_a_rejection_reason() -> None:
    assert SampleFilter().accept(_sample(accuracy_m=5.0, speed_mps=120.0))


def test_rejects_out_of_range_and_non_finite_coordinates() -> None:
    flt = SampleFilter()
    assert not flt.accept(_sample(lat=91.0))
    assert not flt.accept(_sample(lon=-180.5))
    assert not flt.accept(_sample(lat=math.nan))
    assert not flt.accept(_sample(lon=math.inf))


def test_custom_accuracy_limit() -> None:
    assert not SampleFilter(max_accuracy_m=10.0).accept(_sample(accuracy_m=12.0))
