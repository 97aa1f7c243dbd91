from datetime import datetime, timedelta

import numpy as np
import pytest

from delaystats.core.config import ApplicationConfig
from delaystats.data.models import (
    Curve, CurveSet, CurveSetKey, DefaultCurveKey, DefaultCurves, DelaySample,
    DelayStatistics, EventPair, EventType, RouteData, RouteSection, RouteType,
    RouteVariantData, TimeSlot
)
from delaystats.data.sources.schedule import StaticSchedule

STOPS = tuple(f"S{i}" for i in range(10))

# Monday 05:00, local time: weekday-morning
MONDAY_MORNING = datetime(2024, 1, 8, 5, 0)


def make_curve(center: float = 0.0, spread: float = 60.0, sample_size: int = 30) -> Curve:
    return Curve([center - spread, center, center + spread], [0.0, 0.5, 1.0], sample_size=sample_size)


def journey_samples(count, initial_delays, end_delays, route_id="R1", variant_id="V1",
                    start_stop=2, end_stop=5, start_time=MONDAY_MORNING, trip_prefix="T"):
    """Departure at start_stop and arrival at end_stop for ``count`` journeys within the same time slot"""
    samples = []
    for i in range(count):
        day = start_time + timedelta(days=7 * (i // 100), seconds=30 * (i % 100))
        trip_id = f"{trip_prefix}{i}"
        samples.append(DelaySample(route_id, variant_id, start_stop, EventType.DEPARTURE,
                                   float(initial_delays[i]), day, trip_id, day.date()))
        samples.append(DelaySample(route_id, variant_id, end_stop, EventType.ARRIVAL,
                                   float(end_delays[i]), day + timedelta(minutes=5), trip_id, day.date()))
    return samples


@pytest.fixture
def config(tmp_path):
    return ApplicationConfig(max_workers=2, data_dir=tmp_path / "curve_data", timezone="Europe/Berlin")


@pytest.fixture
def schedule():
    return StaticSchedule({
        "R1": {
            "route_type": 3,
            "variants": {"V1": list(STOPS), "V2": list(reversed(STOPS))},
            "trips": {"T1": "V1", "T2": "V2"},
        },
        "R2": {
            "route_type": 0,
            "variants": {"V1": list(STOPS[:6])},
            "trips": {"T9": "V1"},
        },
    })


@pytest.fixture
def rng():
    return np.random.default_rng(20240108)


@pytest.fixture
def statistics_tree():
    curve_set = CurveSet({0.0: make_curve(10.0), 60.0: make_curve(70.0), 120.0: make_curve(130.0)})
    variant = RouteVariantData(
        route_variant_id="V1",
        stop_ids=STOPS,
        curve_sets={CurveSetKey(2, 5, TimeSlot.WEEKDAY_MORNING, EventType.ARRIVAL): curve_set},
        general_delay=EventPair(arrival={5: make_curve(40.0)}, departure={2: make_curve(-5.0, 30.0)}),
    )
    odd_variant = RouteVariantData(route_variant_id="V/2 (night)", stop_ids=("A", "B"))
    odd_variant.general_delay.arrival[1] = make_curve(0.5, 0.25, sample_size=21)

    return DelayStatistics(
        specific={
            "R1": RouteData("R1", variants={"V1": variant}),
            "R 2/x": RouteData("R 2/x", variants={"V/2 (night)": odd_variant}),
        },
        general=DefaultCurves({
            DefaultCurveKey(RouteType.BUS, RouteSection.MIDDLE, TimeSlot.WEEKDAY_MORNING, EventType.ARRIVAL):
                make_curve(90.0, 120.0, sample_size=400),
            DefaultCurveKey(RouteType.BUS, RouteSection.END, TimeSlot.SUNDAY_DAY, EventType.DEPARTURE):
                make_curve(30.0, sample_size=12),
        }),
    )
