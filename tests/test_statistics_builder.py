import logging
from datetime import timedelta

import numpy as np
import pandas as pd
import pytest

from delaystats.analysis import StatisticsBuilder
from delaystats.data.models import (
    CurveSetKey, DefaultCurveKey, DelaySample, DelayStatistics, EventType,
    RouteSection, RouteType, TimeSlot
)
from delaystats.data.sources import load_samples

from conftest import MONDAY_MORNING, STOPS, journey_samples, make_curve

KEY = CurveSetKey(2, 5, TimeSlot.WEEKDAY_MORNING, EventType.ARRIVAL)


@pytest.fixture
def builder(config, schedule):
    return StatisticsBuilder(config, schedule)


@pytest.fixture
def samples(rng):
    initial = rng.normal(100, 30, 300)
    end = rng.normal(120, 15, 300)
    return journey_samples(300, initial, end)


class TestSpecificPass:
    def test_builds_curve_sets_and_stop_curves(self, builder, samples):
        statistics = builder.build_specific(samples)
        variant = statistics.specific["R1"].variants["V1"]

        assert variant.stop_ids == STOPS
        assert list(variant.curve_sets) == [KEY]
        assert len(variant.curve_sets[KEY]) > 1
        assert set(variant.general_delay.departure) == {2}
        assert set(variant.general_delay.arrival) == {5}
        assert variant.general_delay.arrival[5].sample_size == 300
        assert len(statistics.general) == 0

    def test_warns_near_memory_limit(self, config, schedule, samples, caplog):
        config.max_memory_mb = 1
        with caplog.at_level(logging.WARNING, logger="delaystats.analysis.specific_curves"):
            StatisticsBuilder(config, schedule).build_specific(samples)
        assert "close to the limit of 1 MB" in caplog.text

    def test_sparse_partitions_are_omitted(self, builder, samples):
        sparse = journey_samples(3, [10, 20, 30], [40, 50, 60], route_id="R2", trip_prefix="X")
        statistics = builder.build_specific(samples + sparse)
        assert "R2" not in statistics.specific
        assert "R1" in statistics.specific

    def test_route_selection(self, builder, samples, rng):
        other = journey_samples(100, rng.normal(0, 30, 100), rng.normal(10, 30, 100),
                                route_id="R2", trip_prefix="O")
        statistics = builder.build_specific(samples + other, route_ids=["R2"])
        assert list(statistics.specific) == ["R2"]

    def test_out_of_domain_delays_are_rejected(self, builder, samples):
        outliers = [DelaySample("R1", "V1", 7, EventType.ARRIVAL, 50000.0, MONDAY_MORNING + timedelta(seconds=i),
                                f"T{i}") for i in range(30)]
        statistics = builder.build_specific(samples + outliers)
        assert 7 not in statistics.specific["R1"].variants["V1"].general_delay.arrival

    def test_only_journeys_in_stop_order_are_paired(self, builder, rng):
        # departure at stop 5 and arrival at stop 2 of the same journey
        samples = journey_samples(100, rng.normal(0, 30, 100), rng.normal(0, 30, 100),
                                  start_stop=5, end_stop=2)
        statistics = builder.build_specific(samples)
        assert statistics.specific["R1"].variants["V1"].curve_sets == {}

    def test_time_slot_comes_from_start_timestamp(self, builder, rng):
        saturday = MONDAY_MORNING + timedelta(days=5, hours=7)
        samples = journey_samples(100, rng.normal(0, 30, 100), rng.normal(0, 30, 100), start_time=saturday)
        statistics = builder.build_specific(samples)
        keys = list(statistics.specific["R1"].variants["V1"].curve_sets)
        assert keys == [CurveSetKey(2, 5, TimeSlot.SATURDAY_DAY, EventType.ARRIVAL)]

    def test_accepts_data_frames(self, builder, samples):
        frame = pd.DataFrame([{
            "route_id": s.route_id, "route_variant_id": s.route_variant_id, "stop_index": s.stop_index,
            "event_type": s.event_type.value, "delay": s.delay, "timestamp": s.timestamp,
            "trip_id": s.trip_id, "trip_start_date": s.trip_start_date,
        } for s in samples])
        from_frame = builder.build_specific(frame)
        assert from_frame == builder.build_specific(samples)

    def test_rebuild_replaces_routes(self, builder, samples, statistics_tree):
        existing = statistics_tree
        assert "R 2/x" in existing.specific
        result = builder.build_specific(samples, route_ids=["R1", "R 2/x"], into=existing)
        assert result is existing
        # rebuilt without data
        assert "R 2/x" not in result.specific
        assert list(result.specific["R1"].variants["V1"].curve_sets) == [KEY]
        assert len(result.general) == 2


class TestDefaultPass:
    def test_pools_by_category(self, builder, samples):
        statistics = builder.build_default(samples)
        assert statistics.specific == {}
        keys = set(statistics.general.all_default_curves)
        assert keys == {
            DefaultCurveKey(RouteType.BUS, RouteSection.BEGINNING, TimeSlot.WEEKDAY_MORNING, EventType.DEPARTURE),
            DefaultCurveKey(RouteType.BUS, RouteSection.MIDDLE, TimeSlot.WEEKDAY_MORNING, EventType.ARRIVAL),
        }

    def test_floor_for_default_curves(self, builder):
        samples = journey_samples(9, np.arange(9.0), np.arange(9.0))
        assert len(builder.build_default(samples).general) == 0
        samples = journey_samples(10, np.arange(10.0), np.arange(10.0))
        assert len(builder.build_default(samples).general) == 2

    def test_unknown_variants_are_skipped(self, builder, samples):
        unknown = journey_samples(50, np.arange(50.0), np.arange(50.0), route_id="R404", trip_prefix="U")
        statistics = builder.build_default(samples + unknown)
        assert all(curve.sample_size == 300 for curve in statistics.general.all_default_curves.values())

    def test_needs_schedule(self, config, samples):
        with pytest.raises(ValueError):
            StatisticsBuilder(config).build_default(samples)


class TestBuildAll:
    def test_union_of_both_passes(self, builder, samples):
        statistics = builder.build_all(samples)
        assert list(statistics.specific) == ["R1"]
        assert len(statistics.general) == 2

    def test_merge_replaces_by_key(self, builder, samples):
        key = DefaultCurveKey(RouteType.BUS, RouteSection.MIDDLE, TimeSlot.WEEKDAY_MORNING, EventType.ARRIVAL)
        kept = DefaultCurveKey(RouteType.RAIL, RouteSection.END, TimeSlot.SUNDAY_DAY, EventType.ARRIVAL)
        existing = DelayStatistics()
        existing.general.all_default_curves[key] = make_curve(sample_size=1)
        existing.general.all_default_curves[kept] = make_curve(sample_size=2)

        builder.build_all(samples, into=existing)
        assert existing.general.get(key).sample_size == 300
        assert existing.general.get(kept).sample_size == 2


def test_load_samples_normalizes(config):
    frame = pd.DataFrame({
        "route_id": [1, 1],
        "route_variant_id": [7, 7],
        "stop_index": [0, 1],
        "event_type": ["Departure", EventType.ARRIVAL],
        "delay": [30, 40000],
        "timestamp": pd.to_datetime(["2024-01-08 04:30:00+00:00", "2024-01-08 04:35:00+00:00"]),
    })
    df = load_samples(frame, config.timezone, config.max_abs_delay_seconds)
    assert len(df) == 1
    row = df.iloc[0]
    assert row["route_id"] == "1"
    assert row["route_variant_id"] == "7"
    assert row["event_type"] == "departure"
    assert row["timestamp"] == pd.Timestamp("2024-01-08 05:30:00")
    assert row["trip_start_date"] == "2024-01-08"
    assert row["time_slot"] == "weekday-morning"
