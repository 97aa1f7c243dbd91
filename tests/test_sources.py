import dataclasses
import json
import time
from datetime import date, datetime

import pytest
import pytz

from delaystats.analysis import StatisticsBuilder
from delaystats.core.errors import RouteNotFound, StopNotOnRoute
from delaystats.data.models import DelaySample, EventType, RouteType
from delaystats.data.sources import (
    SqliteRealtimeSource, SqliteSampleSource, StaticSchedule, load_samples, samples_to_frame
)

from conftest import STOPS, journey_samples

BERLIN = pytz.timezone("Europe/Berlin")


class TestSqliteSampleSource:
    @pytest.fixture
    def source(self, tmp_path):
        source = SqliteSampleSource(tmp_path / "records.db")
        source.initialize()
        return source

    def test_insert_and_iterate(self, source):
        sample = DelaySample("R1", "V1", 3, EventType.DEPARTURE, -12.0, datetime(2024, 1, 8, 6, 15),
                             "T7", date(2024, 1, 8))
        assert source.insert([sample]) == 1
        assert list(source) == [sample]

    def test_frame_with_route_filter(self, source):
        source.insert(journey_samples(5, range(5), range(5)))
        source.insert(journey_samples(5, range(5), range(5), route_id="R2", trip_prefix="X"))
        frame = source.to_frame(["R2"])
        assert len(frame) == 10
        assert set(frame["route_id"]) == {"R2"}
        assert len(source.to_frame()) == 20

    def test_build_from_database(self, source, config, schedule, rng):
        samples = journey_samples(100, rng.normal(60, 30, 100), rng.normal(90, 20, 100))
        source.insert(samples)
        from_db = StatisticsBuilder(config, schedule).build_all(source)
        from_memory = StatisticsBuilder(config, schedule).build_all(samples)
        assert from_db == from_memory

    def test_samples_across_a_dst_change(self, source, config, schedule, rng):
        # Monday before and Monday after the switch to summer time on 2024-03-31
        local = journey_samples(200, rng.normal(60, 30, 200), rng.normal(90, 20, 200),
                                start_time=datetime(2024, 3, 25, 5, 0))
        source.insert([dataclasses.replace(s, timestamp=BERLIN.localize(s.timestamp)) for s in local])

        frame = load_samples(source, "Europe/Berlin")
        assert frame["timestamp"].tolist() == [s.timestamp for s in local]
        assert set(frame["time_slot"]) == {"weekday-morning"}

        from_db = StatisticsBuilder(config, schedule).build_all(source)
        assert from_db == StatisticsBuilder(config, schedule).build_all(local)

    def test_mixed_naive_and_aware_timestamps(self, source):
        saturday = DelaySample("R1", "V1", 0, EventType.ARRIVAL, 5.0, BERLIN.localize(datetime(2024, 3, 30, 6, 30)))
        monday = DelaySample("R1", "V1", 0, EventType.ARRIVAL, 5.0, datetime(2024, 4, 1, 6, 30))
        source.insert([saturday, monday])

        frame = load_samples(source, "Europe/Berlin")
        assert frame["timestamp"].tolist() == [datetime(2024, 3, 30, 6, 30), datetime(2024, 4, 1, 6, 30)]
        assert frame["time_slot"].tolist() == ["saturday-day", "weekday-morning-rush"]


class TestSqliteRealtimeSource:
    @pytest.fixture
    def source(self, tmp_path):
        source = SqliteRealtimeSource(tmp_path / "realtime.db")
        source.initialize()
        return source

    def test_latest_departure_before_stop(self, source):
        source.record("R1", "T1", 1, 30.0, datetime(2024, 1, 8, 5, 1))
        source.record("R1", "T1", 2, 45.0, datetime(2024, 1, 8, 5, 3))
        source.record("R1", "T1", 3, None, datetime(2024, 1, 8, 5, 5))
        source.record("R1", "T1", 4, 80.0, datetime(2024, 1, 8, 5, 30))  # after the query time
        source.record("R1", "T1", 6, 90.0, datetime(2024, 1, 8, 5, 4))   # not before the target stop

        assert source.recent_delay("R1", "T1", 5, datetime(2024, 1, 8, 5, 10)) == (2, 45.0)

    def test_other_days_and_trips_are_ignored(self, source):
        source.record("R1", "T1", 1, 30.0, datetime(2024, 1, 7, 5, 1))
        source.record("R1", "T2", 1, 30.0, datetime(2024, 1, 8, 5, 1))
        assert source.recent_delay("R1", "T1", 5, datetime(2024, 1, 8, 5, 10)) is None


class TestStaticSchedule:
    def test_from_json(self, schedule, tmp_path):
        path = tmp_path / "schedule.json"
        path.write_text(json.dumps(schedule.to_dict()))
        loaded = StaticSchedule.from_json(path)
        assert loaded.route_ids() == ["R1", "R2"]
        assert loaded.route_type("R2") == RouteType.TRAMWAY
        assert loaded.variant_stop_ids("R1", "V1") == STOPS

    def test_resolve(self, schedule):
        assert schedule.resolve("R1", "T1", "S3") == ("V1", 3)
        assert schedule.resolve("R1", "T2", "S3") == ("V2", 6)
        with pytest.raises(StopNotOnRoute):
            schedule.resolve("R1", "T1", "S3", after_index=3)
        with pytest.raises(RouteNotFound):
            schedule.resolve("R1", "nope", "S3")
        with pytest.raises(RouteNotFound):
            schedule.variant_stop_ids("R1", "V9")

    def test_loop_variants(self):
        schedule = StaticSchedule({"L": {"variants": {"V": ["A", "B", "A"]}, "trips": {"t": "V"}}})
        assert schedule.resolve("L", "t", "A") == ("V", 0)
        assert schedule.resolve("L", "t", "A", after_index=0) == ("V", 2)
        assert schedule.route_type("L") == RouteType.BUS


def test_samples_to_frame_converts_aware_timestamps():
    sample = DelaySample("R1", "V1", 0, EventType.ARRIVAL, 5.0,
                         pytz.utc.localize(datetime(2024, 7, 1, 10, 0)))
    frame = samples_to_frame([sample], "Europe/Berlin")
    assert frame.loc[0, "timestamp"] == datetime(2024, 7, 1, 12, 0)


@pytest.fixture
def host_timezone(monkeypatch):
    if not hasattr(time, "tzset"):
        pytest.skip("host time zone can only be switched on Unix")

    def use(name):
        monkeypatch.setenv("TZ", name)
        time.tzset()

    yield use
    monkeypatch.undo()
    time.tzset()


@pytest.mark.parametrize("host", ["UTC", "America/New_York", "Asia/Kolkata"])
def test_epoch_timestamps_do_not_depend_on_host_zone(host_timezone, host):
    host_timezone(host)
    epoch = BERLIN.localize(datetime(2024, 1, 8, 6, 30)).timestamp()
    record = {"route_id": "R1", "route_variant_id": "V1", "stop_index": 0,
              "event_type": "arrival", "delay": 12.0, "timestamp": epoch}

    sample = DelaySample.from_record(record)
    assert sample.timestamp.tzinfo is not None

    frame = load_samples([record], "Europe/Berlin")
    assert frame.loc[0, "timestamp"] == datetime(2024, 1, 8, 6, 30)
    assert frame.loc[0, "time_slot"] == "weekday-morning-rush"
