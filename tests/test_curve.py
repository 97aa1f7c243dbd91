import numpy as np
import pytest

from delaystats.data.models import Curve, CurveSet

from conftest import make_curve


class TestCurve:
    def test_valid_curve(self):
        curve = Curve([-30, 0, 45, 120], [0.0, 0.2, 0.7, 1.0], sample_size=25)
        assert curve.min_delay == -30
        assert curve.max_delay == 120
        assert len(curve) == 4
        assert curve.sample_size == 25
        assert curve.points()[1] == (0.0, 0.2)

    def test_arrays_are_read_only(self):
        curve = make_curve()
        with pytest.raises(ValueError):
            curve.delays[0] = 5.0

    @pytest.mark.parametrize("delays, probabilities", [
        ([0, 0, 10], [0.0, 0.5, 1.0]),         # delays not strictly increasing
        ([0, 10, 5], [0.0, 0.5, 1.0]),
        ([0, 10, 20], [0.0, 0.6, 0.5]),        # probability decreasing
        ([0, 10, 20], [0.0, 0.5, 0.9]),        # does not end at 1
        ([0, 10, 20], [-0.1, 0.5, 1.0]),       # negative start
        ([0], [1.0]),                          # single point
        ([0, float("nan")], [0.0, 1.0]),
        ([0, 10, 20], [0.0, 1.0]),             # length mismatch
    ])
    def test_invalid_control_points(self, delays, probabilities):
        with pytest.raises(ValueError):
            Curve(delays, probabilities)

    def test_last_probability_snapped_to_one(self):
        curve = Curve([0, 10], [0.0, 1.0 - 1e-12])
        assert curve.probabilities[-1] == 1.0

    def test_y_at_x(self):
        curve = make_curve(0.0, 60.0)
        assert curve.y_at_x(-100) == 0.0
        assert curve.y_at_x(-60) == 0.0
        assert curve.y_at_x(0) == 0.5
        assert curve.y_at_x(30) == pytest.approx(0.75)
        assert curve.y_at_x(1000) == 1.0

    def test_x_at_y(self):
        curve = make_curve(0.0, 60.0)
        assert curve.x_at_y(0.5) == 0.0
        assert curve.x_at_y(0.75) == pytest.approx(30.0)
        assert curve.x_at_y(0.0) == -60.0
        assert curve.x_at_y(1.0) == 60.0
        assert curve.median() == 0.0

    def test_x_at_y_on_flat_segment_takes_smallest_delay(self):
        curve = Curve([0, 10, 20, 30], [0.0, 0.5, 0.5, 1.0])
        assert curve.x_at_y(0.5) == 10.0

    def test_average(self):
        a = Curve([0, 100], [0.0, 1.0], sample_size=10)
        b = Curve([50, 150], [0.0, 1.0], sample_size=30)
        average = Curve.average([a, b])
        np.testing.assert_allclose(average.delays, [0, 50, 100, 150])
        np.testing.assert_allclose(average.probabilities, [0.0, 0.25, 0.75, 1.0])
        assert average.sample_size == 40

    def test_average_of_nothing(self):
        with pytest.raises(ValueError):
            Curve.average([])

    def test_equality(self):
        assert make_curve(5.0) == make_curve(5.0)
        assert make_curve(5.0) != make_curve(6.0)
        assert make_curve(5.0, sample_size=1) != make_curve(5.0, sample_size=2)


class TestCurveSet:
    @pytest.fixture
    def curve_set(self):
        return CurveSet({120: make_curve(130.0), 0: make_curve(10.0), 60: make_curve(70.0)})

    def test_keys_are_ordered(self, curve_set):
        assert curve_set.keys() == [0.0, 60.0, 120.0]
        assert [key for key, _ in curve_set.items()] == [0.0, 60.0, 120.0]

    @pytest.mark.parametrize("initial_delay, expected", [
        (90, 60.0),     # tie between 60 and 120
        (30, 0.0),      # tie between 0 and 60
        (100, 120.0),
        (61, 60.0),
        (60, 60.0),
        (-500, 0.0),
        (5000, 120.0),
    ])
    def test_nearest(self, curve_set, initial_delay, expected):
        key, curve = curve_set.nearest(initial_delay)
        assert key == expected
        assert curve is curve_set.curves[expected]

    def test_nearest_in_empty_set(self):
        with pytest.raises(KeyError):
            CurveSet().nearest(0)

    def test_nearest_rejects_nan(self, curve_set):
        with pytest.raises(ValueError):
            curve_set.nearest(float("nan"))

    def test_replacing_a_bucket(self, curve_set):
        curve_set.add_curve(60.0, make_curve(65.0))
        assert len(curve_set) == 3
        assert curve_set.curves[60.0].median() == 65.0

    def test_sample_size_is_average_per_curve(self):
        curve_set = CurveSet({0: make_curve(sample_size=10), 10: make_curve(sample_size=31)})
        assert curve_set.sample_size == 20
