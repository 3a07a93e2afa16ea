"""
Tests for coordclean/formulas: distance math and decimal statistics.
"""

import numpy as np
import pytest

from coordclean.formulas import (
    METRES_PER_DEGREE,
    acf_peaks,
    autocorrelation,
    binned_counts,
    chord_to_metres,
    decimal_fraction,
    decimal_histogram,
    haversine_m,
    metres_to_degrees,
    to_unit_vectors,
    unit_vector_to_lonlat,
)


class TestSpatial:

    def test_one_degree_of_latitude(self):
        assert haversine_m(0.0, 0.0, 0.0, 1.0) == pytest.approx(METRES_PER_DEGREE)

    def test_known_distance(self):
        # Copenhagen to Paris, ~1028 km.
        d = haversine_m(12.57, 55.68, 2.35, 48.86)
        assert d == pytest.approx(1_028_000, rel=0.01)

    def test_broadcasts(self):
        d = haversine_m(0.0, 0.0, np.array([0.0, 1.0, 2.0]), np.zeros(3))
        assert d.shape == (3,)
        assert d[0] == 0.0
        assert d[2] == pytest.approx(2 * d[1])

    def test_metres_to_degrees(self):
        assert metres_to_degrees(METRES_PER_DEGREE) == pytest.approx(1.0)

    def test_chord_matches_haversine(self):
        xyz = to_unit_vectors([10.0, -60.0], [45.0, -10.0])
        chord = np.linalg.norm(xyz[0] - xyz[1])
        assert chord_to_metres(chord) == pytest.approx(
            haversine_m(10.0, 45.0, -60.0, -10.0), rel=1e-9)

    def test_unit_vector_round_trip(self):
        lon, lat = unit_vector_to_lonlat(to_unit_vectors([33.3], [-12.5])[0])
        assert (lon, lat) == pytest.approx((33.3, -12.5))


class TestDecimals:

    def test_fraction_float_noise(self):
        assert decimal_fraction(np.array([12.999999999999]))[0] == 0.0
        assert decimal_fraction(np.array([-12.25]))[0] == pytest.approx(0.25)

    def test_histogram(self):
        hist = decimal_histogram(np.array([0.05, 0.95]), np.array([0.05, 0.55]))
        assert hist.shape == (10, 10)
        assert hist[0, 0] == 1
        assert hist[9, 5] == 1

    def test_binned_counts_aligned(self):
        counts = binned_counts(np.array([10.0, 10.5, 10.5, 11.0]), 0.01)
        assert len(counts) == 101
        assert counts[0] == 1
        assert counts[50] == 2
        assert counts[100] == 1

    def test_autocorrelation_periodic(self):
        series = np.tile([5.0, 0.0, 0.0, 0.0], 50)
        acf_values = autocorrelation(series, 20)
        assert len(acf_values) == 20
        # Index i holds lag i + 1.
        assert acf_values[3] > 0.9
        assert acf_values[0] < 0

    def test_autocorrelation_constant(self):
        assert np.isnan(autocorrelation(np.ones(10), 5)).all()

    def test_autocorrelation_too_short(self):
        assert len(autocorrelation(np.array([1.0]), 5)) == 0

    def test_acf_peaks(self):
        values = np.full(40, -0.01)
        values[[9, 19, 29]] = 0.8
        peaks = acf_peaks(values, t1=7, noise_z=1.96, n_obs=400)
        assert list(peaks) == [10, 20, 30]

    def test_acf_peaks_white_noise_floor(self):
        values = np.full(40, 0.0)
        values[9] = 0.05
        # 1.96 / sqrt(400) = 0.098 > 0.05
        assert len(acf_peaks(values, t1=7, noise_z=1.96, n_obs=400)) == 0

    def test_acf_peaks_all_nan(self):
        assert len(acf_peaks(np.full(5, np.nan), 7, 1.96, 100)) == 0
