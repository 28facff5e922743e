import math

import numpy as np
import pytest

from marchnav.base_structures import GeoPoint
from marchnav.gps.kalman_filter import Kalman2D


def _rms(values):
    return math.sqrt(sum(v * v for v in values) / len(values))


def test_init_echoes_observation():
    kf = Kalman2D()
    est = kf.init(GeoPoint(38.9, -92.3, 1234.0))
    assert (est.lat, est.lon, est.t) == (38.9, -92.3, 1234.0)
    assert kf.initialized
    assert kf.velocity == (0.0, 0.0)
    assert np.array_equal(kf.get_state()["covariance"], np.eye(4))


def test_reduces_rms_jitter_on_straight_path():
    rng = np.random.default_rng(42)
    kf = Kalman2D(process_noise=1e-3, measurement_noise=5e-2)
    kf.init(GeoPoint(0.0, 0.0, 0.0))

    raw_errors = []
    filtered_errors = []
    for i in range(1, 101):
        t = i * 500  # 2 Hz
        true_lat = i * 0.0001
        true_lon = i * 0.0001
        noise_lat, noise_lon = rng.uniform(-0.0002, 0.0002, size=2)
        est = kf.update(GeoPoint(true_lat + noise_lat, true_lon + noise_lon, t))
        raw_errors.append(math.hypot(noise_lat, noise_lon))
        filtered_errors.append(math.hypot(est.lat - true_lat, est.lon - true_lon))

    assert _rms(filtered_errors) < 0.8 * _rms(raw_errors)


@pytest.mark.parametrize("r", [1e-3, 5e-2, 1.0, 10.0])
def test_update_smooths_rather_than_teleports(r):
    kf = Kalman2D(measurement_noise=r)
    kf.init(GeoPoint(0.0, 0.0, 0.0))
    est = kf.update(GeoPoint(0.0001, 0.0001, 500.0))
    assert 0.0 < est.lat < 0.0001
    assert 0.0 < est.lon < 0.0001
    assert est.t == 500.0


def test_update_before_init_auto_initializes():
    kf = Kalman2D()
    assert not kf.initialized
    est = kf.update(GeoPoint(10.0, 20.0, 100.0))
    assert kf.initialized
    assert est.lat == pytest.approx(10.0)
    assert est.lon == pytest.approx(20.0)
    assert est.t == 100.0


def test_repeated_timestamp_uses_dt_floor():
    kf = Kalman2D()
    kf.init(GeoPoint(1.0, 1.0, 1000.0))
    est = kf.update(GeoPoint(1.0, 1.0, 1000.0))
    assert np.isfinite(est.lat) and np.isfinite(est.lon)
    assert est.lat == pytest.approx(1.0)


def test_covariance_stays_symmetric_psd():
    rng = np.random.default_rng(3)
    kf = Kalman2D()
    t = 0.0
    for _ in range(300):
        t += float(rng.uniform(50, 3000))  # irregular arrivals
        kf.update(GeoPoint(float(rng.normal(0, 1e-4)), float(rng.normal(0, 1e-4)), t))
        P = kf.get_state()["covariance"]
        assert np.allclose(P, P.T, atol=0.0)
        assert np.linalg.eigvalsh(P).min() >= -1e-12


def test_learns_velocity_on_constant_motion():
    kf = Kalman2D()
    for i in range(200):
        kf.update(GeoPoint(i * 1e-4, -i * 2e-4, i * 1000.0))
    v_lat, v_lon = kf.velocity
    assert v_lat == pytest.approx(1e-4, rel=1e-2)
    assert v_lon == pytest.approx(-2e-4, rel=1e-2)


def test_singular_innovation_covariance_does_not_raise():
    kf = Kalman2D(process_noise=0.0, measurement_noise=0.0)
    kf.init(GeoPoint(0.0, 0.0, 0.0))
    kf.P = np.zeros((4, 4))
    est = kf.update(GeoPoint(1e-4, 1e-4, 500.0))
    assert np.isfinite(est.lat) and np.isfinite(est.lon)


def test_reset_and_state_copy():
    kf = Kalman2D()
    kf.update(GeoPoint(5.0, 6.0, 0.0))
    state = kf.get_state()
    state["position"][0] = 99.0
    assert kf.estimate().lat == 5.0

    kf.reset()
    assert not kf.initialized
    assert kf.estimate() == GeoPoint(0.0, 0.0, 0)


def test_tracks_halting_subject_with_gps_scale_noise():
    # r of (2e-4 deg)^2 puts det S around 1e-14
    kf = Kalman2D(process_noise=8e-10, measurement_noise=4e-8)
    t = 0.0
    for i in range(21):
        kf.update(GeoPoint(i * 1e-4, 0.0, t))
        t += 500.0
    S = kf.P[0:2, 0:2] + np.eye(2) * kf.r
    assert 0.0 < np.linalg.det(S) < 1e-12

    for _ in range(40):
        est = kf.update(GeoPoint(20e-4, 0.0, t))
        t += 500.0
    assert est.lat == pytest.approx(20e-4, abs=5e-5)
    assert abs(kf.velocity[0]) < 1e-4


def test_gain_matches_exact_inverse_for_tiny_innovation_covariance():
    kf = Kalman2D(process_noise=0.0, measurement_noise=4e-8)
    kf.init(GeoPoint(0.0, 0.0, 0.0))
    kf.P = np.diag([1e-8, 2e-8, 1e-9, 1e-9])
    kf.P[0, 2] = kf.P[2, 0] = 5e-10
    P0 = kf.P.copy()
    x0 = kf.x.copy()

    kf.correct(1e-4, -2e-4)

    S = kf.H @ P0 @ kf.H.T + np.eye(2) * kf.r
    K = P0 @ kf.H.T @ np.linalg.inv(S)
    expected = x0 + K @ np.array([1e-4, -2e-4])
    assert np.allclose(kf.x, expected, rtol=1e-9, atol=1e-15)
    assert kf.x[0] == pytest.approx(1e-4 * 1e-8 / (1e-8 + 4e-8), rel=1e-9)
