#!/usr/bin/env python3
import argparse
import sys

import numpy as np

from marchnav.base_structures import FieldPoint, GeoPoint
from marchnav.config import TrackingConfig, load_config, validate_config
from marchnav.field.calibration import apply_affine, rms_error, solve_affine
from marchnav.gps.kalman_filter import Kalman2D
from marchnav.gps.throttle_driver import ThrottleDriver
from marchnav.practice.error_metrics import distance_yards, is_off_target


def check_config(cfg):
    print('[SELF-CHECK] Config sanity...')
    issues = validate_config(cfg)
    if issues:
        print(f'  Warn: {issues} config issue(s); see log for details')
    print('  OK')


def check_kalman(cfg):
    print('[SELF-CHECK] Kalman2D...')
    settings = TrackingConfig.from_dict(cfg)
    kf = Kalman2D(settings.process_noise, settings.measurement_noise)
    kf.init(GeoPoint(0.0, 0.0, 0.0))
    est = kf.update(GeoPoint(1e-4, 1e-4, 500.0))
    assert 0.0 < est.lat < 1e-4, 'estimate did not move toward observation'
    P = kf.get_state()['covariance']
    assert np.allclose(P, P.T), 'covariance not symmetric'
    assert np.all(np.linalg.eigvalsh(P) >= -1e-12), 'covariance not positive semi-definite'
    print('  OK')


def check_calibration(cfg):
    print('[SELF-CHECK] Affine calibration...')
    geo = [GeoPoint(40.0, -75.0), GeoPoint(40.001, -75.0), GeoPoint(40.0, -75.001), GeoPoint(40.001, -75.001)]
    field = [FieldPoint(10.0, 5.0), FieldPoint(110.0, 5.0), FieldPoint(10.0, 48.0), FieldPoint(110.0, 48.0)]
    T = solve_affine(geo, field)
    assert T is not None, 'solver rejected a well-posed correspondence set'
    assert rms_error(T, geo, field) < 1e-6, 'RMS error too large'
    mid = apply_affine(T, GeoPoint(40.0005, -75.0005))
    assert abs(mid.x - 60.0) < 1e-6 and abs(mid.y - 26.5) < 1e-6, 'midpoint mapped incorrectly'
    assert solve_affine(geo[:2], field[:2]) is None, 'two pairs should not solve'
    print('  OK')


def check_metrics(cfg):
    print('[SELF-CHECK] Error metrics...')
    settings = TrackingConfig.from_dict(cfg)
    assert distance_yards(FieldPoint(0, 0), FieldPoint(3, 4)) == 5.0
    assert is_off_target(FieldPoint(0, 0), FieldPoint(10, 0), settings.step_size_yards,
                         settings.off_target_threshold_steps)
    print('  OK')


def check_driver(cfg):
    print('[SELF-CHECK] ThrottleDriver...')
    drv = ThrottleDriver()
    assert drv.tick_once() is None, 'tick before first fix should be a no-op'
    drv.position(GeoPoint(1.0, 2.0, 0.0, accuracy=3.0))
    tick = drv.tick_once()
    assert tick is not None and tick.accuracy == 3.0
    drv.init(hz=10, smoothing=True)
    drv.stop()
    drv.stop()
    assert not drv.running
    print('  OK')


def main(argv=None):
    ap = argparse.ArgumentParser(description='Smoke-check the guidance core')
    ap.add_argument('config', nargs='?', default=None, help='YAML config path')
    args = ap.parse_args(argv)
    cfg = load_config(args.config)
    failures = 0
    for check in (check_kalman, check_calibration, check_metrics, check_driver):
        try:
            check(cfg)
        except Exception as e:
            print(f'[SELF-CHECK] {check.__name__} FAILED: {e}')
            failures += 1
    # Config sanity (non-fatal)
    try:
        check_config(cfg)
    except Exception:
        pass

    if failures == 0:
        print('[SELF-CHECK] All required checks passed.')
        sys.exit(0)
    else:
        print(f'[SELF-CHECK] Failures: {failures}')
        sys.exit(1)


if __name__ == '__main__':
    main()
