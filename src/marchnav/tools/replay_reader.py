#!/usr/bin/env python3
"""
replay_reader
-------------
Playback tool for GPS fixes recorded from a phone or receiver.

- Input CSV has columns t (ms), lat, lon and optionally accuracy, truth_lat, truth_lon
- Fixes are replayed on a virtual clock through the sampling driver at the configured
  output rate, so ticks see only the latest fix just as they would live
- Prints each tick; with truth columns, reports raw vs smoothed RMS error (meters)
"""
import argparse
import csv
import math
import sys
import time

from marchnav.base_structures import GeoPoint
from marchnav.config import TrackingConfig, load_config, setup_logging
from marchnav.gps.kalman_filter import Kalman2D
from marchnav.gps.throttle_driver import ThrottleDriver, period_ms


def _opt_float(row, key):
    v = row.get(key)
    if v is None or v == '':
        return None
    return float(v)


def load_fixes(path):
    """Return (fix, truth) tuples sorted by timestamp; truth is a GeoPoint or None."""
    out = []
    with open(path, 'r', newline='') as f:
        for r in csv.DictReader(f):
            fix = GeoPoint(lat=float(r['lat']), lon=float(r['lon']), t=float(r['t']),
                           accuracy=_opt_float(r, 'accuracy'))
            tlat, tlon = _opt_float(r, 'truth_lat'), _opt_float(r, 'truth_lon')
            truth = GeoPoint(tlat, tlon, fix.t) if tlat is not None and tlon is not None else None
            out.append((fix, truth))
    out.sort(key=lambda ft: ft[0].t)
    return out


def replay(fixes, settings, realtime=False):
    """Drive the sampler over the recording; returns a list of (tick, fix, truth)."""
    driver = ThrottleDriver(Kalman2D(settings.process_noise, settings.measurement_noise))
    driver.smoothing = settings.smoothing
    period = period_ms(settings.hz)
    results = []
    if not fixes:
        return results

    clock = fixes[0][0].t
    end = fixes[-1][0].t
    i = 0
    current = None
    while clock <= end:
        while i < len(fixes) and fixes[i][0].t <= clock:
            current = fixes[i]
            driver.position(current[0])
            i += 1
        tick = driver.tick_once()
        if tick is not None:
            results.append((tick, current[0], current[1]))
        if realtime:
            time.sleep(period / 1000.0)
        clock += period
    return results


def rms_meters(pairs):
    errs = [a.distance_to(b) for a, b in pairs]
    return math.sqrt(sum(e * e for e in errs) / len(errs)) if errs else float('nan')


def main(argv=None):
    """CLI: replay a fix recording at the configured tick rate."""
    ap = argparse.ArgumentParser()
    ap.add_argument('--csv', required=True, help='Recorded fixes (t,lat,lon[,accuracy,truth_lat,truth_lon])')
    ap.add_argument('--config', default=None, help='YAML config path')
    ap.add_argument('--hz', type=float, default=None, help='Override output rate')
    ap.add_argument('--raw', action='store_true', help='Disable smoothing')
    ap.add_argument('--realtime', action='store_true', help='Sleep one tick period between ticks')
    ap.add_argument('--quiet', action='store_true', help='Only print the summary')
    args = ap.parse_args(argv)

    cfg = load_config(args.config)
    setup_logging(cfg)
    settings = TrackingConfig.from_dict(cfg)
    if args.hz is not None:
        settings.hz = args.hz
    if args.raw:
        settings.smoothing = False

    fixes = load_fixes(args.csv)
    if not fixes:
        print('No fixes found')
        return 1

    results = replay(fixes, settings, realtime=args.realtime)
    if not args.quiet:
        for tick, _, _ in results:
            acc = '' if tick.accuracy is None else f' acc={tick.accuracy:.1f}m'
            print(f"t={tick.t:.0f} lat={tick.lat:.7f} lon={tick.lon:.7f}{acc}")

    with_truth = [(tick, fix, truth) for tick, fix, truth in results if truth is not None]
    print(f"ticks: {len(results)}")
    if with_truth:
        print(f"raw_rmse_m: {rms_meters([(fix, truth) for _, fix, truth in with_truth]):.3f}")
        print(f"smoothed_rmse_m: {rms_meters([(tick.as_geo(), truth) for tick, _, truth in with_truth]):.3f}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
