#!/usr/bin/env python3
import argparse
import csv
import logging
import math
import sys

try:
    import matplotlib.pyplot as plt
except Exception:
    plt = None

from marchnav.base_structures import FieldPoint, GeoPoint
from marchnav.field.calibration import apply_affine, rms_error, solve_affine


def load_pairs(path):
    """Read lat,lon,x,y rows into matching GeoPoint / FieldPoint lists."""
    geo, field = [], []
    with open(path, 'r', newline='') as f:
        reader = csv.DictReader(f)
        for r in reader:
            geo.append(GeoPoint(lat=float(r['lat']), lon=float(r['lon'])))
            field.append(FieldPoint(x=float(r['x']), y=float(r['y'])))
    return geo, field


def compute_report(T, geo, field):
    residuals = []
    for g, f in zip(geo, field):
        p = apply_affine(T, g)
        residuals.append(math.hypot(p.x - f.x, p.y - f.y))
    return {
        'num_pairs': len(geo),
        'transform': T.m,
        'rms_yards': rms_error(T, geo, field),
        'max_residual_yards': max(residuals) if residuals else 0.0,
        'residuals_yards': residuals,
    }


def maybe_plot(T, geo, field):
    if plt is None:
        return
    pred = [apply_affine(T, g) for g in geo]
    plt.figure()
    plt.scatter([f.x for f in field], [f.y for f in field], marker='o', label='marked')
    plt.scatter([p.x for p in pred], [p.y for p in pred], marker='x', label='calibrated')
    for f, p in zip(field, pred):
        plt.plot([f.x, p.x], [f.y, p.y], 'r-', linewidth=0.8)
    plt.xlim(0, 120)
    plt.ylim(0, 160 / 3)
    plt.title('Calibration residuals')
    plt.xlabel('x [yd]')
    plt.ylabel('y [yd]')
    plt.legend()
    plt.gca().set_aspect('equal')
    plt.show()


def main(argv=None):
    ap = argparse.ArgumentParser(description='Solve a geo -> field calibration from marked pairs')
    ap.add_argument('--csv', required=True, help='CSV with lat,lon,x,y columns')
    ap.add_argument('--plot', action='store_true', help='Show residual plot')
    args = ap.parse_args(argv)

    geo, field = load_pairs(args.csv)
    T = solve_affine(geo, field)
    if T is None:
        logging.error(f"Calibration failed for {len(geo)} pairs (need 3+ non-collinear points)")
        print('Calibration failed: need at least 3 non-collinear pairs')
        return 1

    report = compute_report(T, geo, field)
    for k, v in report.items():
        if k != 'residuals_yards':
            print(f"{k}: {v}")
    if args.plot:
        maybe_plot(T, geo, field)
    return 0


if __name__ == '__main__':
    sys.exit(main())
