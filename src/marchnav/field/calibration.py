#!/usr/bin/env python3
"""
Geographic -> field calibration by least-squares affine fit.

A 2D affine map has six parameters, p = [a, b, tx, c, d, ty]:

    x = a*lat + b*lon + tx
    y = c*lat + d*lon + ty

Each correspondence pair contributes two rows to a 2n x 6 design matrix A and
a 2n vector b. The normal equations (A^T A) p = A^T b form a 6x6 system that
is solved by Gauss-Jordan elimination without pivoting. A pivot whose
magnitude falls below PIVOT_EPS marks the correspondence set as degenerate
(collinear, duplicated, or too few distinct points) and no transform is
returned.

Notes
- Readings are centered on their mean before forming A; the offsets are
  corrected afterwards so the returned transform acts on raw degrees.
- Inputs are never clamped here; callers clamp field points to the field.
- With exactly three non-degenerate pairs the fit interpolates exactly.
- Correspondence collection is interactive: `CalibrationSession` pairs the
  latest live GPS reading with a clicked field point.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from marchnav.base_structures import FieldPoint, GeoPoint, clamp_to_field

MIN_PAIRS = 3
PIVOT_EPS = 1e-12


@dataclass(frozen=True)
class AffineTransform:
    """Solved geo -> field transform, m = (a, b, tx, c, d, ty)."""
    m: Tuple[float, float, float, float, float, float]


@dataclass(frozen=True)
class CalibrationResult:
    transform: AffineTransform
    rms_yards: float
    num_pairs: int


def _solve6x6(AtA: np.ndarray, Atb: np.ndarray) -> Optional[np.ndarray]:
    """Gauss-Jordan elimination on [AtA | Atb] without pivoting; None on a tiny pivot."""
    n = 6
    M = np.hstack([AtA.astype(float), Atb.reshape(n, 1).astype(float)])
    for col in range(n):
        piv = M[col, col]
        if abs(piv) < PIVOT_EPS:
            logging.debug(f"[CAL] Pivot {piv:.3e} below {PIVOT_EPS} at column {col}; system is degenerate")
            return None
        M[col, col:] = M[col, col:] / piv
        for i in range(n):
            if i == col:
                continue
            factor = M[i, col]
            M[i, col:] = M[i, col:] - factor * M[col, col:]
    return M[:, n].copy()


def solve_affine(geo: Sequence[GeoPoint], field: Sequence[FieldPoint]) -> Optional[AffineTransform]:
    """
    Least-squares affine fit from geographic to field coordinates.

    Parameters
    ----------
    geo : sequence of GeoPoint
        GPS readings taken at each calibration mark.
    field : sequence of FieldPoint
        Matching field positions (yards), same order and length as `geo`.

    Returns
    -------
    AffineTransform or None
        None if the lengths differ, fewer than three pairs are given, or the
        normal equations are singular.
    """
    if len(geo) != len(field) or len(geo) < MIN_PAIRS:
        return None
    n = len(geo)

    # Work relative to the mean reading; raw degrees (~40, ~-75) spread over a
    # few 1e-4 deg make the normal equations badly conditioned.
    lat0 = sum(g.lat for g in geo) / n
    lon0 = sum(g.lon for g in geo) / n

    A = np.zeros((2 * n, 6))
    b = np.zeros(2 * n)
    for i, (g, f) in enumerate(zip(geo, field)):
        dlat = g.lat - lat0
        dlon = g.lon - lon0
        # Row for x: [lat, lon, 1, 0, 0, 0]
        A[2 * i, 0:3] = (dlat, dlon, 1.0)
        b[2 * i] = f.x
        # Row for y: [0, 0, 0, lat, lon, 1]
        A[2 * i + 1, 3:6] = (dlat, dlon, 1.0)
        b[2 * i + 1] = f.y

    p = _solve6x6(A.T @ A, A.T @ b)
    if p is None:
        return None
    a, b_, tx, c, d, ty = (float(v) for v in p)
    # Fold the centering back into the offsets
    tx -= a * lat0 + b_ * lon0
    ty -= c * lat0 + d * lon0
    return AffineTransform(m=(a, b_, tx, c, d, ty))


def apply_affine(T: AffineTransform, g: GeoPoint) -> FieldPoint:
    a, b, tx, c, d, ty = T.m
    return FieldPoint(x=a * g.lat + b * g.lon + tx, y=c * g.lat + d * g.lon + ty)


def rms_error(T: AffineTransform, geo: Sequence[GeoPoint], field: Sequence[FieldPoint]) -> float:
    """Root-mean-square residual (yards) of the transform over the sample pairs."""
    total = 0.0
    count = 0
    for g, f in zip(geo, field):
        p = apply_affine(T, g)
        dx = p.x - f.x
        dy = p.y - f.y
        total += dx * dx + dy * dy
        count += 1
    return float(np.sqrt(total / max(1, count)))


class CalibrationSession:
    """Collects (GPS reading, field click) pairs and solves the transform on completion.

    The session keeps the most recent live reading passed to `observe`; each
    `add_pair` snapshots it together with the clicked field point. Pairs are
    discarded when the session completes or is cancelled.
    """

    def __init__(self, on_calibrated: Optional[Callable[[AffineTransform, float], None]] = None):
        self.on_calibrated = on_calibrated
        self.active = False
        self.geo_samples: List[GeoPoint] = []
        self.field_samples: List[FieldPoint] = []
        self._last_geo: Optional[GeoPoint] = None

    @property
    def num_pairs(self):
        return len(self.geo_samples)

    def observe(self, geo: GeoPoint):
        """Record the latest live reading (does not add a pair)."""
        self._last_geo = geo

    def start(self):
        self.active = True
        self.geo_samples = []
        self.field_samples = []
        logging.info(f"[CAL] Calibration started; mark {MIN_PAIRS} or more field points at your current GPS position")

    def add_pair(self, field_point: FieldPoint) -> bool:
        """Pair the latest live reading with a clicked field point (clamped to the field)."""
        if not self.active:
            return False
        if self._last_geo is None:
            logging.warning("[CAL] No live GPS reading yet; ignoring field click")
            return False
        self.geo_samples.append(self._last_geo)
        self.field_samples.append(clamp_to_field(field_point))
        logging.debug(f"[CAL] Pair {self.num_pairs}: {self._last_geo} -> {self.field_samples[-1]}")
        return True

    def cancel(self):
        self.active = False
        self.geo_samples = []
        self.field_samples = []
        logging.info("[CAL] Calibration cancelled")

    def complete(self) -> Optional[CalibrationResult]:
        """Solve with the collected pairs; notify `on_calibrated` on success."""
        geo, field = self.geo_samples, self.field_samples
        self.active = False
        self.geo_samples = []
        self.field_samples = []

        T = solve_affine(geo, field)
        if T is None:
            logging.warning(f"[CAL] Calibration failed with {len(geo)} pairs (need {MIN_PAIRS}+ non-collinear points)")
            return None
        err = rms_error(T, geo, field)
        logging.info(f"[CAL] Calibration complete. RMS error {err:.2f} yards over {len(geo)} pairs")
        if self.on_calibrated is not None:
            self.on_calibrated(T, err)
        return CalibrationResult(transform=T, rms_yards=err, num_pairs=len(geo))
