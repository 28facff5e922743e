import numpy as np
import logging

from marchnav.base_structures import GeoPoint


class Kalman2D:
    """
    Constant-velocity Kalman filter over geographic coordinates.
    State vector: [lat, lon, vLat, vLon] (degrees, degrees/second)
    State size: 4

    Fixes arrive at irregular intervals with millisecond timestamps; each update
    predicts forward by the elapsed time and corrects with the observed position.
    One instance per tracked subject; not safe for concurrent updates.
    """

    def __init__(self, process_noise=1e-3, measurement_noise=5e-2):
        # Noise scalars in squared-degree units; larger r smooths more and lags more
        self.q = float(process_noise)
        self.r = float(measurement_noise)

        self.x = np.zeros(4)
        self.P = np.eye(4)
        self.last_t = None

        # Measurement model observes position only
        self.H = np.zeros((2, 4))
        self.H[0, 0] = 1.0
        self.H[1, 1] = 1.0

        # dt floor (s) and substitute determinant for a singular innovation covariance
        self.min_dt = 0.001
        self.det_eps = 1e-6

    @property
    def initialized(self):
        return self.last_t is not None

    @property
    def velocity(self):
        """Current velocity estimate (vLat, vLon) in degrees/second."""
        return float(self.x[2]), float(self.x[3])

    def init(self, obs: GeoPoint) -> GeoPoint:
        """Seed the state at the observed position with zero velocity and identity covariance."""
        self.x = np.array([obs.lat, obs.lon, 0.0, 0.0], dtype=float)
        self.P = np.eye(4)
        self.last_t = obs.t
        logging.debug(f"[KF] Initialized at lat={obs.lat:.7f}, lon={obs.lon:.7f}, t={obs.t}")
        return self.estimate()

    def reset(self):
        """Return to the uninitialized state (e.g., when the tracked device changes)."""
        self.x = np.zeros(4)
        self.P = np.eye(4)
        self.last_t = None

    def _symmetrize_covariance(self):
        self.P = 0.5 * (self.P + self.P.T)

    def predict(self, dt):
        """
        Constant-velocity prediction: position advances by dt*velocity, velocity is held.
        P <- F P F^T + Q with Q = q on the diagonal.
        """
        self.x[0] = self.x[0] + dt * self.x[2]
        self.x[1] = self.x[1] + dt * self.x[3]

        F = np.eye(4)
        F[0, 2] = dt
        F[1, 3] = dt
        self.P = F @ self.P @ F.T + np.eye(4) * self.q

    def correct(self, z_lat, z_lon):
        """Measurement update with an observed (lat, lon)."""
        z = np.array([z_lat, z_lon])
        y = z - self.H @ self.x
        S = self.H @ self.P @ self.H.T + np.eye(2) * self.r

        # 2x2 inverse via the determinant formula
        det = S[0, 0] * S[1, 1] - S[0, 1] * S[1, 0]
        if det == 0.0:
            logging.debug(f"[KF] Singular innovation covariance (det={det:.3e}); substituting {self.det_eps}")
            det = self.det_eps
        S_inv = np.array([[S[1, 1], -S[0, 1]],
                          [-S[1, 0], S[0, 0]]]) / det

        K = self.P @ self.H.T @ S_inv
        self.x = self.x + K @ y
        self.P = (np.eye(4) - K @ self.H) @ self.P
        self._symmetrize_covariance()

    def update(self, obs: GeoPoint) -> GeoPoint:
        """Advance the filter with a new observation and return the smoothed estimate."""
        if self.last_t is None:
            self.init(obs)
        dt = max(self.min_dt, (obs.t - self.last_t) / 1000.0)
        self.predict(dt)
        self.correct(obs.lat, obs.lon)
        self.last_t = obs.t
        return self.estimate()

    def estimate(self) -> GeoPoint:
        t = self.last_t if self.last_t is not None else 0
        return GeoPoint(lat=float(self.x[0]), lon=float(self.x[1]), t=t)

    def get_state(self):
        """Return a copy of the current state: position, velocity, covariance, last_t"""
        return {
            "position": self.x[0:2].copy(),
            "velocity": self.x[2:4].copy(),
            "covariance": self.P.copy(),
            "last_t": self.last_t,
        }
