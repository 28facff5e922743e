"""
Configuration loading for the guidance runtime.

The YAML file (default: config.yaml next to this module) is merged over the
built-in defaults section by section, then sanity-checked. Problems found by
validation are logged, never raised, so a slightly off config still runs.
"""
import copy
import logging
import os
from dataclasses import dataclass

import yaml

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "config.yaml")

DEFAULTS = {
    "tracking": {"hz": 2, "smoothing": True, "queue_size": 32},
    "kalman": {"process_noise": 1e-3, "measurement_noise": 5e-2},
    "guidance": {"step_size_yards": 0.75, "off_target_threshold_steps": 0.5},
    "logging": {"level": "INFO", "file": None, "summary_interval_sec": 1.0},
}


def load_config(path=None):
    """Read the YAML config at `path` (or the packaged default) merged over DEFAULTS."""
    cfg = copy.deepcopy(DEFAULTS)
    cfg_file = path or DEFAULT_CONFIG_PATH
    if path is None and not os.path.exists(cfg_file):
        logging.info("[CONFIG] No config.yaml found; using built-in defaults")
        return cfg

    with open(cfg_file, "r") as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        logging.warning(f"[CONFIG] {cfg_file} does not contain a mapping; using built-in defaults")
        return cfg

    for section, values in loaded.items():
        if isinstance(values, dict) and isinstance(cfg.get(section), dict):
            cfg[section].update(values)
        elif values is None and section in cfg:
            # Empty section header, e.g. "tracking:" with nothing under it
            continue
        else:
            cfg[section] = values
    return cfg


def _section(cfg, name):
    values = cfg.get(name)
    return values if isinstance(values, dict) else {}


def validate_config(cfg):
    """Log warnings for missing sections and out-of-range values. Returns the number of issues."""
    issues = 0
    for sec in DEFAULTS:
        if not isinstance(cfg.get(sec), dict):
            logging.warning(f"[CONFIG] Missing section: {sec}")
            issues += 1

    checks = [
        ("tracking", "hz"),
        ("kalman", "process_noise"),
        ("kalman", "measurement_noise"),
        ("guidance", "step_size_yards"),
    ]
    for sec, key in checks:
        value = _section(cfg, sec).get(key)
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
            logging.warning(f"[CONFIG] {sec}.{key} should be a positive number, got {value!r}")
            issues += 1

    thr = _section(cfg, "guidance").get("off_target_threshold_steps")
    if not isinstance(thr, (int, float)) or thr < 0:
        logging.warning(f"[CONFIG] guidance.off_target_threshold_steps should be >= 0, got {thr!r}")
        issues += 1
    return issues


@dataclass
class TrackingConfig:
    """The recognised tuning options, flattened out of the config sections."""
    hz: float = 2.0
    smoothing: bool = True
    process_noise: float = 1e-3
    measurement_noise: float = 5e-2
    step_size_yards: float = 0.75
    off_target_threshold_steps: float = 0.5
    queue_size: int = 32

    @classmethod
    def from_dict(cls, cfg):
        tracking = _section(cfg, "tracking")
        kalman = _section(cfg, "kalman")
        guidance = _section(cfg, "guidance")
        return cls(
            hz=float(tracking.get("hz", 2)),
            smoothing=bool(tracking.get("smoothing", True)),
            process_noise=float(kalman.get("process_noise", 1e-3)),
            measurement_noise=float(kalman.get("measurement_noise", 5e-2)),
            step_size_yards=float(guidance.get("step_size_yards", 0.75)),
            off_target_threshold_steps=float(guidance.get("off_target_threshold_steps", 0.5)),
            queue_size=int(tracking.get("queue_size", 32)),
        )


def setup_logging(cfg):
    """Configure root logging from the `logging` section."""
    log_cfg = _section(cfg, "logging")
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    kwargs = {"level": level, "format": '%(asctime)s %(levelname)s:%(message)s'}
    if log_cfg.get("file"):
        kwargs["filename"] = log_cfg["file"]
    logging.basicConfig(**kwargs)
