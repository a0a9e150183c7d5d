"""
Structured JSON logging for factor analysis runs.

Every record is a single JSON line on stdout carrying a timestamp, an event
name and arbitrary fields, suitable for log analysis tools and experiment
databases:

    {"ts": 1640995200.0, "event": "factors_reset", "iteration": 12, "n_reset": 1}
"""

import json, sys, time

import numpy as np


def _jsonable(value):
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    return value


def log(event: str, **fields):
    """
    Log a structured JSON event with timestamp and arbitrary fields.

    Args:
        event: Event name (e.g. "fabia_start", "early_convergence")
        **fields: Additional key-value pairs to include in the record.
            NumPy scalars and arrays are converted to plain Python values.

    Example:
        >>> log("fabia_start", n=100, k=5, l=400)
        {"ts": 1640995200.0, "event": "fabia_start", "n": 100, "k": 5, "l": 400}
    """
    rec = {"ts": time.time(), "event": event}
    rec.update({key: _jsonable(val) for key, val in fields.items()})
    sys.stdout.write(json.dumps(rec) + "\n")
    sys.stdout.flush()
