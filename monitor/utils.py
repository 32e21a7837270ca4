import math
import time


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def round_half_up(value: float, digits: int = 1) -> float:
    """
    Round with ties going towards +infinity, so reported scores match the
    dashboard's historic values (Python's round() is banker's rounding).
    """
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))
