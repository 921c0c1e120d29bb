import math
from typing import Any

import numpy as np

def round_half_away(val: float) -> int:
    # python's round() rounds half to even, the game rounds half away from zero
    magnitude = abs(val)
    rounded = math.floor(magnitude + 0.5)
    # the addition itself can round up, ie for the largest float below 0.5
    if rounded - magnitude > 0.5:
        rounded -= 1
    return int(np.sign(val) * rounded)

def parse_number(val: str) -> float:
    if not val:
        raise ValueError("Value empty")
    if "/" in val:
        num, denom = val.split("/", 1)
        if " " in num:
            # mixed fraction, ie "1 1/2" -> 1.5
            integer, num = num.split(" ", 1)
            i = int(integer)
            return i + np.sign(i) * (float(num) / float(denom))
        return float(num) / float(denom)
    elif val.endswith("%"):
        return float(val[:-1]) / 100
    return float(val)

def parse_int(val: str) -> int:
    # some editors write integer fields as "123.0"
    try:
        return int(val)
    except ValueError:
        return round_half_away(float(val))

def pretty_number(val: float) -> str:
    """format like the game does: no trailing .0 for integral values"""
    val = float(val)
    if val.is_integer():
        return str(int(val))
    return repr(val)

def pretty_list(data: list[Any]) -> str:
    if not data:
        return ""
    if len(data) == 1:
        return str(data[0])
    return ", ".join(map(str, data[:-1])) + f" and {data[-1]}"
