"""
Reproductions of the rule engine's annotation template functions.

Expected annotation text is computed with these so that it can be compared
verbatim with what the backend renders.
"""
import math
import re
from datetime import datetime, timezone
from decimal import Decimal

_SI_PREFIXES = ["k", "M", "G", "T", "P", "E", "Z", "Y"]
_SI_SMALL_PREFIXES = ["m", "u", "n", "p", "f", "a", "z", "y"]
_IEC_PREFIXES = ["ki", "Mi", "Gi", "Ti", "Pi", "Ei", "Zi", "Yi"]

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h|d|w|y)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 7 * 86400,
    "y": 365 * 86400,
}


def _g4(v: float) -> str:
    return "%.4g" % v


def _scale_down(v: float, prefixes: list[str]) -> tuple[float, str]:
    prefix = ""
    for p in prefixes:
        if abs(v) >= 1:
            break
        prefix = p
        v *= 1000
    return v, prefix


def format_value(v: float) -> str:
    """Format a float the way `{{ $value }}` renders it."""
    if math.isnan(v):
        return "NaN"
    if math.isinf(v):
        return "+Inf" if v > 0 else "-Inf"
    s = repr(float(v))
    if "e" in s:
        mantissa, exp = s.split("e")
        exponent = int(exp)
        if exponent < -4 or exponent >= 21:
            return f"{mantissa}e{exponent:+03d}"
        s = format(Decimal(s), "f")
    if s.endswith(".0"):
        s = s[:-2]
    return s


def humanize(v: float) -> str:
    """Humanize with SI prefixes, e.g. 1048576 -> 1.049M."""
    if v == 0 or math.isnan(v) or math.isinf(v):
        return _g4(v)
    if abs(v) >= 1:
        prefix = ""
        for p in _SI_PREFIXES:
            if abs(v) < 1000:
                break
            prefix = p
            v /= 1000
        return f"{_g4(v)}{prefix}"
    v, prefix = _scale_down(v, _SI_SMALL_PREFIXES)
    return f"{_g4(v)}{prefix}"


def humanize1024(v: float) -> str:
    """Humanize with IEC prefixes, e.g. 1048576 -> 1Mi."""
    if abs(v) <= 1 or math.isnan(v) or math.isinf(v):
        return _g4(v)
    prefix = ""
    for p in _IEC_PREFIXES:
        if abs(v) < 1024:
            break
        prefix = p
        v /= 1024
    return f"{_g4(v)}{prefix}"


def humanize_duration(v: float) -> str:
    """Humanize seconds as a duration, e.g. 135.3563 -> 2m 15s."""
    if math.isnan(v) or math.isinf(v):
        return _g4(v)
    if v == 0:
        return "0s"
    if abs(v) >= 1:
        sign = ""
        if v < 0:
            sign = "-"
            v = -v
        duration = int(v)
        seconds = duration % 60
        minutes = (duration // 60) % 60
        hours = (duration // 3600) % 24
        days = duration // 86400
        if days:
            return f"{sign}{days}d {hours}h {minutes}m {seconds}s"
        if hours:
            return f"{sign}{hours}h {minutes}m {seconds}s"
        if minutes:
            return f"{sign}{minutes}m {seconds}s"
        return f"{sign}{_g4(v)}s"
    v, prefix = _scale_down(v, _SI_SMALL_PREFIXES)
    return f"{_g4(v)}{prefix}s"


def humanize_percentage(v: float) -> str:
    """Render a ratio as a percentage, e.g. 0.959 -> 95.9%."""
    return f"{_g4(v * 100)}%"


def humanize_timestamp(v: float) -> str:
    """Render unix seconds as UTC, e.g. 1643114203 -> 2022-01-25 12:36:43 +0000 UTC."""
    if math.isnan(v) or math.isinf(v):
        return _g4(v)
    dt = datetime.fromtimestamp(v, tz=timezone.utc)
    text = dt.strftime("%Y-%m-%d %H:%M:%S")
    if dt.microsecond:
        text += (".%06d" % dt.microsecond).rstrip("0")
    return f"{text} +0000 UTC"


def title(s: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in s.split(" "))


def strip_port(hostport: str) -> str:
    """Drop the port from host:port, unwrapping bracketed IPv6 hosts."""
    if hostport.startswith("["):
        end = hostport.find("]")
        if end != -1:
            return hostport[1:end]
    host, sep, _ = hostport.rpartition(":")
    if not sep or ":" in host:
        return hostport
    return host


def parse_duration(s: str) -> str:
    """Parse a duration like 2h10m15s and render its seconds, e.g. 7815."""
    pos = 0
    total = 0.0
    for m in _DURATION_RE.finditer(s):
        if m.start() != pos:
            raise ValueError(f"invalid duration {s!r}")
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if pos != len(s) or not s:
        raise ValueError(f"invalid duration {s!r}")
    return format_value(total)
