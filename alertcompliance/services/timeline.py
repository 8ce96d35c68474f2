"""
Sample timeline builder.

Turns the compact value notation used by the rule group test cases into
samples spaced one interval apart, starting at timestamp 0.
"""
from dataclasses import dataclass, field
from typing import List

from alertcompliance.core.exceptions import TimelineNotationError
from alertcompliance.services.labels import Labels


@dataclass(frozen=True)
class Sample:
    timestamp_ms: int
    value: float


@dataclass
class TimeSeries:
    labels: Labels
    samples: List[Sample] = field(default_factory=list)


def _parse_float(token: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError as e:
        raise TimelineNotationError(token, str(e)) from e


def sample_slice(interval_ms: int, *values: str) -> List[Sample]:
    """
    Build samples from value tokens.

    Each token is either "V", the absolute float value of the next sample,
    or "AxB", which adds the float A to the last value and emits it, B times.
    Values start at 0.

    Example:
        tokens: "1x1", "0x3",   "5x3",   "9", "8", "-2x2"
        values:  1,    1, 1, 1, 6, 11, 16, 9,   8,  6, 4

    Raises:
        TimelineNotationError: for a token in neither form
    """
    samples: List[Sample] = []
    ts = 0
    val = 0.0
    for token in values:
        splits = token.split("x")
        if len(splits) == 2:
            delta = _parse_float(token, splits[0])
            try:
                count = int(splits[1])
            except ValueError as e:
                raise TimelineNotationError(token, str(e)) from e
            for _ in range(count):
                val += delta
                samples.append(Sample(ts, val))
                ts += interval_ms
        elif len(splits) == 1:
            val = _parse_float(token, splits[0])
            samples.append(Sample(ts, val))
            ts += interval_ms
        else:
            raise TimelineNotationError(token)
    return samples
