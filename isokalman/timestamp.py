"""Time stamps with second and nanosecond parts."""

from __future__ import annotations

import math

_NSEC_PER_SEC = 1_000_000_000
_MAX_SEC_FROM_FLOAT = 0x1FFFFFFFF
_MAX_SEC_FOR_NS = 9223372036


def _tdiv(a: int, b: int) -> int:
    """Integer division truncating towards zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def _tmod(a: int, b: int) -> int:
    """Remainder carrying the sign of the dividend."""
    return a - b * _tdiv(a, b)


class Timestamp:
    """A point in time made of whole seconds and nanoseconds."""

    __slots__ = ("sec", "nsec")

    def __init__(self, sec: int = 0, nsec: int = 0) -> None:
        self.sec = int(sec)
        self.nsec = int(nsec)

    @classmethod
    def from_sec(cls, t: float) -> "Timestamp":
        """Build a timestamp from seconds given as a float."""
        sec = math.floor(t)
        if sec > _MAX_SEC_FROM_FLOAT:
            raise ValueError(f"time is out of 33-bit range: {t:f}")
        # the fractional part is non-negative, so round half up matches half away from zero
        nsec = math.floor((t - sec) * 1e9 + 0.5)
        sec += _tdiv(nsec, _NSEC_PER_SEC)
        nsec = _tmod(nsec, _NSEC_PER_SEC)
        return cls(sec, nsec)

    @classmethod
    def from_stamp_ms(cls, stamp_ms: int) -> "Timestamp":
        return cls(_tdiv(stamp_ms, 1000), _tmod(stamp_ms, 1000) * 1_000_000)

    @classmethod
    def from_stamp_us(cls, stamp_us: int) -> "Timestamp":
        return cls(_tdiv(stamp_us, 1_000_000), _tmod(stamp_us, 1_000_000) * 1000)

    @classmethod
    def from_stamp_ns(cls, stamp_ns: int) -> "Timestamp":
        return cls(_tdiv(stamp_ns, _NSEC_PER_SEC), _tmod(stamp_ns, _NSEC_PER_SEC))

    def to_sec(self) -> float:
        return float(self.sec) + 1e-9 * float(self.nsec)

    def is_zero(self) -> bool:
        return self.sec == 0 and self.nsec == 0

    def stamp_ms(self) -> int:
        return self.sec * 1000 + _tdiv(self.nsec, 1_000_000)

    def stamp_us(self) -> int:
        return self.sec * 1_000_000 + _tdiv(self.nsec, 1000)

    def stamp_ns(self) -> int:
        if self.sec > _MAX_SEC_FOR_NS:
            raise OverflowError("time is out of the range convertible to nanoseconds")
        return self.sec * _NSEC_PER_SEC + self.nsec

    def _key(self) -> tuple[int, int]:
        return (self.sec, self.nsec)

    def __str__(self) -> str:
        return f"{self.to_sec():f}"

    def __repr__(self) -> str:
        return f"Timestamp(sec={self.sec}, nsec={self.nsec})"

    def __lt__(self, other: "Timestamp") -> bool:
        if not isinstance(other, Timestamp):
            return NotImplemented
        return self._key() < other._key()

    def __le__(self, other: "Timestamp") -> bool:
        if not isinstance(other, Timestamp):
            return NotImplemented
        return self._key() <= other._key()

    def __gt__(self, other: "Timestamp") -> bool:
        if not isinstance(other, Timestamp):
            return NotImplemented
        return self._key() > other._key()

    def __ge__(self, other: "Timestamp") -> bool:
        if not isinstance(other, Timestamp):
            return NotImplemented
        return self._key() >= other._key()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Timestamp):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __add__(self, other: "Timestamp") -> "Timestamp":
        if not isinstance(other, Timestamp):
            return NotImplemented
        return Timestamp.from_sec(self.to_sec() + other.to_sec())

    def __sub__(self, other: "Timestamp") -> "Timestamp":
        if not isinstance(other, Timestamp):
            return NotImplemented
        return Timestamp.from_sec(self.to_sec() - other.to_sec())