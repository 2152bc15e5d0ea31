"""Piecewise-linear mappings between genomic, transcript, CDS and protein coordinates.

A :class:`CoordinateMap` pairs an ordered list of "from" ranges with an
ordered list of "to" ranges. Each range is an inclusive, 1-based
``(start, end)`` pair; ``start > end`` means the range is traversed in
reverse (minus strand). Ratios express how many units on each side make one
mapped "word", e.g. 3:1 for codons to amino acids.
"""

from math import gcd
from typing import Iterable, List, Optional, Sequence, Tuple

from .error_handler import InvalidMapping, Unmappable

Range = Tuple[int, int]


def range_length(r: Range) -> int:
    """Number of positions covered by an inclusive range in either direction."""
    return abs(r[1] - r[0]) + 1


def _direction(r: Range) -> int:
    if r[1] > r[0]:
        return 1
    if r[1] < r[0]:
        return -1
    return 0


def coalesce_ranges(ranges: Iterable[Range]) -> List[Range]:
    """
    Merge ranges that continue each other in the same direction.

    ``[(1, 3), (4, 6)]`` becomes ``[(1, 6)]`` and ``[(9, 7), (6, 5)]`` becomes
    ``[(9, 5)]``. Single-position ranges join whichever direction they extend.
    Overlapping or gapped ranges are left alone.
    """
    merged: List[Range] = []
    for start, end in ranges:
        if merged:
            last_start, last_end = merged[-1]
            step = start - last_end
            if step in (1, -1) \
                    and _direction((last_start, last_end)) in (0, step) \
                    and _direction((start, end)) in (0, step):
                merged[-1] = (last_start, end)
                continue
        merged.append((start, end))
    return merged


def _check_ranges(ranges: Sequence[Sequence[int]], side: str) -> List[Range]:
    if ranges is None or len(ranges) == 0:
        raise InvalidMapping(f"{side} ranges must not be empty")
    checked = []
    for r in ranges:
        try:
            start, end = r
        except (TypeError, ValueError):
            raise InvalidMapping(f"Malformed {side} range: {r!r}") from None
        if isinstance(start, bool) or isinstance(end, bool) \
                or not isinstance(start, int) or not isinstance(end, int):
            raise InvalidMapping(f"Non-integer {side} range: {r!r}")
        checked.append((start, end))
    return checked


def _check_ratio(ratio: int, side: str) -> int:
    if isinstance(ratio, bool) or not isinstance(ratio, int) or ratio < 1:
        raise InvalidMapping(f"{side} ratio must be a positive integer, got {ratio!r}")
    return ratio


class CoordinateMap:
    """Immutable mapping from ordered "from" ranges onto ordered "to" ranges."""

    __slots__ = ('_from_ranges', '_to_ranges', '_from_ratio', '_to_ratio',
                 '_from_length', '_to_length')

    def __init__(self,
                 from_ranges: Sequence[Sequence[int]],
                 to_ranges: Sequence[Sequence[int]],
                 from_ratio: int = 1,
                 to_ratio: int = 1):
        """
        Build a mapping.

        Args:
            from_ranges: Ordered ``(start, end)`` pairs on the source side
            to_ranges: Ordered ``(start, end)`` pairs on the target side
            from_ratio: Source units per mapped word
            to_ratio: Target units per mapped word

        Raises:
            InvalidMapping: if either side is empty or malformed, a ratio is
                not a positive integer, or the two sides cover a different
                number of words
        """
        self._from_ratio = _check_ratio(from_ratio, "from")
        self._to_ratio = _check_ratio(to_ratio, "to")
        self._from_ranges = tuple(coalesce_ranges(_check_ranges(from_ranges, "from")))
        self._to_ranges = tuple(coalesce_ranges(_check_ranges(to_ranges, "to")))
        self._from_length = sum(range_length(r) for r in self._from_ranges)
        self._to_length = sum(range_length(r) for r in self._to_ranges)

        if self._from_length * self._to_ratio != self._to_length * self._from_ratio:
            raise InvalidMapping(
                f"Mapped lengths differ: {self._from_length}/{self._from_ratio} "
                f"!= {self._to_length}/{self._to_ratio}"
            )

    @classmethod
    def build(cls, from_ranges, to_ranges, from_ratio: int = 1, to_ratio: int = 1) -> 'CoordinateMap':
        """Alias of the constructor, for call sites that read better with a verb."""
        return cls(from_ranges, to_ranges, from_ratio, to_ratio)

    @property
    def from_ranges(self) -> List[Range]:
        return list(self._from_ranges)

    @property
    def to_ranges(self) -> List[Range]:
        return list(self._to_ranges)

    @property
    def from_ratio(self) -> int:
        return self._from_ratio

    @property
    def to_ratio(self) -> int:
        return self._to_ratio

    @property
    def from_length(self) -> int:
        return self._from_length

    @property
    def to_length(self) -> int:
        return self._to_length

    @property
    def from_lowest(self) -> int:
        return min(min(r) for r in self._from_ranges)

    @property
    def from_highest(self) -> int:
        return max(max(r) for r in self._from_ranges)

    @property
    def to_lowest(self) -> int:
        return min(min(r) for r in self._to_ranges)

    @property
    def to_highest(self) -> int:
        return max(max(r) for r in self._to_ranges)

    def is_triplet_map(self) -> bool:
        """True for a nucleotide to peptide (3:1) mapping."""
        return self._from_ratio == 3 and self._to_ratio == 1

    def is_forward(self) -> bool:
        """Direction of the from side, taken from the first range that has one."""
        return self._is_forward(self._from_ranges)

    def is_to_forward(self) -> bool:
        """Direction of the to side, taken from the first range that has one."""
        return self._is_forward(self._to_ranges)

    @staticmethod
    def _is_forward(ranges: Sequence[Range]) -> bool:
        for r in ranges:
            direction = _direction(r)
            if direction:
                return direction > 0
        return True

    def invert(self) -> 'CoordinateMap':
        """Return the mapping from the to side back onto the from side."""
        return CoordinateMap(self._to_ranges, self._from_ranges, self._to_ratio, self._from_ratio)

    @staticmethod
    def _offset_of(pos: int, ranges: Sequence[Range]) -> Optional[int]:
        base = 0
        for start, end in ranges:
            if min(start, end) <= pos <= max(start, end):
                return base + abs(pos - start)
            base += range_length((start, end))
        return None

    @staticmethod
    def _position_at(offset: int, ranges: Sequence[Range]) -> Optional[int]:
        base = 0
        for start, end in ranges:
            length = range_length((start, end))
            if offset < base + length:
                step = -1 if end < start else 1
                return start + step * (offset - base)
            base += length
        return None

    def locate(self, from_pos: int) -> Optional[Range]:
        """
        Map a single source position.

        Args:
            from_pos: Position on the from side

        Returns:
            ``(first, last)`` target positions of the word containing
            ``from_pos`` (equal for 1:1 maps), or None if the position falls
            in a gap or outside the mapped ranges
        """
        offset = self._offset_of(from_pos, self._from_ranges)
        if offset is None:
            return None
        word = offset // self._from_ratio
        first = self._position_at(word * self._to_ratio, self._to_ranges)
        last = self._position_at(word * self._to_ratio + self._to_ratio - 1, self._to_ranges)
        if first is None or last is None:
            return None
        return first, last

    def locate_range(self, begin: int, end: int) -> Optional[List[Range]]:
        """
        Map a source sub-range that may span several from ranges.

        The query is clipped to the mapped ranges, so a feature that hangs
        over the 5' or 3' edge of an exon maps to its overlapping part only.
        Each returned pair runs in the direction of the target range it falls
        in.

        Args:
            begin: One end of the source range
            end: The other end of the source range

        Returns:
            Ordered target ranges, or None if nothing overlaps
        """
        return self._locate(begin, end, self._from_ranges, self._to_ranges,
                            self._from_ratio, self._to_ratio, self._to_length)

    def locate_in_from(self, begin: int, end: int) -> Optional[List[Range]]:
        """Map a target sub-range back onto the from side."""
        return self._locate(begin, end, self._to_ranges, self._from_ranges,
                            self._to_ratio, self._from_ratio, self._from_length)

    @staticmethod
    def _locate(begin: int, end: int,
                src: Sequence[Range], dst: Sequence[Range],
                src_ratio: int, dst_ratio: int, dst_length: int) -> Optional[List[Range]]:
        low, high = min(begin, end), max(begin, end)

        offsets: List[Range] = []
        base = 0
        for start, stop in src:
            length = range_length((start, stop))
            overlap_low = max(low, min(start, stop))
            overlap_high = min(high, max(start, stop))
            if overlap_low <= overlap_high:
                if stop >= start:
                    s, e = base + overlap_low - start, base + overlap_high - start
                else:
                    s, e = base + start - overlap_high, base + start - overlap_low
                if src_ratio != dst_ratio:
                    s = (s // src_ratio) * dst_ratio
                    e = (e // src_ratio) * dst_ratio + dst_ratio - 1
                e = min(e, dst_length - 1)
                if s <= e:
                    if offsets and s <= offsets[-1][1] + 1:
                        offsets[-1] = (offsets[-1][0], max(e, offsets[-1][1]))
                    else:
                        offsets.append((s, e))
            base += length

        if not offsets:
            return None

        result: List[Range] = []
        for s, e in offsets:
            base = 0
            for start, stop in dst:
                length = range_length((start, stop))
                a, b = max(s, base), min(e, base + length - 1)
                if a <= b:
                    step = -1 if stop < start else 1
                    result.append((start + step * (a - base), start + step * (b - base)))
                base += length
        return result or None

    def compose(self, other: 'CoordinateMap') -> 'CoordinateMap':
        """
        Chain ``self`` (A to B) with ``other`` (B to C) into A to C.

        Each of this mapping's to ranges is looked up in ``other`` in the
        order it is traversed, so a reverse range on B yields its images on C
        last piece first, each piece reversed.

        Args:
            other: Mapping whose from side is this mapping's to side

        Returns:
            The composed mapping, with ratios reduced to lowest terms

        Raises:
            Unmappable: if part of this mapping's target has no image under
                ``other``, or an image has an inconsistent length
        """
        other_forward = other.is_forward()
        to_ranges: List[Range] = []
        for r in self._to_ranges:
            mapped = other.locate_range(r[0], r[1])
            if mapped is None:
                raise Unmappable(f"Range {r} has no image in {other!r}")
            mapped_length = sum(range_length(m) for m in mapped)
            if range_length(r) * other.to_ratio != mapped_length * other.from_ratio:
                raise Unmappable(f"Range {r} maps to {mapped} with inconsistent length")
            # locate_range answers in other's from order
            direction = _direction(r)
            if direction and (direction > 0) != other_forward:
                mapped = [(end, start) for start, end in reversed(mapped)]
            to_ranges.extend(mapped)

        from_ratio = self._from_ratio * other.from_ratio
        to_ratio = self._to_ratio * other.to_ratio
        divisor = gcd(from_ratio, to_ratio)
        try:
            return CoordinateMap(self._from_ranges, to_ranges,
                                 from_ratio // divisor, to_ratio // divisor)
        except InvalidMapping as e:
            raise Unmappable(str(e)) from e

    def __eq__(self, other) -> bool:
        if not isinstance(other, CoordinateMap):
            return NotImplemented
        return (self._from_ranges == other._from_ranges
                and self._to_ranges == other._to_ranges
                and self._from_ratio == other._from_ratio
                and self._to_ratio == other._to_ratio)

    def __hash__(self) -> int:
        return hash((self._from_ranges, self._to_ranges, self._from_ratio, self._to_ratio))

    def __repr__(self) -> str:
        return (f"CoordinateMap({list(self._from_ranges)}, {list(self._to_ranges)}, "
                f"{self._from_ratio}, {self._to_ratio})")
