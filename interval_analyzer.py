"""
tunebench - Interval / Relation Analyzer
Musical relationships between the fundamentals of several sources, and how
much their harmonics pile up in the same part of the spectrum.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Sequence

from config import IntervalConfig
from logging_utils import log_event

# (ratio, name) - ratios are the rounded equal-tempered values
INTERVAL_TABLE = (
    (1.0, 'unison'),
    (1.06, 'semitone'),
    (1.12, 'whole tone'),
    (1.19, 'minor third'),
    (1.26, 'major third'),
    (1.33, 'fourth'),
    (1.41, 'tritone'),
    (1.5, 'fifth'),
    (1.68, 'major sixth'),
    (1.78, 'minor seventh'),
    (1.89, 'major seventh'),
    (2.0, 'octave'),
)


class Consonance(Enum):
    BEATING = 'beating'              # Near-unison, audible beats likely
    TENSE = 'tense'
    MILDLY_TENSE = 'mildly tense'
    CONSONANT = 'consonant'          # Fifth
    VERY_CONSONANT = 'very consonant'  # Octave
    NEUTRAL = 'neutral'


@dataclass(frozen=True)
class IntervalMatch:
    ratio: float          # Measured ratio (>= 1)
    name: str             # Nearest table entry
    table_ratio: float
    matched: bool         # |ratio - table_ratio| < tolerance

    @property
    def deviation(self) -> float:
        return self.ratio - self.table_ratio


@dataclass(frozen=True)
class IntervalRelation:
    source_a: int
    source_b: int
    frequency_a: float
    frequency_b: float
    interval: IntervalMatch
    consonance: Consonance

    @property
    def ratio(self) -> float:
        return self.interval.ratio


@dataclass(frozen=True)
class RelationAnalysis:
    relations: list = field(default_factory=list)
    overlap_ratio: float = 0.0


def frequency_ratio(f1: float, f2: float) -> float:
    if f1 <= 0 or f2 <= 0:
        raise ValueError(f"Frequencies must be positive, got {f1} and {f2}")
    return max(f1, f2) / min(f1, f2)


def classify_interval(ratio: float, tolerance: float = 0.1) -> IntervalMatch:
    """Nearest named interval for a frequency ratio (ratios below 1 are inverted)."""
    if ratio <= 0 or not math.isfinite(ratio):
        raise ValueError(f"Ratio must be a positive number, got {ratio}")
    if ratio < 1.0:
        ratio = 1.0 / ratio
    table_ratio, name = min(INTERVAL_TABLE, key=lambda entry: abs(ratio - entry[0]))
    return IntervalMatch(
        ratio=ratio,
        name=name,
        table_ratio=table_ratio,
        matched=abs(ratio - table_ratio) < tolerance,
    )


def describe_consonance(ratio: float) -> Consonance:
    if ratio <= 1.1:
        return Consonance.BEATING
    if ratio <= 1.26:
        return Consonance.TENSE
    if ratio <= 1.34:
        return Consonance.MILDLY_TENSE
    if abs(ratio - 1.5) < 0.1:
        return Consonance.CONSONANT
    if abs(ratio - 2.0) < 0.1:
        return Consonance.VERY_CONSONANT
    return Consonance.NEUTRAL


def relate_sources(fundamentals: Sequence[float], tolerance: float = 0.1,
                   indices: Optional[Sequence[int]] = None) -> list[IntervalRelation]:
    """Classify every pair (i < j) of fundamentals.

    `indices` names the sources (defaults to 0..N-1) so slot numbers survive
    when some inputs had no pitch.
    """
    if indices is None:
        indices = list(range(len(fundamentals)))
    if len(indices) != len(fundamentals):
        raise ValueError("indices and fundamentals differ in length")

    relations = []
    for i in range(len(fundamentals)):
        for j in range(i + 1, len(fundamentals)):
            ratio = frequency_ratio(fundamentals[i], fundamentals[j])
            relations.append(IntervalRelation(
                source_a=indices[i],
                source_b=indices[j],
                frequency_a=float(fundamentals[i]),
                frequency_b=float(fundamentals[j]),
                interval=classify_interval(ratio, tolerance),
                consonance=describe_consonance(ratio),
            ))
    return relations


def overlap_bin(frequency: float, bins: int = 120,
                min_hz: float = 20.0, max_hz: float = 20000.0) -> int:
    """Log-spaced bin index of a frequency, clamped to [0, bins - 1]."""
    position = math.log(frequency / min_hz) / math.log(max_hz / min_hz)
    return min(bins - 1, max(0, int(math.floor(position * bins))))


def harmonic_overlap(sources: Sequence[Iterable], bins: int = 120,
                     min_hz: float = 20.0, max_hz: float = 20000.0) -> float:
    """Share of occupied log bins that hold harmonics from more than one source.

    Each source is an iterable of harmonic frequencies (Hz) or of objects with
    a `frequency` attribute, e.g. a HarmonicSet.
    """
    if len(sources) < 2:
        return 0.0

    contributors: dict[int, set] = {}
    for source_index, harmonics in enumerate(sources):
        for harmonic in harmonics:
            frequency = float(getattr(harmonic, 'frequency', harmonic))
            if frequency <= 0:
                continue
            contributors.setdefault(overlap_bin(frequency, bins, min_hz, max_hz), set()).add(source_index)

    occupied = len(contributors)
    if occupied == 0:
        return 0.0
    shared = sum(1 for members in contributors.values() if len(members) > 1)
    return shared / occupied


class IntervalAnalyzer:
    def __init__(self, config: Optional[IntervalConfig] = None):
        self.config = config or IntervalConfig()

    def analyze(self, fundamentals: Sequence[float], harmonic_sets: Sequence[Iterable],
                indices: Optional[Sequence[int]] = None) -> RelationAnalysis:
        cfg = self.config
        relations = relate_sources(fundamentals, cfg.match_tolerance, indices)
        overlap = harmonic_overlap(harmonic_sets, cfg.overlap_bins, cfg.overlap_min_hz, cfg.overlap_max_hz)
        for relation in relations:
            log_event("DEBUG", "Intervals", "Pair classified",
                      a=relation.source_a, b=relation.source_b,
                      ratio=f"{relation.ratio:.3f}", interval=relation.interval.name,
                      matched=relation.interval.matched)
        return RelationAnalysis(relations=relations, overlap_ratio=overlap)
