"""Read-only per-group lookup of ROI noise level and thresholds.

Report writers and plot renderers read thresholds only from this cache, so
every output for a ROI shows the same values. The cache is built once per
group from the ROI numbers present in the filtered data, validated, and then
frozen. A cache that fails validation is discarded; nothing here recomputes or
substitutes missing values.
"""

import json
import logging
from collections import OrderedDict
from collections.abc import Mapping as _MappingABC
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from .errors import CacheValidationError
from .types import ExperimentType, NoiseLevel, ThresholdSet

logger = logging.getLogger(__name__)

REQUIRED_MAPS = ('noise_levels', 'upper_thresholds', 'lower_thresholds',
                 'basic_thresholds', 'standard_deviations')
EMPTY_CACHE = 'cache is empty'


@dataclass
class FilteringStats:
    """Per-ROI sub-maps produced by classification and filtering."""
    noise_levels: Dict[int, NoiseLevel] = field(default_factory=dict)
    basic_thresholds: Dict[int, float] = field(default_factory=dict)
    upper_thresholds: Dict[int, float] = field(default_factory=dict)
    lower_thresholds: Dict[int, float] = field(default_factory=dict)
    standard_deviations: Dict[int, float] = field(default_factory=dict)

    @classmethod
    def from_threshold_sets(cls, thresholds: Mapping[int, ThresholdSet]) -> 'FilteringStats':
        stats = cls()
        for roi, ts in thresholds.items():
            roi = int(roi)
            stats.noise_levels[roi] = ts.noise_level
            stats.basic_thresholds[roi] = ts.basic_threshold
            stats.upper_thresholds[roi] = ts.upper_threshold
            stats.lower_thresholds[roi] = ts.lower_threshold
            stats.standard_deviations[roi] = ts.standard_deviation
        return stats

    def missing(self, roi_numbers: Iterable[int]) -> Dict[str, List[int]]:
        """Sub-map name -> ROI numbers it lacks."""
        out = {}
        for name in REQUIRED_MAPS:
            sub = getattr(self, name)
            absent = [roi for roi in roi_numbers if roi not in sub]
            if absent:
                out[name] = absent
        return out

    def entry(self, roi: int) -> ThresholdSet:
        return ThresholdSet(
            basic_threshold=float(self.basic_thresholds[roi]),
            upper_threshold=float(self.upper_thresholds[roi]),
            lower_threshold=float(self.lower_thresholds[roi]),
            noise_level=NoiseLevel(self.noise_levels[roi]),
            standard_deviation=float(self.standard_deviations[roi]),
        )


@dataclass(frozen=True)
class ThresholdCache(_MappingABC):
    """Immutable ROI number -> ThresholdSet map for one experiment group.

    Entries are held in a private dict copy and only exposed through the
    read-only Mapping interface.
    """
    entries: Mapping[int, ThresholdSet]
    has_filtering_stats: bool
    experiment_type: ExperimentType
    valid: bool = False
    error_message: str = ''

    def __post_init__(self):
        object.__setattr__(self, 'entries', OrderedDict(self.entries))

    def __hash__(self) -> int:
        return hash(self.to_json())

    def __getitem__(self, roi: int) -> ThresholdSet:
        return self.entries[roi]

    def __iter__(self) -> Iterator[int]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def roi_numbers(self) -> Tuple[int, ...]:
        return tuple(self.entries)

    def to_dict(self) -> Dict[str, object]:
        return {
            'experiment_type': self.experiment_type.value,
            'has_filtering_stats': self.has_filtering_stats,
            'valid': self.valid,
            'rois': {str(roi): ts.to_dict() for roi, ts in self.entries.items()},
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)

    def to_frame(self) -> pd.DataFrame:
        rows = [{'roi_number': roi, **ts.to_dict()} for roi, ts in self.entries.items()]
        return pd.DataFrame(rows, columns=['roi_number', 'noise_level', 'basic_threshold',
                                           'upper_threshold', 'lower_threshold',
                                           'standard_deviation'])


def build_threshold_cache(roi_numbers: Iterable[int], filtering_stats: Optional[FilteringStats],
                          experiment_type) -> ThresholdCache:
    """Collect one entry per observed ROI; never partially populated.

    If any sub-map lacks any ROI, the returned cache has no entries and
    `has_filtering_stats=False`; validation then rejects it.
    """
    experiment_type = ExperimentType.parse(experiment_type)
    rois = sorted({int(r) for r in roi_numbers})

    if filtering_stats is None:
        return ThresholdCache({}, False, experiment_type,
                              error_message='No filtering statistics available')

    missing = filtering_stats.missing(rois)
    if missing:
        detail = '; '.join(f"{name}: {values}" for name, values in missing.items())
        logger.error(f"Incomplete filtering statistics ({detail})")
        return ThresholdCache({}, False, experiment_type,
                              error_message=f'Incomplete filtering statistics ({detail})')

    entries = OrderedDict((roi, filtering_stats.entry(roi)) for roi in rois)
    return ThresholdCache(entries, True, experiment_type)


def cache_problems(cache: ThresholdCache, data_roi_numbers: Iterable[int]) -> List[str]:
    problems: List[str] = []
    data_rois = {int(r) for r in data_roi_numbers}

    if len(cache) == 0:
        problems.append(cache.error_message or EMPTY_CACHE)
    if not cache.has_filtering_stats:
        problems.append('filtering statistics incomplete')

    for roi, ts in cache.entries.items():
        if ts.noise_level is NoiseLevel.UNKNOWN:
            problems.append(f'ROI {roi}: noise level unknown')
            continue
        upper, lower = ts.upper_threshold, ts.lower_threshold
        if not (np.isfinite(upper) and np.isfinite(lower) and upper >= lower > 0):
            problems.append(f'ROI {roi}: thresholds violate upper >= lower > 0 '
                            f'(upper={upper}, lower={lower})')

    cache_rois = set(cache.entries)
    if cache_rois - data_rois:
        problems.append(f'ROIs not in data: {sorted(cache_rois - data_rois)}')
    if data_rois - cache_rois and len(cache) > 0:
        problems.append(f'ROIs missing from cache: {sorted(data_rois - cache_rois)}')
    return problems


def validate_threshold_cache(cache: ThresholdCache, data_roi_numbers: Iterable[int]) -> ThresholdCache:
    """Return the cache marked valid, or raise `CacheValidationError`."""
    problems = cache_problems(cache, data_roi_numbers)
    if problems:
        raise CacheValidationError(
            f"Threshold cache invalid for {cache.experiment_type.value} group: {problems[0]}",
            problems=problems,
        )
    return ThresholdCache(cache.entries, cache.has_filtering_stats, cache.experiment_type, valid=True)


def create_threshold_cache(roi_numbers: Iterable[int], filtering_stats: Optional[FilteringStats],
                           experiment_type) -> ThresholdCache:
    """Build and validate in one step; the ROI numbers must come from the organized data."""
    rois = list(roi_numbers)
    cache = build_threshold_cache(rois, filtering_stats, experiment_type)
    cache = validate_threshold_cache(cache, rois)
    logger.info(f"Threshold cache: {len(cache)} ROIs ({cache.experiment_type.value})")
    return cache


def require_valid(cache: Optional[ThresholdCache]) -> ThresholdCache:
    """Guard used by consumers before reading thresholds."""
    if cache is None or not cache.valid:
        raise CacheValidationError('Threshold cache missing or not validated')
    return cache
