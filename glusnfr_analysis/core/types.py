"""Data containers shared by the analysis stages."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd


class ExperimentType(str, Enum):
    SINGLE_STIMULUS = '1AP'
    PAIRED_PULSE = 'PPF'

    @classmethod
    def parse(cls, value) -> 'ExperimentType':
        if isinstance(value, cls):
            return value
        text = str(value).strip().upper()
        for member in cls:
            if member.value == text or member.name == text:
                return member
        raise ValueError(f"Unknown experiment type: {value}")


class NoiseLevel(str, Enum):
    LOW = 'low'
    HIGH = 'high'
    UNKNOWN = 'unknown'


class PeakCategory(str, Enum):
    """Paired-pulse response category of a ROI."""
    BOTH = 'both-peaks'
    PEAK1_ONLY = 'peak1-only'
    PEAK2_ONLY = 'peak2-only'
    NONE = 'none'

    @property
    def is_single_peak(self) -> bool:
        return self in (PeakCategory.PEAK1_ONLY, PeakCategory.PEAK2_ONLY)


@dataclass(frozen=True)
class RawTrace:
    """Raw fluorescence for one recording: values[frame, roi_column]."""
    values: np.ndarray
    roi_numbers: Tuple[int, ...]
    ms_per_frame: float
    stimulus_frames: Tuple[int, ...]
    source: str = ''

    def __post_init__(self):
        values = np.asarray(self.values)
        if values.ndim != 2:
            raise ValueError(f"Raw trace must be 2-D (frames x ROIs), got shape {values.shape}")
        if values.shape[1] != len(self.roi_numbers):
            raise ValueError(
                f"{values.shape[1]} trace columns but {len(self.roi_numbers)} ROI numbers"
            )
        if len(set(self.roi_numbers)) != len(self.roi_numbers):
            raise ValueError(f"Duplicate ROI numbers in {self.source or 'trace'}")
        if not 1 <= len(self.stimulus_frames) <= 2:
            raise ValueError("A trace carries one or two stimulus frames")
        values = values.copy()
        values.setflags(write=False)
        object.__setattr__(self, 'values', values)
        object.__setattr__(self, 'roi_numbers', tuple(int(r) for r in self.roi_numbers))
        object.__setattr__(self, 'stimulus_frames', tuple(int(s) for s in self.stimulus_frames))

    @property
    def n_frames(self) -> int:
        return int(self.values.shape[0])

    @property
    def n_rois(self) -> int:
        return int(self.values.shape[1])

    @property
    def time_ms(self) -> np.ndarray:
        return (np.arange(self.n_frames) + 1) * self.ms_per_frame

    def column(self, roi: int) -> np.ndarray:
        return self.values[:, self.roi_numbers.index(roi)]


@dataclass(frozen=True)
class BaselineStats:
    """Per-ROI baseline; `f0` is already floor-clamped."""
    roi_numbers: Tuple[int, ...]
    f0: np.ndarray
    sd: np.ndarray
    baseline_frames: Tuple[int, int]

    @property
    def dff_sd(self) -> np.ndarray:
        """Baseline SD expressed in dF/F units."""
        return self.sd / self.f0

    def for_roi(self, roi: int) -> Dict[str, float]:
        idx = self.roi_numbers.index(roi)
        return {'f0': float(self.f0[idx]), 'sd': float(self.sd[idx]),
                'dff_sd': float(self.dff_sd[idx])}


@dataclass(frozen=True)
class NormalizedTrace:
    """dF/F0 values with the same shape as the raw trace."""
    values: np.ndarray
    roi_numbers: Tuple[int, ...]
    ms_per_frame: float
    stimulus_frames: Tuple[int, ...]
    source: str = ''

    def column(self, roi: int) -> np.ndarray:
        return self.values[:, self.roi_numbers.index(roi)]


@dataclass(frozen=True)
class ThresholdSet:
    basic_threshold: float
    upper_threshold: float
    lower_threshold: float
    noise_level: NoiseLevel
    standard_deviation: float

    @property
    def is_classified(self) -> bool:
        return self.noise_level is not NoiseLevel.UNKNOWN

    def to_dict(self) -> Dict[str, object]:
        return {
            'noise_level': self.noise_level.value,
            'basic_threshold': self.basic_threshold,
            'upper_threshold': self.upper_threshold,
            'lower_threshold': self.lower_threshold,
            'standard_deviation': self.standard_deviation,
        }


@dataclass(frozen=True)
class Event:
    start_frame: int
    end_frame: int
    duration_ms: float
    valid: bool
    peak_value: float = float('nan')


@dataclass(frozen=True)
class TrialFilterResult:
    passes: bool
    triggered: bool
    events: Tuple[Event, ...]
    reason: str
    peak_response: float = float('nan')
    stimulus_frame: int = -1

    @property
    def valid_events(self) -> int:
        return sum(1 for e in self.events if e.valid)

    @property
    def invalid_events(self) -> int:
        return sum(1 for e in self.events if not e.valid)


@dataclass
class RoiResponse:
    """Aggregated decision for one ROI across its trials (and peaks)."""
    roi: int
    passes: bool
    reason: str
    trials: Dict[int, Tuple[TrialFilterResult, ...]] = field(default_factory=dict)
    excluded_trials: List[int] = field(default_factory=list)
    category: Optional[PeakCategory] = None

    @property
    def triggered(self) -> bool:
        return any(r.triggered for results in self.trials.values() for r in results)


@dataclass(frozen=True)
class RoiOutcome:
    """Result-style per-ROI status; excluded ROIs never reach the cache."""
    roi: int
    status: str
    reason: str = ''

    @property
    def ok(self) -> bool:
        return self.status == 'ok'


@dataclass
class GroupData:
    """All recordings of one experiment group sharing a ROI numbering."""
    group_key: str
    experiment_type: ExperimentType
    trials: Dict[int, RawTrace]
    ppf_interval_ms: Optional[float] = None
    coverslip_cell: str = ''
    genotype: str = 'Unknown'

    def __post_init__(self):
        self.experiment_type = ExperimentType.parse(self.experiment_type)
        if not self.trials:
            raise ValueError(f"Group {self.group_key} has no trials")
        if self.experiment_type is ExperimentType.PAIRED_PULSE and self.ppf_interval_ms is None:
            raise ValueError(f"PPF group {self.group_key} needs an inter-stimulus interval")

    @property
    def roi_numbers(self) -> List[int]:
        rois = set()
        for trace in self.trials.values():
            rois.update(trace.roi_numbers)
        return sorted(rois)


@dataclass
class GroupResult:
    group_key: str
    experiment_type: ExperimentType
    status: str
    error: str = ''
    thresholds: Dict[int, ThresholdSet] = field(default_factory=dict)
    baseline_f0: Dict[int, float] = field(default_factory=dict)  # per cached ROI, median over trials
    responses: Dict[int, RoiResponse] = field(default_factory=dict)
    outcomes: Dict[int, RoiOutcome] = field(default_factory=dict)
    organized: Optional[pd.DataFrame] = None
    averaged: Dict[str, pd.DataFrame] = field(default_factory=dict)
    cache: Optional[object] = None
    filtering_stats: Dict[str, object] = field(default_factory=dict)
    trial_numbers: List[int] = field(default_factory=list)
    ppf_interval_ms: Optional[float] = None
    num_original_rois: int = 0
    stimulus_frames: Tuple[int, ...] = ()
    ms_per_frame: Optional[float] = None
    coverslip_cell: str = ''
    genotype: str = 'Unknown'

    @property
    def ok(self) -> bool:
        return self.status == 'success'

    @property
    def num_rois(self) -> int:
        return len(self.cache) if self.cache is not None else 0
