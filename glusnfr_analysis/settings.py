"""Analysis settings for iGluSnFR trace classification."""

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional, Tuple

from config.config_loader import apply_overrides, load_config

BASELINE_METHODS = ('mean', 'rolling_median')


@dataclass(frozen=True)
class AnalysisSettings:
    """Immutable numeric constants passed explicitly to every analysis call."""
    # Timing
    ms_per_frame: float = 5.0                  # 200 Hz
    stimulus_frame: int = 266                  # 0-based frame of the (first) stimulus
    baseline_frames: Tuple[int, int] = (0, 200)  # half-open frame range
    post_stimulus_window: int = 30             # frames searched after a stimulus
    # Thresholds
    sd_multiplier: float = 3.0
    low_noise_cutoff: float = 0.02
    low_upper_multiplier: float = 1.0
    high_upper_multiplier: float = 1.5
    lower_multiplier: float = 0.5
    min_f0: float = 1e-6
    # Filtering
    min_event_duration_ms: float = 10.0
    min_response_amplitude: float = 0.005
    max_baseline_noise: float = 0.05
    min_passing_trials: int = 1
    min_passing_fraction: float = 0.0
    # Validation
    min_baseline_frames: int = 100
    # Processing
    use_single_precision: bool = True
    baseline_method: str = 'mean'
    rolling_window_ms: float = 750.0
    rolling_outlier_sigma: float = 2.5
    rolling_max_iterations: int = 3
    n_jobs: int = 1
    # Output
    write_plots: bool = True
    dpi: int = 300

    def __post_init__(self):
        start, stop = self.baseline_frames
        if start < 0 or stop <= start:
            raise ValueError(f"Invalid baseline frame range: {self.baseline_frames}")
        if self.ms_per_frame <= 0:
            raise ValueError(f"ms_per_frame must be positive, got {self.ms_per_frame}")
        if self.post_stimulus_window < 1:
            raise ValueError("post_stimulus_window must be at least one frame")
        if self.sd_multiplier <= 0 or self.lower_multiplier <= 0:
            raise ValueError("Threshold multipliers must be positive")
        if self.lower_multiplier > min(self.low_upper_multiplier, self.high_upper_multiplier):
            raise ValueError("lower_multiplier cannot exceed the upper multipliers")
        if self.min_f0 <= 0:
            raise ValueError("min_f0 must be positive")
        if self.baseline_method not in BASELINE_METHODS:
            raise ValueError(f"Unknown baseline method: {self.baseline_method}")

    @property
    def sampling_rate_hz(self) -> float:
        return 1000.0 / self.ms_per_frame

    @property
    def stimulus_time_ms(self) -> float:
        return (self.stimulus_frame + 1) * self.ms_per_frame

    @property
    def rolling_window_frames(self) -> int:
        return max(3, int(round(self.rolling_window_ms / self.ms_per_frame)))

    def with_overrides(self, **kwargs) -> 'AnalysisSettings':
        return replace(self, **kwargs)

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> 'AnalysisSettings':
        """Build settings from the nested YAML layout; missing keys keep defaults."""
        config = config or {}
        timing = config.get('timing', {}) or {}
        thresholds = config.get('thresholds', {}) or {}
        filtering = config.get('filtering', {}) or {}
        validation = config.get('validation', {}) or {}
        processing = config.get('processing', {}) or {}
        rolling = processing.get('rolling_median', {}) or {}
        output = config.get('output', {}) or {}

        values: Dict[str, Any] = {}

        def _take(section: Dict[str, Any], key: str, name: Optional[str] = None, cast=float):
            if key in section and section[key] is not None:
                values[name or key] = cast(section[key])

        _take(timing, 'ms_per_frame')
        _take(timing, 'stimulus_frame', cast=int)
        _take(timing, 'post_stimulus_window', cast=int)
        if timing.get('baseline_frames') is not None:
            start, stop = timing['baseline_frames']
            values['baseline_frames'] = (int(start), int(stop))

        for key in ('sd_multiplier', 'low_noise_cutoff', 'low_upper_multiplier',
                    'high_upper_multiplier', 'lower_multiplier', 'min_f0'):
            _take(thresholds, key)

        for key in ('min_event_duration_ms', 'min_response_amplitude',
                    'max_baseline_noise', 'min_passing_fraction'):
            _take(filtering, key)
        _take(filtering, 'min_passing_trials', cast=int)

        _take(validation, 'min_baseline_frames', cast=int)

        _take(processing, 'use_single_precision', cast=bool)
        _take(processing, 'baseline_method', cast=str)
        _take(processing, 'n_jobs', cast=int)
        _take(rolling, 'window_ms', 'rolling_window_ms')
        _take(rolling, 'outlier_sigma', 'rolling_outlier_sigma')
        _take(rolling, 'max_iterations', 'rolling_max_iterations', cast=int)

        _take(output, 'write_plots', cast=bool)
        _take(output, 'dpi', cast=int)

        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_settings(config_path: Optional[str] = None,
                  overrides: Optional[Dict[str, Any]] = None) -> AnalysisSettings:
    """Load the YAML config (default `config/config.yaml`) into `AnalysisSettings`."""
    config = load_config(config_path)
    if overrides:
        config = apply_overrides(config, overrides)
    return AnalysisSettings.from_config(config)
