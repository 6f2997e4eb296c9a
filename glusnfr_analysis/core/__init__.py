"""Core analysis stages for iGluSnFR trace filtering.

Modules:
- baseline: per-ROI F0 and SD over the pre-stimulus window
- normalization: dF/F0 (fixed or rolling-median F0)
- noise: noise level and Schmitt thresholds from baseline SD
- schmitt: hysteresis event detection after each stimulus
- response_filter: per-ROI 1AP / PPF accept-reject decisions
- threshold_cache: validated, read-only ROI -> thresholds lookup
- organizer: organized and averaged dF/F tables
- pipeline: per-group analysis, batch execution and summary
"""

from .errors import (AnalysisError, CacheValidationError, InsufficientBaselineError,
                     InvalidTraceError)
from .baseline import compute_baseline_stats
from .normalization import compute_dff, normalize, rolling_median_f0
from .noise import classify_noise, classify_noise_many
from .schmitt import detect_events, detect_events_multi
from .response_filter import PairedPulseFilter, SingleStimulusFilter, response_filter_for
from .threshold_cache import (FilteringStats, ThresholdCache, build_threshold_cache,
                              create_threshold_cache, validate_threshold_cache)
from .pipeline import analyze_group, run_batch, summarize_batch
