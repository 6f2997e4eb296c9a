"""dF/F0 normalization of raw fluorescence traces."""

import logging

import numpy as np
from scipy.ndimage import median_filter

from .baseline import baseline_window
from .types import BaselineStats, NormalizedTrace, RawTrace

logger = logging.getLogger(__name__)


def _dtype(settings):
    return np.float32 if settings.use_single_precision else np.float64


def compute_dff(raw: RawTrace, stats: BaselineStats, settings) -> NormalizedTrace:
    """Return (raw - F0) / F0 for all frames and ROIs.

    NaN samples stay NaN. F0 comes from `stats` and is already clamped.
    """
    if tuple(stats.roi_numbers) != tuple(raw.roi_numbers):
        raise ValueError("Baseline stats do not match the trace ROI layout")

    values = np.asarray(raw.values, dtype=np.float64)
    f0 = stats.f0[np.newaxis, :]
    with np.errstate(invalid='ignore'):
        dff = ((values - f0) / f0).astype(_dtype(settings))
    dff.setflags(write=False)

    return NormalizedTrace(
        values=dff,
        roi_numbers=raw.roi_numbers,
        ms_per_frame=raw.ms_per_frame,
        stimulus_frames=raw.stimulus_frames,
        source=raw.source,
    )


def _rolling_std(values: np.ndarray, window: int) -> np.ndarray:
    kernel = np.ones(window) / window
    padded = np.pad(values, (window // 2, window - 1 - window // 2), mode='edge')
    mean = np.convolve(padded, kernel, mode='valid')
    mean_sq = np.convolve(padded ** 2, kernel, mode='valid')
    return np.sqrt(np.clip(mean_sq - mean ** 2, 0.0, None))


def rolling_median_f0(values: np.ndarray, window_frames: int,
                      outlier_sigma: float = 2.5, max_iterations: int = 3) -> np.ndarray:
    """Time-varying F0 from an iteratively refined rolling median.

    Each pass takes a rolling median per ROI (edges extended). Between passes,
    samples whose residual exceeds `outlier_sigma` rolling SDs are replaced by
    the current baseline so transients do not drag the next estimate up.
    """
    values = np.asarray(values, dtype=np.float64)
    window = max(3, int(window_frames))
    if window % 2 == 0:
        window += 1

    current = values.copy()
    baseline = np.empty_like(values)
    for iteration in range(max(1, max_iterations)):
        for col in range(values.shape[1]):
            trace = current[:, col]
            if not np.any(np.isfinite(trace)):
                baseline[:, col] = np.nan
                continue
            filled = np.where(np.isfinite(trace), trace, np.nanmedian(trace))
            baseline[:, col] = median_filter(filled, size=window, mode='nearest')

        if iteration < max_iterations - 1:
            residuals = current - baseline
            n_outliers = 0
            for col in range(values.shape[1]):
                res = residuals[:, col]
                if not np.any(np.isfinite(res)):
                    continue
                spread = _rolling_std(np.nan_to_num(res), window)
                mask = np.abs(res) > outlier_sigma * spread
                n_outliers += int(np.sum(mask))
                current[mask, col] = baseline[mask, col]
            logger.debug(f"Rolling median pass {iteration + 1}: {n_outliers} outliers replaced")
    return baseline


def compute_dff_rolling(raw: RawTrace, stats: BaselineStats, settings) -> NormalizedTrace:
    """dF/F0 against a rolling-median F0 instead of the baseline-window mean."""
    f0 = rolling_median_f0(
        raw.values,
        settings.rolling_window_frames,
        outlier_sigma=settings.rolling_outlier_sigma,
        max_iterations=settings.rolling_max_iterations,
    )
    f0 = np.where(np.isnan(f0), np.nan, np.maximum(f0, settings.min_f0))
    values = np.asarray(raw.values, dtype=np.float64)
    with np.errstate(invalid='ignore'):
        dff = ((values - f0) / f0).astype(_dtype(settings))
    dff.setflags(write=False)
    return NormalizedTrace(
        values=dff,
        roi_numbers=raw.roi_numbers,
        ms_per_frame=raw.ms_per_frame,
        stimulus_frames=raw.stimulus_frames,
        source=raw.source,
    )


def normalize(raw: RawTrace, stats: BaselineStats, settings) -> NormalizedTrace:
    """Dispatch on `settings.baseline_method`."""
    if settings.baseline_method == 'rolling_median':
        return compute_dff_rolling(raw, stats, settings)
    return compute_dff(raw, stats, settings)


def baseline_dff_sd(trace: NormalizedTrace, settings) -> np.ndarray:
    """SD of each ROI's dF/F over the baseline window (NaN for empty ROIs)."""
    start, stop = baseline_window(trace.values.shape[0], settings)
    window = np.asarray(trace.values[start:stop], dtype=np.float64)
    out = np.full(window.shape[1], np.nan)
    has_data = np.any(np.isfinite(window), axis=0)
    if np.any(has_data):
        out[has_data] = np.nanstd(window[:, has_data], axis=0)
    return out
