"""Pre-stimulus baseline statistics (F0 and SD) per ROI."""

import logging
from typing import Tuple

import numpy as np

from .errors import InsufficientBaselineError
from .types import BaselineStats, RawTrace

logger = logging.getLogger(__name__)


def baseline_window(n_frames: int, settings) -> Tuple[int, int]:
    """Clip the configured baseline range to the trace and enforce its minimum length."""
    start, stop = settings.baseline_frames
    stop = min(stop, n_frames)
    available = max(0, stop - start)
    if available < settings.min_baseline_frames:
        raise InsufficientBaselineError(
            f"Only {available} baseline frames available in range {settings.baseline_frames} "
            f"({n_frames} frames); need at least {settings.min_baseline_frames}"
        )
    return start, stop


def compute_baseline_stats(raw: RawTrace, settings) -> BaselineStats:
    """Compute F0 (mean) and SD over the baseline frames for every ROI.

    NaN samples are ignored within the window; a ROI whose baseline is entirely
    NaN gets NaN for both values. F0 is clamped to `settings.min_f0` so later
    division stays finite.
    """
    start, stop = baseline_window(raw.n_frames, settings)
    window = np.asarray(raw.values[start:stop], dtype=np.float64)

    finite_counts = np.sum(np.isfinite(window), axis=0)
    f0 = np.full(raw.n_rois, np.nan)
    sd = np.full(raw.n_rois, np.nan)
    has_data = finite_counts > 0
    if np.any(has_data):
        f0[has_data] = np.nanmean(window[:, has_data], axis=0)
        sd[has_data] = np.nanstd(window[:, has_data], axis=0)

    # np.fmax would hide NaN; keep NaN for empty ROIs
    clamped = np.where(np.isnan(f0), np.nan, np.maximum(f0, settings.min_f0))
    n_clamped = int(np.sum(f0[has_data] < settings.min_f0))
    if n_clamped:
        logger.warning(f"{raw.source or 'trace'}: F0 clamped to {settings.min_f0:g} for {n_clamped} ROIs")

    return BaselineStats(
        roi_numbers=raw.roi_numbers,
        f0=clamped,
        sd=sd,
        baseline_frames=(start, stop),
    )
