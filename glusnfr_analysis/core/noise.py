"""Adaptive per-ROI noise classification and hysteresis thresholds."""

import logging
from typing import Dict, Iterable, Mapping

import numpy as np

from .types import NoiseLevel, ThresholdSet

logger = logging.getLogger(__name__)

_UNCLASSIFIED = dict(basic_threshold=float('nan'), upper_threshold=float('nan'),
                     lower_threshold=float('nan'), noise_level=NoiseLevel.UNKNOWN)


def classify_noise(sd: float, settings) -> ThresholdSet:
    """Classify a baseline SD (dF/F units) as low or high noise.

    basic = sd * sd_multiplier; low iff basic <= low_noise_cutoff. The upper
    threshold scales with the regime, the lower threshold does not. A missing,
    non-finite or zero SD cannot be classified.
    """
    sd = float(sd)
    if not np.isfinite(sd) or sd <= 0:
        return ThresholdSet(standard_deviation=sd, **_UNCLASSIFIED)

    basic = sd * settings.sd_multiplier
    if basic <= settings.low_noise_cutoff:
        level = NoiseLevel.LOW
        upper = basic * settings.low_upper_multiplier
    else:
        level = NoiseLevel.HIGH
        upper = basic * settings.high_upper_multiplier
    lower = basic * settings.lower_multiplier

    return ThresholdSet(
        basic_threshold=basic,
        upper_threshold=upper,
        lower_threshold=lower,
        noise_level=level,
        standard_deviation=sd,
    )


def classify_noise_many(sd_by_roi: Mapping[int, float], settings) -> Dict[int, ThresholdSet]:
    out = {int(roi): classify_noise(sd, settings) for roi, sd in sorted(sd_by_roi.items())}
    n_low = sum(1 for t in out.values() if t.noise_level is NoiseLevel.LOW)
    n_high = sum(1 for t in out.values() if t.noise_level is NoiseLevel.HIGH)
    logger.debug(f"Noise classification: {n_low} low, {n_high} high, "
                 f"{len(out) - n_low - n_high} unknown (cutoff={settings.low_noise_cutoff})")
    return out


def finite_median(values: Iterable[float]) -> float:
    """Median of the finite values (NaN if none)."""
    values = np.asarray([v for v in values if v is not None], dtype=np.float64)
    values = values[np.isfinite(values)]
    if values.size == 0:
        return float('nan')
    return float(np.median(values))


def aggregate_trial_sd(per_trial_sd: Iterable[float]) -> float:
    """ROI-level SD: median of the finite per-trial baseline SDs."""
    return finite_median(per_trial_sd)
