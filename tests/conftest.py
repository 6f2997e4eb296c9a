import numpy as np
import pytest

from glusnfr_analysis.core.types import RawTrace
from glusnfr_analysis.settings import AnalysisSettings

STIM = 266


def build_raw(amplitudes, n_frames=400, f0=100.0, jitter=0.3, stimulus_frames=(STIM,),
              onsets=None, width=10, roi_numbers=None, source='synthetic'):
    """Alternating +/-jitter around f0 (baseline dF/F SD = jitter / f0).

    `amplitudes[i]` adds a dF/F step of that size to ROI column i for `width`
    frames starting two frames after each stimulus (or at `onsets`).
    """
    n_rois = len(amplitudes)
    sign = np.where(np.arange(n_frames) % 2 == 0, 1.0, -1.0)
    values = np.tile((f0 + jitter * sign)[:, np.newaxis], (1, n_rois))
    starts = onsets if onsets is not None else [s + 2 for s in stimulus_frames]
    for i, amp in enumerate(amplitudes):
        if np.ndim(amp) == 0:
            amp = [amp] * len(starts)
        for start, a in zip(starts, amp):
            values[start:start + width, i] += a * f0
    return RawTrace(
        values=values,
        roi_numbers=tuple(roi_numbers or range(1, n_rois + 1)),
        ms_per_frame=5.0,
        stimulus_frames=tuple(stimulus_frames),
        source=source,
    )


@pytest.fixture
def settings():
    return AnalysisSettings()


@pytest.fixture
def make_raw():
    return build_raw
