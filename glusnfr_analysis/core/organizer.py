"""Organized (per ROI/trial) and averaged dF/F tables for downstream output."""

import re
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd

from .types import NoiseLevel, NormalizedTrace, PeakCategory, RoiResponse, ThresholdSet

COLUMN_PATTERN = re.compile(r'^ROI(\d+)_T(\d+)$')


def column_name(roi: int, trial: int) -> str:
    return f'ROI{int(roi)}_T{int(trial)}'


def roi_numbers_from_columns(columns: Iterable[str]) -> List[int]:
    """ROI numbers named by `ROI{n}_T{t}` columns, sorted and unique."""
    rois = set()
    for col in columns:
        match = COLUMN_PATTERN.match(str(col))
        if match:
            rois.add(int(match.group(1)))
    return sorted(rois)


def organize_trials(normalized: Mapping[int, NormalizedTrace], rois: Iterable[int],
                    ms_per_frame: float) -> pd.DataFrame:
    """One `Frame` column (time in ms) plus one `ROI{n}_T{t}` column per ROI and trial.

    A ROI absent from a trial gets an all-NaN column so every ROI has the same
    trial layout.
    """
    trials = sorted(normalized)
    n_frames = max(tr.values.shape[0] for tr in normalized.values())
    columns: Dict[str, np.ndarray] = {'Frame': (np.arange(n_frames) + 1) * ms_per_frame}
    for roi in sorted(rois):
        for trial in trials:
            trace = normalized[trial]
            col = np.full(n_frames, np.nan, dtype=trace.values.dtype)
            if roi in trace.roi_numbers:
                data = trace.column(roi)
                col[:data.size] = data
            columns[column_name(roi, trial)] = col
    return pd.DataFrame(columns)


def _data_columns(organized: pd.DataFrame, roi: Optional[int] = None) -> List[str]:
    cols = []
    for col in organized.columns:
        match = COLUMN_PATTERN.match(str(col))
        if match and (roi is None or int(match.group(1)) == roi):
            cols.append(col)
    return cols


def _nonempty(organized: pd.DataFrame, cols: List[str]) -> List[str]:
    return [c for c in cols if organized[c].notna().any()]


def roi_averages(organized: pd.DataFrame) -> pd.DataFrame:
    """Mean across trials per ROI; column `ROI{n}_n{k}` with k contributing trials."""
    out = {'Frame': organized['Frame'].to_numpy()}
    for roi in roi_numbers_from_columns(organized.columns):
        cols = _nonempty(organized, _data_columns(organized, roi))
        if cols:
            out[f'ROI{roi}_n{len(cols)}'] = organized[cols].mean(axis=1, skipna=True).to_numpy()
    return pd.DataFrame(out)


def noise_level_averages(organized: pd.DataFrame,
                         thresholds: Mapping[int, ThresholdSet]) -> pd.DataFrame:
    """Mean of all trial columns split by noise level, plus the overall mean."""
    out = {'Frame': organized['Frame'].to_numpy()}
    low, high, every = [], [], []
    for col in _nonempty(organized, _data_columns(organized)):
        roi = int(COLUMN_PATTERN.match(col).group(1))
        if roi not in thresholds:
            continue
        every.append(col)
        level = thresholds[roi].noise_level
        if level is NoiseLevel.LOW:
            low.append(col)
        elif level is NoiseLevel.HIGH:
            high.append(col)

    for label, cols in (('Low_Noise', low), ('High_Noise', high), ('All', every)):
        if cols:
            out[f'{label}_n{len(cols)}'] = organized[cols].mean(axis=1, skipna=True).to_numpy()
    return pd.DataFrame(out)


def peak_category_tables(organized: pd.DataFrame,
                         responses: Mapping[int, RoiResponse]) -> Dict[str, pd.DataFrame]:
    """Split paired-pulse columns into `both_peaks` and `single_peak` tables."""
    both = ['Frame']
    single = ['Frame']
    for col in _data_columns(organized):
        roi = int(COLUMN_PATTERN.match(col).group(1))
        response = responses.get(roi)
        if response is None or response.category is None:
            continue
        if response.category is PeakCategory.BOTH:
            both.append(col)
        elif response.category.is_single_peak:
            single.append(col)
    return {'both_peaks': organized[both].copy(), 'single_peak': organized[single].copy()}
