"""
Trial plots for filtered ROIs.
"""
from pathlib import Path
from typing import Dict, List, Optional, Union
import logging

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
from matplotlib.figure import Figure
import numpy as np

from .core.organizer import COLUMN_PATTERN
from .core.threshold_cache import require_valid
from .core.types import GroupResult, NoiseLevel

logger = logging.getLogger(__name__)

NOISE_COLORS = {NoiseLevel.LOW: 'tab:blue', NoiseLevel.HIGH: 'tab:orange'}


def _roi_trial_columns(result: GroupResult, roi: int) -> List[str]:
    cols = []
    for col in result.organized.columns:
        match = COLUMN_PATTERN.match(str(col))
        if match and int(match.group(1)) == roi:
            cols.append(col)
    return cols


def plot_roi_trials(result: GroupResult, roi: int,
                    save_path: Optional[Union[str, Path]] = None,
                    dpi: int = 300) -> Figure:
    """
    Plot every trial of one ROI with its mean, the upper threshold and stimulus markers.

    Args:
        result: Successful group result carrying a validated threshold cache
        roi: ROI number present in the cache
        save_path: If provided, save the figure to this path
        dpi: Resolution used when saving

    Returns:
        Matplotlib Figure object

    Raises:
        CacheValidationError: if the group's cache is missing or invalid
        KeyError: if the ROI is not in the cache
    """
    cache = require_valid(result.cache)
    ts = cache[roi]
    cols = _roi_trial_columns(result, roi)
    time_ms = result.organized['Frame'].to_numpy()

    fig, ax = plt.subplots(figsize=(10, 6))
    for col in cols:
        ax.plot(time_ms, result.organized[col].to_numpy(), color='0.7', linewidth=0.8)
    if cols:
        with np.errstate(all='ignore'):
            mean = result.organized[cols].mean(axis=1, skipna=True).to_numpy()
        ax.plot(time_ms, mean, color=NOISE_COLORS.get(ts.noise_level, 'k'), linewidth=1.5,
                label=f'mean (n={len(cols)})')

    ax.axhline(ts.upper_threshold, color='tab:green', linestyle='--', linewidth=1.0,
               label=f'threshold {ts.upper_threshold:.4f} ({ts.noise_level.value} noise)')
    for frame in result.stimulus_frames:
        ax.axvline((frame + 1) * result.ms_per_frame, color='tab:red', linestyle=':', linewidth=1.0)

    ax.set_xlabel('Time (ms)')
    ax.set_ylabel('dF/F')
    ax.set_title(f'{result.group_key} ROI {roi}')
    ax.grid(True, alpha=0.3)
    ax.legend(loc='upper right', fontsize='small')

    if save_path:
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(save_path, dpi=dpi, bbox_inches='tight')
        logger.info(f"Figure saved to {save_path}")

    return fig


def plot_group(result: GroupResult, out_dir: Union[str, Path], dpi: int = 300) -> Dict[int, str]:
    """Save one trial plot per cached ROI under `out_dir/<group_key>/plots/`."""
    cache = require_valid(result.cache)
    plot_dir = Path(out_dir) / result.group_key / 'plots'
    saved = {}
    for roi in cache.roi_numbers:
        path = plot_dir / f'ROI{roi}.png'
        fig = plot_roi_trials(result, roi, path, dpi=dpi)
        plt.close(fig)
        saved[roi] = str(path)
    return saved
