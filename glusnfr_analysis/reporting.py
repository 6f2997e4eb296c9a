"""Per-group report files: threshold metadata, organized and averaged traces, cache and stats JSON.

Every threshold value written here comes from the group's validated
threshold cache.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd

from .core.organizer import column_name
from .core.threshold_cache import require_valid
from .core.types import ExperimentType, GroupResult, TrialFilterResult

logger = logging.getLogger(__name__)


def _write_json(path: Path, payload: Dict[str, object]):
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open('w', encoding='utf-8') as f:
        json.dump(payload, f, indent=2, default=_json_default)


def _json_default(value):
    if isinstance(value, np.generic):
        return value.item()
    if hasattr(value, 'value'):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _stimulus_time_ms(frame: int, ms_per_frame: float) -> float:
    return (int(frame) + 1) * float(ms_per_frame)


def _trial_columns(prefix: str, res: Optional[TrialFilterResult]) -> Dict[str, object]:
    if res is None:
        return {
            f'{prefix}Passed': False,
            f'{prefix}Triggered': False,
            f'{prefix}Event_Count': 0,
            f'{prefix}Valid_Events': 0,
            f'{prefix}Peak_Response': np.nan,
            f'{prefix}Event_Durations_ms': '',
            f'{prefix}Reason': 'excluded',
        }
    return {
        f'{prefix}Passed': res.passes,
        f'{prefix}Triggered': res.triggered,
        f'{prefix}Event_Count': len(res.events),
        f'{prefix}Valid_Events': res.valid_events,
        f'{prefix}Peak_Response': res.peak_response,
        f'{prefix}Event_Durations_ms': ';'.join(f'{e.duration_ms:g}' for e in res.events),
        f'{prefix}Reason': res.reason,
    }


def build_metadata_table(result: GroupResult) -> pd.DataFrame:
    """One row per (ROI, trial) of the filtered data, thresholds read from the cache."""
    cache = require_valid(result.cache)
    ms = result.ms_per_frame
    is_ppf = result.experiment_type is ExperimentType.PAIRED_PULSE
    rows: List[Dict[str, object]] = []

    for roi, ts in cache.items():
        response = result.responses.get(roi)
        for trial in result.trial_numbers:
            trial_results = response.trials.get(trial) if response is not None else None
            row = {
                'ROI_Number': roi,
                'Trial_Number': trial,
                'Column_Name': column_name(roi, trial),
                'Experiment_Type': result.experiment_type.value,
                'Noise_Level': ts.noise_level.value,
                'Basic_Threshold': ts.basic_threshold,
                'Threshold_upper': ts.upper_threshold,
                'Threshold_lower': ts.lower_threshold,
                'Standard_Deviation': ts.standard_deviation,
                'Baseline_Mean': result.baseline_f0.get(roi, np.nan),
                'Genotype': result.genotype,
            }
            if is_ppf:
                row.update({
                    'CoverslipCell': result.coverslip_cell,
                    'PPF_Interval_ms': result.ppf_interval_ms,
                    'Peak_Category': response.category.value if response and response.category else '',
                    'Stimulus1_Time_ms': _stimulus_time_ms(result.stimulus_frames[0], ms),
                    'Stimulus2_Time_ms': _stimulus_time_ms(result.stimulus_frames[1], ms),
                })
                for i, prefix in enumerate(('Peak1_', 'Peak2_')):
                    row.update(_trial_columns(prefix, trial_results[i] if trial_results else None))
            else:
                row['Stimulus_Time_ms'] = _stimulus_time_ms(result.stimulus_frames[0], ms)
                row.update(_trial_columns('Trial_', trial_results[0] if trial_results else None))
            rows.append(row)

    return pd.DataFrame(rows)


def write_group_report(result: GroupResult, out_dir: Union[str, Path]) -> Dict[str, str]:
    """Write all tabular outputs of one successful group under `out_dir/<group_key>/`."""
    cache = require_valid(result.cache)
    group_dir = Path(out_dir) / result.group_key
    group_dir.mkdir(parents=True, exist_ok=True)
    outputs: Dict[str, str] = {}

    metadata_path = group_dir / 'roi_metadata.csv'
    build_metadata_table(result).to_csv(metadata_path, index=False)
    outputs['metadata_csv'] = str(metadata_path)

    organized_path = group_dir / 'organized_dff.csv'
    result.organized.to_csv(organized_path, index=False)
    outputs['organized_csv'] = str(organized_path)

    for name, table in result.averaged.items():
        path = group_dir / f'averaged_{name}.csv'
        table.to_csv(path, index=False)
        outputs[f'averaged_{name}_csv'] = str(path)

    cache_path = group_dir / 'threshold_cache.json'
    cache_path.write_text(cache.to_json(), encoding='utf-8')
    outputs['cache_json'] = str(cache_path)

    stats_path = group_dir / 'filtering_stats.json'
    _write_json(stats_path, result.filtering_stats)
    outputs['filtering_stats_json'] = str(stats_path)

    logger.info(f"Report for {result.group_key} written to {group_dir}")
    return outputs


def write_batch_summary(summary: Dict[str, object], out_dir: Union[str, Path]) -> Path:
    path = Path(out_dir) / 'batch_summary.json'
    _write_json(path, summary)
    return path
