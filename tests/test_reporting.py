import json

import matplotlib.pyplot as plt
import pandas as pd
import pytest

from glusnfr_analysis.core.errors import CacheValidationError
from glusnfr_analysis.core.pipeline import analyze_group, process_group
from glusnfr_analysis.core.types import GroupData
from glusnfr_analysis.reporting import build_metadata_table, write_batch_summary, write_group_report
from glusnfr_analysis.visualization import plot_group, plot_roi_trials


def _result(settings, make_raw, experiment_type='1AP'):
    if experiment_type == 'PPF':
        raw = make_raw([(0.1, 0.1), (0.1, 0.0)], stimulus_frames=(266, 306))
        group = GroupData('PPF_200ms_Doc2b-WT_Cs1-c1', 'PPF', {1: raw, 2: raw},
                          ppf_interval_ms=200.0, coverslip_cell='Cs1-c1')
    else:
        group = GroupData('CP_Doc2b-WT_Cs1-c1_1AP', '1AP',
                          {1: make_raw([0.1, 0.0, 0.2]), 2: make_raw([0.1, 0.0, 0.0])})
    return analyze_group(group, settings)


def test_metadata_rows_use_cached_thresholds(settings, make_raw):
    result = _result(settings, make_raw)
    table = build_metadata_table(result)
    assert len(table) == 4  # two cached ROIs x two trials
    assert list(table['Column_Name']) == ['ROI1_T1', 'ROI1_T2', 'ROI3_T1', 'ROI3_T2']
    for _, row in table.iterrows():
        ts = result.cache[row['ROI_Number']]
        assert row['Threshold_upper'] == ts.upper_threshold
        assert row['Noise_Level'] == ts.noise_level.value
        assert row['Baseline_Mean'] == pytest.approx(100.0)
        assert row['Baseline_Mean'] == result.baseline_f0[row['ROI_Number']]
    assert set(table['Stimulus_Time_ms']) == {1335.0}
    roi3 = table[table['ROI_Number'] == 3].set_index('Trial_Number')
    assert bool(roi3.loc[1, 'Trial_Passed'])
    assert not bool(roi3.loc[2, 'Trial_Passed'])


def test_paired_pulse_metadata(settings, make_raw):
    table = build_metadata_table(_result(settings, make_raw, 'PPF'))
    assert set(table['Peak_Category']) == {'both-peaks', 'peak1-only'}
    assert set(table['Stimulus2_Time_ms']) == {1535.0}
    assert set(table['CoverslipCell']) == {'Cs1-c1'}
    assert table['Baseline_Mean'].notna().all()
    row = table[table['ROI_Number'] == 2].iloc[0]
    assert bool(row['Peak1_Passed'])
    assert not bool(row['Peak2_Passed'])


def test_failed_group_has_no_report(settings, make_raw):
    group = GroupData('quiet_1AP', '1AP', {1: make_raw([0.0])})
    result = process_group(group, settings)
    with pytest.raises(CacheValidationError):
        build_metadata_table(result)
    with pytest.raises(CacheValidationError):
        plot_roi_trials(result, 1)


def test_write_group_report(tmp_path, settings, make_raw):
    result = _result(settings, make_raw)
    outputs = write_group_report(result, tmp_path)
    group_dir = tmp_path / result.group_key
    assert (group_dir / 'roi_metadata.csv').is_file()
    assert (group_dir / 'averaged_roi.csv').is_file()
    assert pd.read_csv(outputs['organized_csv']).columns[0] == 'Frame'

    cache = json.loads((group_dir / 'threshold_cache.json').read_text())
    assert sorted(cache['rois']) == ['1', '3']
    assert cache['valid'] is True
    stats = json.loads((group_dir / 'filtering_stats.json').read_text())
    assert stats['passed_rois'] == 2

    summary_path = write_batch_summary({'total_groups': 1}, tmp_path)
    assert json.loads(summary_path.read_text()) == {'total_groups': 1}


def test_plot_roi_trials(tmp_path, settings, make_raw):
    result = _result(settings, make_raw)
    fig = plot_roi_trials(result, 1, tmp_path / 'roi1.png', dpi=50)
    assert (tmp_path / 'roi1.png').is_file()
    ax = fig.axes[0]
    threshold_lines = [line for line in ax.get_lines()
                       if line.get_label().startswith('threshold')]
    assert len(threshold_lines) == 1
    assert threshold_lines[0].get_ydata()[0] == pytest.approx(result.cache[1].upper_threshold)
    plt.close(fig)

    with pytest.raises(KeyError):
        plot_roi_trials(result, 2)


def test_plot_group_saves_one_file_per_roi(tmp_path, settings, make_raw):
    result = _result(settings, make_raw, 'PPF')
    saved = plot_group(result, tmp_path, dpi=50)
    assert sorted(saved) == [1, 2]
