import numpy as np
import pytest

from glusnfr_analysis.core.baseline import baseline_window, compute_baseline_stats
from glusnfr_analysis.core.errors import InsufficientBaselineError
from glusnfr_analysis.core.normalization import (baseline_dff_sd, compute_dff, normalize,
                                                 rolling_median_f0)
from glusnfr_analysis.core.types import RawTrace


def _raw(values):
    values = np.asarray(values, dtype=float)
    return RawTrace(values=values, roi_numbers=tuple(range(1, values.shape[1] + 1)),
                    ms_per_frame=5.0, stimulus_frames=(266,))


def test_baseline_window_clipped_to_trace(settings):
    assert baseline_window(400, settings) == (0, 200)
    assert baseline_window(150, settings) == (0, 150)


def test_short_trace_raises(settings):
    with pytest.raises(InsufficientBaselineError):
        compute_baseline_stats(_raw(np.ones((50, 2))), settings)


def test_f0_and_sd_from_baseline_frames(settings, make_raw):
    raw = make_raw([0.0, 0.2])
    stats = compute_baseline_stats(raw, settings)
    np.testing.assert_allclose(stats.f0, [100.0, 100.0])
    np.testing.assert_allclose(stats.sd, [0.3, 0.3])
    np.testing.assert_allclose(stats.dff_sd, [0.003, 0.003])
    assert stats.baseline_frames == (0, 200)


def test_f0_clamped_for_zero_baseline(settings):
    values = np.zeros((300, 1))
    values[250:, 0] = 1.0
    stats = compute_baseline_stats(_raw(values), settings)
    assert stats.f0[0] == settings.min_f0
    dff = compute_dff(_raw(values), stats, settings)
    assert np.all(np.isfinite(dff.values))


def test_nan_samples_propagate(settings, make_raw):
    raw = make_raw([0.1])
    values = np.array(raw.values)
    values[10, 0] = np.nan
    values[300, 0] = np.nan
    raw = _raw(values)
    stats = compute_baseline_stats(raw, settings)
    assert np.isfinite(stats.f0[0])
    dff = compute_dff(raw, stats, settings)
    assert np.isnan(dff.values[10, 0])
    assert np.isnan(dff.values[300, 0])
    assert np.isfinite(dff.values[11, 0])


def test_all_nan_roi_keeps_nan(settings):
    values = np.full((300, 2), 100.0)
    values[:, 1] = np.nan
    stats = compute_baseline_stats(_raw(values), settings)
    assert np.isnan(stats.f0[1])
    assert np.isnan(baseline_dff_sd(compute_dff(_raw(values), stats, settings), settings)[1])


def test_dff_dtype_follows_precision_setting(settings, make_raw):
    raw = make_raw([0.1])
    stats = compute_baseline_stats(raw, settings)
    assert compute_dff(raw, stats, settings).values.dtype == np.float32
    double = settings.with_overrides(use_single_precision=False)
    assert compute_dff(raw, stats, double).values.dtype == np.float64


def test_dff_response_amplitude(settings, make_raw):
    raw = make_raw([0.1], jitter=0.0001)
    dff = compute_dff(raw, compute_baseline_stats(raw, settings), settings)
    assert dff.values[270, 0] == pytest.approx(0.1, abs=1e-4)


def test_rolling_median_tracks_slow_drift():
    t = np.arange(600, dtype=float)
    values = (100.0 + 0.01 * t)[:, np.newaxis]
    values[300:305, 0] += 20.0
    f0 = rolling_median_f0(values, window_frames=51)
    assert f0.shape == values.shape
    assert f0[302, 0] == pytest.approx(103.02, abs=0.5)


def test_normalize_dispatches_to_rolling_median(settings, make_raw):
    raw = make_raw([0.1])
    stats = compute_baseline_stats(raw, settings)
    rolling = settings.with_overrides(baseline_method='rolling_median')
    dff = normalize(raw, stats, rolling)
    assert dff.values.shape == raw.values.shape
    assert dff.values[270, 0] > 0.05
