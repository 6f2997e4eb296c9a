import numpy as np
import pytest

from glusnfr_analysis.core.errors import InvalidTraceError
from glusnfr_analysis.core.response_filter import (PairedPulseFilter, ResponseFilter, SingleStimulusFilter,
                                                   filtering_statistics, response_filter_for)
from glusnfr_analysis.core.types import ExperimentType, NoiseLevel, PeakCategory, ThresholdSet

STIM = 266
LOW = ThresholdSet(basic_threshold=0.015, upper_threshold=0.015, lower_threshold=0.0075,
                   noise_level=NoiseLevel.LOW, standard_deviation=0.005)


def _trial(*bumps, n_frames=400, amplitude=0.05, width=5):
    trace = np.zeros(n_frames)
    for start in bumps:
        trace[start:start + width] = amplitude
    return trace


def test_factory_picks_filter_by_experiment_type():
    assert isinstance(response_filter_for('1AP'), SingleStimulusFilter)
    assert isinstance(response_filter_for(ExperimentType.PAIRED_PULSE), PairedPulseFilter)
    with pytest.raises(ValueError):
        response_filter_for('2AP')


def test_single_responding_trial_passes(settings):
    traces = {1: _trial(), 2: _trial(268), 3: _trial()}
    resp = SingleStimulusFilter().evaluate(7, traces, LOW, (STIM,), settings)
    assert resp.passes
    assert resp.reason == '1/3 trials responded'
    assert resp.triggered
    assert resp.trials[2][0].passes


def test_no_response_fails(settings):
    resp = SingleStimulusFilter().evaluate(7, {1: _trial(), 2: _trial()}, LOW, (STIM,), settings)
    assert not resp.passes
    assert not resp.triggered


def test_short_spikes_do_not_pass(settings):
    traces = {1: _trial(268, width=1), 2: _trial(270, width=1)}
    resp = SingleStimulusFilter().evaluate(7, traces, LOW, (STIM,), settings)
    assert resp.triggered
    assert not resp.passes


def test_minimum_passing_trials(settings):
    strict = settings.with_overrides(min_passing_trials=2)
    traces = {1: _trial(268), 2: _trial()}
    assert not SingleStimulusFilter().evaluate(7, traces, LOW, (STIM,), strict).passes
    traces[2] = _trial(270)
    assert SingleStimulusFilter().evaluate(7, traces, LOW, (STIM,), strict).passes


def test_small_amplitude_response_rejected(settings):
    quiet = ThresholdSet(basic_threshold=0.003, upper_threshold=0.003, lower_threshold=0.0015,
                         noise_level=NoiseLevel.LOW, standard_deviation=0.001)
    traces = {1: _trial(268, amplitude=0.004)}
    resp = SingleStimulusFilter().evaluate(7, traces, quiet, (STIM,), settings)
    assert resp.trials[1][0].passes
    assert not resp.passes
    assert 'amplitude' in resp.reason


def test_noisy_baseline_rejected(settings):
    noisy = ThresholdSet(basic_threshold=0.18, upper_threshold=0.27, lower_threshold=0.09,
                         noise_level=NoiseLevel.HIGH, standard_deviation=0.06)
    resp = SingleStimulusFilter().evaluate(7, {1: _trial(268, amplitude=1.0)}, noisy, (STIM,), settings)
    assert not resp.passes
    assert 'baseline noise' in resp.reason


def test_unclassified_roi_raises(settings):
    unknown = ThresholdSet(float('nan'), float('nan'), float('nan'), NoiseLevel.UNKNOWN, float('nan'))
    with pytest.raises(InvalidTraceError) as exc:
        SingleStimulusFilter().evaluate(7, {1: _trial(268)}, unknown, (STIM,), settings)
    assert exc.value.roi == 7


def test_all_nan_trials_excluded(settings):
    traces = {1: np.full(400, np.nan), 2: _trial(268)}
    resp = SingleStimulusFilter().evaluate(7, traces, LOW, (STIM,), settings)
    assert resp.excluded_trials == [1]
    assert list(resp.trials) == [2]
    assert resp.passes


def test_roi_without_finite_trials_raises(settings):
    with pytest.raises(InvalidTraceError):
        SingleStimulusFilter().evaluate(7, {1: np.full(400, np.nan)}, LOW, (STIM,), settings)


@pytest.mark.parametrize("bumps, category", [
    ((268, 308), PeakCategory.BOTH),
    ((268,), PeakCategory.PEAK1_ONLY),
    ((308,), PeakCategory.PEAK2_ONLY),
    ((), PeakCategory.NONE),
])
def test_paired_pulse_categories(settings, bumps, category):
    resp = PairedPulseFilter().evaluate(3, {1: _trial(*bumps)}, LOW, (STIM, 306), settings)
    assert resp.category is category
    assert resp.passes is (category is not PeakCategory.NONE)


def test_paired_pulse_needs_two_stimuli(settings):
    with pytest.raises(ValueError):
        PairedPulseFilter().evaluate(3, {1: _trial(268)}, LOW, (STIM,), settings)


def test_filtering_statistics_counts(settings):
    responses = {
        1: PairedPulseFilter().evaluate(1, {1: _trial(268, 308)}, LOW, (STIM, 306), settings),
        2: PairedPulseFilter().evaluate(2, {1: _trial(268)}, LOW, (STIM, 306), settings),
        3: PairedPulseFilter().evaluate(3, {1: _trial()}, LOW, (STIM, 306), settings),
    }
    thresholds = {roi: LOW for roi in responses}
    stats = filtering_statistics('PPF', responses, thresholds, total_rois=4, settings=settings)
    assert stats['passed_rois'] == 2
    assert stats['filter_rate'] == pytest.approx(0.5)
    assert stats['low_noise_rois'] == 2
    assert stats['valid_signals_total'] == 3
    assert stats['peak_categories'] == {'both-peaks': 1, 'peak1-only': 1, 'peak2-only': 0, 'none': 1}


def test_base_filter_is_abstract():
    with pytest.raises(TypeError):
        ResponseFilter()
