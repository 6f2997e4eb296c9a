"""Per-ROI accept/reject decisions from per-trial detector results."""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Sequence, Tuple

import numpy as np

from .errors import InvalidTraceError
from .schmitt import detect_events, detect_events_multi
from .types import (ExperimentType, NoiseLevel, PeakCategory, RoiResponse,
                    ThresholdSet, TrialFilterResult)

logger = logging.getLogger(__name__)


def _is_empty(trace: np.ndarray) -> bool:
    return not np.any(np.isfinite(trace))


class ResponseFilter(ABC):
    """Common contract for experiment-type specific ROI filters."""

    experiment_type: ExperimentType = None

    def evaluate(self, roi: int, traces_by_trial: Mapping[int, np.ndarray],
                 thresholds: ThresholdSet, stimulus_frames: Sequence[int],
                 settings, ms_per_frame: float = None) -> RoiResponse:
        if not thresholds.is_classified:
            raise InvalidTraceError(f"ROI {roi}: baseline SD not usable for classification", roi=roi)

        if thresholds.standard_deviation > settings.max_baseline_noise:
            return RoiResponse(
                roi=roi, passes=False,
                reason=(f'baseline noise {thresholds.standard_deviation:.4f} > '
                        f'{settings.max_baseline_noise:g}'),
                category=self._rejected_category(),
            )

        evaluable: Dict[int, np.ndarray] = {}
        excluded: List[int] = []
        for trial, trace in sorted(traces_by_trial.items()):
            trace = np.asarray(trace, dtype=np.float64)
            if _is_empty(trace):
                excluded.append(trial)
                logger.info(f"ROI {roi} trial {trial}: all-NaN trace excluded")
            else:
                evaluable[trial] = trace

        if not evaluable:
            raise InvalidTraceError(f"ROI {roi}: no trial with finite samples", roi=roi)

        results = {trial: self._detect(trace, thresholds, stimulus_frames, settings, ms_per_frame)
                   for trial, trace in evaluable.items()}
        response = self._aggregate(roi, results, settings)
        response.excluded_trials = excluded
        return response

    def _rejected_category(self):
        return None

    @abstractmethod
    def _detect(self, trace, thresholds, stimulus_frames, settings, ms_per_frame) -> Tuple[TrialFilterResult, ...]:
        """Detector results for one trial, one per stimulus."""

    @abstractmethod
    def _aggregate(self, roi: int, results: Dict[int, Tuple[TrialFilterResult, ...]], settings) -> RoiResponse:
        """Combine per-trial results into the ROI decision."""


def _responds(result: TrialFilterResult, settings) -> bool:
    return (result.passes and np.isfinite(result.peak_response)
            and result.peak_response >= settings.min_response_amplitude)


class SingleStimulusFilter(ResponseFilter):
    """1AP: enough trials must show a valid event with sufficient amplitude."""

    experiment_type = ExperimentType.SINGLE_STIMULUS

    def _detect(self, trace, thresholds, stimulus_frames, settings, ms_per_frame):
        return (detect_events(trace, stimulus_frames[0], thresholds, settings, ms_per_frame),)

    def _aggregate(self, roi, results, settings):
        n_trials = len(results)
        n_responding = sum(1 for (r,) in results.values() if _responds(r, settings))
        fraction = n_responding / n_trials
        passes = (n_responding >= settings.min_passing_trials
                  and fraction >= settings.min_passing_fraction)
        if passes:
            reason = f'{n_responding}/{n_trials} trials responded'
        elif n_responding == 0 and any(r.passes for (r,) in results.values()):
            reason = f'response below {settings.min_response_amplitude:g} amplitude'
        else:
            reason = (f'{n_responding}/{n_trials} trials responded '
                      f'(need {settings.min_passing_trials}, fraction {settings.min_passing_fraction:g})')
        return RoiResponse(roi=roi, passes=passes, reason=reason, trials=results)


class PairedPulseFilter(ResponseFilter):
    """PPF: detect after each pulse and categorise the ROI by which peaks responded."""

    experiment_type = ExperimentType.PAIRED_PULSE

    def _rejected_category(self):
        return PeakCategory.NONE

    def _detect(self, trace, thresholds, stimulus_frames, settings, ms_per_frame):
        if len(stimulus_frames) != 2:
            raise ValueError(f"Paired-pulse detection needs two stimulus frames, got {stimulus_frames}")
        return detect_events_multi(trace, stimulus_frames, thresholds, settings, ms_per_frame)

    def _aggregate(self, roi, results, settings):
        peak1 = any(_responds(r[0], settings) for r in results.values())
        peak2 = any(_responds(r[1], settings) for r in results.values())
        if peak1 and peak2:
            category = PeakCategory.BOTH
        elif peak1:
            category = PeakCategory.PEAK1_ONLY
        elif peak2:
            category = PeakCategory.PEAK2_ONLY
        else:
            category = PeakCategory.NONE
        return RoiResponse(roi=roi, passes=category is not PeakCategory.NONE,
                           reason=category.value, trials=results, category=category)


_FILTERS = {
    ExperimentType.SINGLE_STIMULUS: SingleStimulusFilter,
    ExperimentType.PAIRED_PULSE: PairedPulseFilter,
}


def response_filter_for(experiment_type) -> ResponseFilter:
    return _FILTERS[ExperimentType.parse(experiment_type)]()


def filtering_statistics(experiment_type, responses: Mapping[int, RoiResponse],
                         thresholds: Mapping[int, ThresholdSet],
                         total_rois: int, settings) -> Dict[str, object]:
    """Summary counts for one group's filtering run."""
    experiment_type = ExperimentType.parse(experiment_type)
    passed = [roi for roi, r in responses.items() if r.passes]
    all_results = [res for r in responses.values()
                   for trial in r.trials.values() for res in trial]
    valid_total = sum(res.valid_events for res in all_results)
    invalid_total = sum(res.invalid_events for res in all_results)
    triggered = sum(1 for r in responses.values() if r.triggered)

    stats: Dict[str, object] = {
        'experiment_type': experiment_type.value,
        'method': 'Schmitt Trigger',
        'total_rois': int(total_rois),
        'evaluated_rois': len(responses),
        'passed_rois': len(passed),
        'filter_rate': len(passed) / total_rois if total_rois else 0.0,
        'low_noise_rois': sum(1 for roi in passed if thresholds[roi].noise_level is NoiseLevel.LOW),
        'high_noise_rois': sum(1 for roi in passed if thresholds[roi].noise_level is NoiseLevel.HIGH),
        'triggered_rois': triggered,
        'valid_signals_total': valid_total,
        'invalid_signals_total': invalid_total,
        'signal_validity_rate': (valid_total / (valid_total + invalid_total)
                                 if (valid_total + invalid_total) else 0.0),
        'config_used': {
            'upper_multiplier_low_noise': settings.low_upper_multiplier,
            'upper_multiplier_high_noise': settings.high_upper_multiplier,
            'lower_multiplier': settings.lower_multiplier,
            'min_event_duration_ms': settings.min_event_duration_ms,
            'low_noise_cutoff': settings.low_noise_cutoff,
        },
    }
    if experiment_type is ExperimentType.PAIRED_PULSE:
        counts = {c.value: 0 for c in PeakCategory}
        for r in responses.values():
            if r.category is not None:
                counts[r.category.value] += 1
        stats['peak_categories'] = counts

    stats['summary'] = (
        f"{experiment_type.value} Schmitt: {stats['passed_rois']}/{total_rois} ROIs passed "
        f"({stats['filter_rate'] * 100:.1f}%), {triggered} triggered, "
        f"{stats['signal_validity_rate'] * 100:.1f}% signals valid"
    )
    return stats
