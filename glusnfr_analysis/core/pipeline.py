"""Per-group analysis: baseline -> dF/F -> noise class -> detection -> filter -> cache."""

import logging
import time
from typing import Dict, List, Optional, Sequence, Tuple

from joblib import Parallel, delayed

from .baseline import compute_baseline_stats
from .errors import AnalysisError, InvalidTraceError
from .noise import aggregate_trial_sd, classify_noise, finite_median
from .normalization import baseline_dff_sd, normalize
from .organizer import (noise_level_averages, organize_trials, peak_category_tables,
                        roi_averages, roi_numbers_from_columns)
from .response_filter import filtering_statistics, response_filter_for
from .threshold_cache import EMPTY_CACHE, FilteringStats, create_threshold_cache
from .types import (ExperimentType, GroupData, GroupResult, NormalizedTrace, RawTrace,
                    RoiOutcome, RoiResponse, ThresholdSet)

logger = logging.getLogger(__name__)


def stimulus_frames_for(group: GroupData, trace: RawTrace, settings) -> Tuple[int, ...]:
    """Stimulus frames of a trace; PPF traces with one frame get the second from the interval."""
    frames = tuple(trace.stimulus_frames)
    if group.experiment_type is ExperimentType.PAIRED_PULSE and len(frames) == 1:
        offset = int(round(group.ppf_interval_ms / trace.ms_per_frame))
        frames = (frames[0], frames[0] + offset)
    if group.experiment_type is ExperimentType.SINGLE_STIMULUS:
        frames = frames[:1]
    return frames


def normalize_group(group: GroupData, settings
                    ) -> Tuple[Dict[int, NormalizedTrace], Dict[int, Dict[int, float]], Dict[int, float]]:
    """dF/F per trial, each ROI's baseline dF/F SD per trial and its baseline F0.

    F0 is the median over trials of the per-trial baseline mean.

    Raises InsufficientBaselineError for the whole group when any trial is too short.
    """
    normalized: Dict[int, NormalizedTrace] = {}
    sd_by_roi: Dict[int, Dict[int, float]] = {}
    f0_by_roi: Dict[int, List[float]] = {}
    for trial, raw in sorted(group.trials.items()):
        stats = compute_baseline_stats(raw, settings)
        for roi, f0 in zip(stats.roi_numbers, stats.f0):
            f0_by_roi.setdefault(roi, []).append(float(f0))
        trace = normalize(raw, stats, settings)
        normalized[trial] = trace
        for roi, sd in zip(trace.roi_numbers, baseline_dff_sd(trace, settings)):
            sd_by_roi.setdefault(roi, {})[trial] = float(sd)
    baseline_f0 = {roi: finite_median(values) for roi, values in sorted(f0_by_roi.items())}
    return normalized, sd_by_roi, baseline_f0


def classify_group(sd_by_roi: Dict[int, Dict[int, float]], settings) -> Dict[int, ThresholdSet]:
    """One ThresholdSet per ROI, shared by all its trials."""
    return {roi: classify_noise(aggregate_trial_sd(per_trial.values()), settings)
            for roi, per_trial in sorted(sd_by_roi.items())}


def filter_group(group: GroupData, normalized: Dict[int, NormalizedTrace],
                 thresholds: Dict[int, ThresholdSet], settings
                 ) -> Tuple[Dict[int, RoiResponse], Dict[int, RoiOutcome]]:
    first = group.trials[min(group.trials)]
    stimulus_frames = stimulus_frames_for(group, first, settings)
    ms_per_frame = first.ms_per_frame
    response_filter = response_filter_for(group.experiment_type)

    responses: Dict[int, RoiResponse] = {}
    outcomes: Dict[int, RoiOutcome] = {}
    for roi, ts in thresholds.items():
        traces = {trial: tr.column(roi) for trial, tr in normalized.items() if roi in tr.roi_numbers}
        try:
            response = response_filter.evaluate(roi, traces, ts, stimulus_frames, settings, ms_per_frame)
        except InvalidTraceError as e:
            logger.warning(f"{group.group_key}: ROI {roi} excluded: {e}")
            outcomes[roi] = RoiOutcome(roi=roi, status='excluded', reason=str(e))
            continue
        responses[roi] = response
        outcomes[roi] = RoiOutcome(roi=roi, status='ok', reason=response.reason)
    return responses, outcomes


def analyze_group(group: GroupData, settings) -> GroupResult:
    """Run the full chain for one group and return it with a validated cache.

    Raises InsufficientBaselineError or CacheValidationError; use
    `process_group` to turn those into an error result.
    """
    logger.info(f"Analyzing {group.group_key} ({group.experiment_type.value}, {len(group.trials)} trials)")
    original_rois = group.roi_numbers

    normalized, sd_by_roi, baseline_f0 = normalize_group(group, settings)
    thresholds = classify_group(sd_by_roi, settings)
    responses, outcomes = filter_group(group, normalized, thresholds, settings)

    passed = sorted(roi for roi, r in responses.items() if r.passes)
    first = group.trials[min(group.trials)]
    ms_per_frame = first.ms_per_frame
    organized = organize_trials(normalized, passed, ms_per_frame)

    # The cache is keyed by the ROIs actually present in the organized data
    filtering = FilteringStats.from_threshold_sets({roi: thresholds[roi] for roi in passed})
    cache = create_threshold_cache(roi_numbers_from_columns(organized.columns),
                                   filtering, group.experiment_type)

    averaged = {
        'roi': roi_averages(organized),
        'noise_level': noise_level_averages(organized, cache),
    }
    if group.experiment_type is ExperimentType.PAIRED_PULSE:
        averaged.update(peak_category_tables(organized, responses))

    stats = filtering_statistics(group.experiment_type, responses, thresholds,
                                 len(original_rois), settings)
    logger.info(f"{group.group_key}: {stats['summary']}")

    return GroupResult(
        group_key=group.group_key,
        experiment_type=group.experiment_type,
        status='success',
        thresholds=thresholds,
        baseline_f0={roi: baseline_f0[roi] for roi in cache.roi_numbers},
        responses=responses,
        outcomes=outcomes,
        organized=organized,
        averaged=averaged,
        cache=cache,
        filtering_stats=stats,
        trial_numbers=sorted(group.trials),
        ppf_interval_ms=group.ppf_interval_ms,
        num_original_rois=len(original_rois),
        stimulus_frames=stimulus_frames_for(group, first, settings),
        ms_per_frame=ms_per_frame,
        coverslip_cell=group.coverslip_cell,
        genotype=group.genotype,
    )


def process_group(group: GroupData, settings) -> GroupResult:
    """`analyze_group` with group-level analysis failures recorded instead of raised."""
    try:
        return analyze_group(group, settings)
    except AnalysisError as e:
        logger.error(f"{group.group_key}: {type(e).__name__}: {e}")
        return GroupResult(
            group_key=group.group_key,
            experiment_type=group.experiment_type,
            status='error',
            error=f"{type(e).__name__}: {e}",
            trial_numbers=sorted(group.trials),
            ppf_interval_ms=group.ppf_interval_ms,
            num_original_rois=len(group.roi_numbers),
            coverslip_cell=group.coverslip_cell,
            genotype=group.genotype,
        )


def run_batch(groups: Sequence[GroupData], settings, n_jobs: Optional[int] = None) -> List[GroupResult]:
    """Analyze groups independently; results keep the input order."""
    n_jobs = settings.n_jobs if n_jobs is None else n_jobs
    if not groups:
        return []
    return list(Parallel(n_jobs=n_jobs)(delayed(process_group)(g, settings) for g in groups))


def _performance_category(success_rate: float) -> str:
    if success_rate >= 0.95:
        return 'Excellent'
    if success_rate >= 0.80:
        return 'Good'
    if success_rate >= 0.60:
        return 'Fair'
    return 'Poor'


def summarize_batch(results: Sequence[GroupResult], total_time: Optional[float] = None) -> Dict[str, object]:
    """Batch statistics and quality-control warnings across groups."""
    total = len(results)
    successful = sum(1 for r in results if r.ok)
    total_rois = sum(r.num_rois for r in results)
    original_rois = sum(r.num_original_rois for r in results)
    experiment_types: List[str] = []
    warnings: List[str] = []

    for r in results:
        if r.experiment_type.value not in experiment_types:
            experiment_types.append(r.experiment_type.value)
        if not r.ok:
            if EMPTY_CACHE in r.error:
                warnings.append(f"{r.group_key} has no valid ROIs")
            else:
                warnings.append(f"{r.group_key} failed: {r.error}")
            continue
        if r.num_original_rois and r.num_rois / r.num_original_rois < 0.1:
            warnings.append(f"{r.group_key} has very low filter rate "
                            f"({r.num_rois / r.num_original_rois * 100:.1f}%)")

    success_rate = successful / total if total else 0.0
    summary = {
        'total_groups': total,
        'successful_groups': successful,
        'success_rate': success_rate,
        'total_rois': total_rois,
        'total_original_rois': original_rois,
        'overall_filter_rate': total_rois / original_rois if original_rois else 0.0,
        'experiment_types': experiment_types,
        'performance_category': _performance_category(success_rate),
        'warnings': warnings,
    }
    if total_time is not None:
        summary['total_time_s'] = float(total_time)
        summary['average_time_per_group_s'] = float(total_time) / total if total else 0.0
    return summary


def run_and_summarize(groups: Sequence[GroupData], settings,
                      n_jobs: Optional[int] = None) -> Tuple[List[GroupResult], Dict[str, object]]:
    start = time.perf_counter()
    results = run_batch(groups, settings, n_jobs)
    summary = summarize_batch(results, time.perf_counter() - start)
    for warning in summary['warnings']:
        logger.warning(warning)
    return results, summary
