"""Schmitt-trigger (hysteresis) event detection in post-stimulus windows.

A run switches on when the dF/F trace rises above the upper threshold and
switches off when it falls below the lower threshold, or when the search
window ends. Every run becomes an `Event`; it is valid when it lasts at least
`min_event_duration_ms`. A one-frame noise spike therefore triggers the
detector but does not pass it, while a sustained response only has to stay
above the lower threshold once it has crossed the upper one.
"""

import logging
from enum import Enum
from typing import List, Sequence, Tuple

import numpy as np

from .types import Event, ThresholdSet, TrialFilterResult

logger = logging.getLogger(__name__)

__all__ = ['search_window', 'find_events', 'detect_events', 'detect_events_multi']


class _State(Enum):
    BELOW = 0
    ABOVE = 1


def search_window(stimulus_frame: int, n_frames: int, settings) -> Tuple[int, int]:
    """Frames `stimulus_frame + 1 .. stimulus_frame + post_stimulus_window`, half-open, clipped."""
    start = max(0, int(stimulus_frame) + 1)
    stop = min(int(n_frames), int(stimulus_frame) + 1 + settings.post_stimulus_window)
    return start, max(start, stop)


def find_events(trace: np.ndarray, start: int, stop: int,
                upper: float, lower: float, ms_per_frame: float,
                min_duration_ms: float) -> List[Event]:
    """Run the two-state machine over trace[start:stop] and return every ABOVE run."""
    events: List[Event] = []
    state = _State.BELOW
    run_start = -1
    run_peak = -np.inf

    def _close(end_frame: int):
        duration = (end_frame - run_start + 1) * ms_per_frame
        events.append(Event(
            start_frame=run_start,
            end_frame=end_frame,
            duration_ms=float(duration),
            valid=bool(duration >= min_duration_ms),
            peak_value=float(run_peak),
        ))

    for t in range(start, stop):
        value = trace[t]
        if state is _State.BELOW:
            if np.isfinite(value) and value > upper:
                state = _State.ABOVE
                run_start = t
                run_peak = float(value)
        else:
            # NaN cannot sustain a run
            if not np.isfinite(value) or value < lower:
                _close(t - 1)
                state = _State.BELOW
            else:
                run_peak = max(run_peak, float(value))

    if state is _State.ABOVE:
        _close(stop - 1)
    return events


def detect_events(trace: Sequence[float], stimulus_frame: int,
                  thresholds: ThresholdSet, settings,
                  ms_per_frame: float = None) -> TrialFilterResult:
    """Detect events after one stimulus in a single normalized trial trace."""
    trace = np.asarray(trace, dtype=np.float64)
    ms = float(ms_per_frame if ms_per_frame is not None else settings.ms_per_frame)
    start, stop = search_window(stimulus_frame, trace.size, settings)

    if stop <= start:
        return TrialFilterResult(passes=False, triggered=False, events=(),
                                 reason='search window outside trace',
                                 stimulus_frame=int(stimulus_frame))
    if not thresholds.is_classified:
        return TrialFilterResult(passes=False, triggered=False, events=(),
                                 reason='thresholds unavailable',
                                 stimulus_frame=int(stimulus_frame))

    window = trace[start:stop]
    peak = float(np.nanmax(window)) if np.any(np.isfinite(window)) else float('nan')

    events = find_events(trace, start, stop,
                         thresholds.upper_threshold, thresholds.lower_threshold,
                         ms, settings.min_event_duration_ms)
    triggered = bool(events)
    passes = any(e.valid for e in events)

    if passes:
        reason = 'valid event'
    elif triggered:
        longest = max(e.duration_ms for e in events)
        reason = f'events too short ({longest:g} ms < {settings.min_event_duration_ms:g} ms)'
    else:
        reason = 'no upper-threshold crossing'

    return TrialFilterResult(
        passes=passes,
        triggered=triggered,
        events=tuple(events),
        reason=reason,
        peak_response=peak,
        stimulus_frame=int(stimulus_frame),
    )


def detect_events_multi(trace: Sequence[float], stimulus_frames: Sequence[int],
                        thresholds: ThresholdSet, settings,
                        ms_per_frame: float = None) -> Tuple[TrialFilterResult, ...]:
    """Independent detection after each stimulus frame (e.g. both pulses of a PPF trial)."""
    return tuple(detect_events(trace, s, thresholds, settings, ms_per_frame)
                 for s in stimulus_frames)
