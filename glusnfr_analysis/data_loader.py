import re
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .core.types import ExperimentType, GroupData, RawTrace

# Set up logging
logger = logging.getLogger(__name__)

ROI_COLUMN = re.compile(r'roi[_\s]*(\d+)', re.IGNORECASE)
DOC2B = re.compile(r'_Doc2b-[A-Z0-9]+')
COVERSLIP = re.compile(r'_Cs(\d+)-c(\d+)_')
PPF_TRIAL = re.compile(r'PPF-(\d+)ms-(\d+)')
PPF_TIMEPOINT = re.compile(r'PPF-(\d+)ms')
SINGLE_TRIAL_PATTERNS = (re.compile(r'1AP-(\d+)'), re.compile(r'1AP_(\d+)'), re.compile(r'1AP(\d+)'))
MAX_ROI_NUMBER = 65535


@dataclass(frozen=True)
class FileInfo:
    """What a trace filename tells us about the recording."""
    name: str
    group_key: str                       # '' when the name does not identify a group
    experiment_type: Optional[ExperimentType]
    trial: Optional[int]
    ppf_interval_ms: Optional[float]
    coverslip_cell: str
    genotype: str


def extract_genotype(text: str) -> str:
    if 'R213W' in text:
        return 'R213W'
    if 'WT' in text:
        return 'WT'
    return 'Unknown'


def _group_key(name: str, experiment_type: Optional[ExperimentType],
               interval: Optional[float], coverslip_cell: str) -> str:
    if 'CP_' not in name or experiment_type is None:
        return ''
    doc2b = DOC2B.search(name)
    if experiment_type is ExperimentType.PAIRED_PULSE:
        if doc2b is None or interval is None:
            return ''
        # PPF groups are per coverslip cell so ROI numbers stay unique
        key = f"PPF_{int(interval)}ms{doc2b.group(0)}"
        return f"{key}_{coverslip_cell}" if coverslip_cell else key
    cs = COVERSLIP.search(name)
    if doc2b is None or cs is None:
        return ''
    base = name[name.index('CP_'):cs.end()].rstrip('_')
    return f"{base}_1AP"


def parse_filename(filename: Union[str, Path]) -> FileInfo:
    """Parse group key, experiment type, trial, PPF interval, coverslip cell and genotype."""
    name = Path(filename).stem

    cs = COVERSLIP.search(name)
    coverslip_cell = f"Cs{cs.group(1)}-c{cs.group(2)}" if cs else ''

    experiment_type = None
    trial = None
    interval = None
    if '1AP' in name:
        experiment_type = ExperimentType.SINGLE_STIMULUS
        for pattern in SINGLE_TRIAL_PATTERNS:
            match = pattern.search(name)
            if match:
                trial = int(match.group(1))
                break
    elif 'PPF' in name:
        experiment_type = ExperimentType.PAIRED_PULSE
        match = PPF_TRIAL.search(name)
        if match:
            interval = float(match.group(1))
            trial = int(match.group(2))
        else:
            timepoint = PPF_TIMEPOINT.search(name)
            if timepoint:
                interval = float(timepoint.group(1))

    if trial is not None and trial <= 0:
        trial = None

    group_key = _group_key(name, experiment_type, interval, coverslip_cell)
    return FileInfo(
        name=name,
        group_key=group_key,
        experiment_type=experiment_type,
        trial=trial,
        ppf_interval_ms=interval,
        coverslip_cell=coverslip_cell,
        genotype=extract_genotype(group_key or name),
    )


def roi_columns(columns: Iterable[str]) -> List[Tuple[str, int]]:
    """(column, ROI number) for every column named like a ROI; Frame/Time columns are skipped."""
    found = []
    for col in columns:
        match = ROI_COLUMN.search(str(col))
        if not match:
            continue
        number = int(match.group(1))
        if 0 < number <= MAX_ROI_NUMBER:
            found.append((col, number))
    return found


def load_raw_trace(file_path: Union[str, Path], settings,
                   stimulus_frames: Optional[Sequence[int]] = None,
                   **kwargs) -> RawTrace:
    """
    Load one recording exported as CSV (header row, one column per ROI).

    Args:
        file_path: Path to the CSV file
        settings: AnalysisSettings providing frame timing
        stimulus_frames: Stimulus frame indices; defaults to the configured stimulus frame
        **kwargs: Additional arguments to pass to pd.read_csv

    Returns:
        RawTrace with values[frame, roi_column]
    """
    try:
        data = pd.read_csv(file_path, **kwargs)
        columns = roi_columns(data.columns)
        if not columns:
            raise ValueError(f"No ROI columns found in {file_path}")

        values = data[[col for col, _ in columns]].apply(pd.to_numeric, errors='coerce')
        trace = RawTrace(
            values=values.to_numpy(dtype=np.float64),
            roi_numbers=tuple(number for _, number in columns),
            ms_per_frame=settings.ms_per_frame,
            stimulus_frames=tuple(stimulus_frames or (settings.stimulus_frame,)),
            source=str(file_path),
        )
        logger.info(f"Successfully loaded {trace.n_rois} ROIs x {trace.n_frames} frames from {file_path}")
        return trace
    except Exception as e:
        logger.error(f"Error loading data from {file_path}: {str(e)}")
        raise


def find_trace_files(data_dir: Union[str, Path]) -> List[Path]:
    data_dir = Path(data_dir)
    if not data_dir.exists():
        raise FileNotFoundError(f"Directory not found: {data_dir}")
    return sorted(p for p in data_dir.rglob('*.csv') if p.is_file())


def organize_files_by_group(paths: Iterable[Union[str, Path]]) -> Dict[str, List[Path]]:
    """Group trace files by the key parsed from their names; unmatched files are skipped."""
    groups: Dict[str, List[Path]] = {}
    for path in paths:
        path = Path(path)
        info = parse_filename(path)
        if not info.group_key:
            logger.warning(f"Skipping {path.name}: no group key in filename")
            continue
        groups.setdefault(info.group_key, []).append(path)
    for key in groups:
        groups[key].sort()
    logger.info(f"Found {len(groups)} groups")
    return groups


def _stimulus_frames(info: FileInfo, settings) -> Tuple[int, ...]:
    first = settings.stimulus_frame
    if info.experiment_type is ExperimentType.PAIRED_PULSE:
        return first, first + int(round(info.ppf_interval_ms / settings.ms_per_frame))
    return (first,)


def load_group(group_key: str, paths: Sequence[Union[str, Path]], settings) -> GroupData:
    """Load every trial file of one group; files without a trial number are skipped."""
    trials: Dict[int, RawTrace] = {}
    infos = [parse_filename(p) for p in paths]
    if not infos:
        raise ValueError(f"Group {group_key} has no files")

    for path, info in zip(paths, infos):
        if info.trial is None:
            logger.warning(f"{group_key}: no trial number in {Path(path).name}, skipped")
            continue
        if info.trial in trials:
            logger.warning(f"{group_key}: duplicate trial {info.trial} in {Path(path).name}, skipped")
            continue
        trials[info.trial] = load_raw_trace(path, settings, _stimulus_frames(info, settings))

    first = infos[0]
    return GroupData(
        group_key=group_key,
        experiment_type=first.experiment_type,
        trials=trials,
        ppf_interval_ms=first.ppf_interval_ms,
        coverslip_cell=first.coverslip_cell,
        genotype=first.genotype,
    )


def load_groups(data_dir: Union[str, Path], settings) -> List[GroupData]:
    """Load every group under `data_dir`; groups that fail to load are logged and left out."""
    groups = []
    for key, paths in organize_files_by_group(find_trace_files(data_dir)).items():
        try:
            groups.append(load_group(key, paths, settings))
        except Exception as e:
            logger.error(f"Error processing group {key}: {str(e)}")
    return groups
