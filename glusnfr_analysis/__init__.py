"""
iGluSnFR Trace Analysis
-----------------------
Baseline normalization, noise-adaptive Schmitt-trigger filtering and
threshold caching for 1AP and paired-pulse glutamate imaging experiments.
"""

__version__ = "1.0.0"

# Import key components for easier access
from .settings import AnalysisSettings, load_settings
from .core.pipeline import analyze_group, run_batch, summarize_batch
from .data_loader import load_group, load_groups, organize_files_by_group

__all__ = [
    'AnalysisSettings',
    'load_settings',
    'analyze_group',
    'run_batch',
    'summarize_batch',
    'load_group',
    'load_groups',
    'organize_files_by_group',
]
