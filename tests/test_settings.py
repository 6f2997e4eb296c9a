import pytest

from config.config_loader import apply_overrides, load_config
from glusnfr_analysis.settings import AnalysisSettings, load_settings


def test_default_config_matches_defaults():
    settings = load_settings()
    assert settings == AnalysisSettings()
    assert settings.stimulus_time_ms == 1335.0
    assert settings.sampling_rate_hz == 200.0


def test_overrides_use_dotted_keys():
    config = load_config()
    changed = apply_overrides(config, {'thresholds.sd_multiplier': 2.5, 'timing.ms_per_frame': None})
    assert changed['thresholds']['sd_multiplier'] == 2.5
    assert config['thresholds']['sd_multiplier'] == 3.0
    assert changed['timing']['ms_per_frame'] == 5

    settings = load_settings(overrides={'filtering.min_passing_trials': 2,
                                        'processing.rolling_median.window_ms': 500})
    assert settings.min_passing_trials == 2
    assert settings.rolling_window_ms == 500.0
    assert settings.rolling_window_frames == 100


def test_custom_config_file(tmp_path):
    path = tmp_path / 'custom.yaml'
    path.write_text("timing:\n  stimulus_frame: 100\n  baseline_frames: [0, 90]\n"
                    "validation:\n  min_baseline_frames: 50\n")
    settings = load_settings(str(path))
    assert settings.stimulus_frame == 100
    assert settings.baseline_frames == (0, 90)
    assert settings.sd_multiplier == 3.0


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / 'nope.yaml'))


@pytest.mark.parametrize("kwargs", [
    {'baseline_frames': (10, 5)},
    {'ms_per_frame': 0},
    {'lower_multiplier': 2.0},
    {'baseline_method': 'mode'},
])
def test_invalid_settings_rejected(kwargs):
    with pytest.raises(ValueError):
        AnalysisSettings(**kwargs)
