import argparse
import logging
import os
import sys
from pathlib import Path

import yaml

# Ensure repo root is on sys.path when running from anywhere
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from glusnfr_analysis.settings import load_settings  # noqa: E402
from glusnfr_analysis.data_loader import load_groups  # noqa: E402
from glusnfr_analysis.core.pipeline import run_and_summarize  # noqa: E402
from glusnfr_analysis.reporting import write_batch_summary, write_group_report  # noqa: E402
from glusnfr_analysis.visualization import plot_group  # noqa: E402


def _parse_overrides(items):
    overrides = {}
    for item in items or []:
        if '=' not in item:
            raise ValueError(f"Override must look like section.key=value, got {item!r}")
        key, raw = item.split('=', 1)
        overrides[key.strip()] = yaml.safe_load(raw)
    return overrides


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Headless iGluSnFR pipeline: dF/F → noise classification → Schmitt filter → threshold cache → reports"
    )
    parser.add_argument("--data", required=True, help="Directory of trace CSV files (searched recursively)")
    parser.add_argument("--out", default=str(REPO_ROOT / "output"), help="Output root directory")
    parser.add_argument("--config", default=None, help="YAML config path (default config/config.yaml)")
    parser.add_argument("--set", action="append", default=[], dest="overrides", metavar="KEY=VALUE",
                        help="Override a config value, e.g. --set thresholds.sd_multiplier=2.5")
    parser.add_argument("--jobs", type=int, default=None, help="Parallel group workers (default from config)")
    parser.add_argument("--no-plots", action="store_true", help="Skip per-ROI trial plots")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    try:
        overrides = _parse_overrides(args.overrides)
    except ValueError as e:
        parser.error(str(e))

    data_dir = os.path.abspath(args.data)
    out_root = os.path.abspath(args.out)
    settings = load_settings(args.config, overrides)

    print("Running iGluSnFR pipeline...")
    print(f"  data_dir: {data_dir}")
    print(f"  out_root: {out_root}")
    print(f"  stimulus_frame: {settings.stimulus_frame} ({settings.stimulus_time_ms:g} ms)")

    groups = load_groups(data_dir, settings)
    if not groups:
        print("No experiment groups found")
        return 1

    results, summary = run_and_summarize(groups, settings, args.jobs)

    write_plots = settings.write_plots and not args.no_plots
    for result in results:
        if not result.ok:
            continue
        write_group_report(result, out_root)
        if write_plots:
            plot_group(result, out_root, dpi=settings.dpi)
    summary_path = write_batch_summary(summary, out_root)

    print("\nBatch summary")
    print("-------------")
    for k in ["total_groups", "successful_groups", "total_rois", "total_original_rois", "performance_category"]:
        print(f"{k}: {summary[k]}")
    print(f"success_rate: {summary['success_rate'] * 100:.1f}%")
    print(f"overall_filter_rate: {summary['overall_filter_rate'] * 100:.1f}%")
    if summary['warnings']:
        print("\nWarnings")
        print("--------")
        for warning in summary['warnings']:
            print(f"  {warning}")

    print(f"\nbatch_summary_json: {summary_path}")
    print("Outputs written under:", out_root)
    return 0 if summary['successful_groups'] else 1


if __name__ == "__main__":
    sys.exit(main())
