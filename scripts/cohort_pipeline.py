#!/usr/bin/env python3
"""Run the SRS cohort analysis pipeline for one dataset."""

from __future__ import annotations

import argparse

from sepstrat.pipeline.cohort_analysis import run_cohort_analysis


def main() -> int:
    parser = argparse.ArgumentParser(description="SRS cohort analysis pipeline")
    parser.add_argument(
        "--config",
        default="configs/cohort_example.json",
        help="Path to JSON config",
    )
    args = parser.parse_args()
    run_cohort_analysis(args.config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
