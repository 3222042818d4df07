#!/usr/bin/env python3
"""Run the SRS analysis across cohorts and meta-analyse the SRSq hazard ratio."""

from __future__ import annotations

import argparse

from sepstrat.pipeline.multicohort import run_multicohort


def main() -> int:
    parser = argparse.ArgumentParser(description="SRS multi-cohort analysis pipeline")
    parser.add_argument(
        "--config",
        default="configs/multicohort_example.json",
        help="Path to JSON config",
    )
    args = parser.parse_args()
    run_multicohort(args.config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
