"""Config-driven cohort and multi-cohort pipeline entrypoints."""


def run_cohort_analysis(*args, **kwargs):
    from sepstrat.pipeline.cohort_analysis import run_cohort_analysis as _run_cohort_analysis

    return _run_cohort_analysis(*args, **kwargs)


def run_multicohort(*args, **kwargs):
    from sepstrat.pipeline.multicohort import run_multicohort as _run_multicohort

    return _run_multicohort(*args, **kwargs)


__all__ = ["run_cohort_analysis", "run_multicohort"]
