"""
Compare survival between two or more cohorts of a subject table.

Examples:
    # Groups already in the file, Isotype as reference
    python scripts/run_cohort_survival.py sgArid1a_B16F10_isotype_vs_ICB.txt \
        --status-col censor --group-col group --levels Isotype ICB

    # Mutant vs non-mutant from an identifier list
    python scripts/run_cohort_survival.py clinical.tsv \
        --time-col "OS_MONTHS" --status-col "OS_STATUS" --id-col "PATIENT_ID" \
        --identifiers mutated_patients.tsv --levels non-mutant mutant \
        --covariates age sex --hr-table hazard_ratios.tsv
"""

import argparse
import sys
from dataclasses import asdict
from pathlib import Path

import pandas as pd

from cohortsurv.analysis import compare_cohorts
from cohortsurv.core.exceptions import CohortSurvError
from cohortsurv.data import (
    label_cohort,
    normalize_column_name,
    read_identifiers,
    read_subjects,
)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("subjects", type=Path, help="delimited subject table")
    parser.add_argument("--sep", default="\t", help="field separator (default: tab)")
    parser.add_argument("--time-col", default="time")
    parser.add_argument("--status-col", default="status")
    parser.add_argument("--id-col", default=None)
    parser.add_argument("--group-col", default="cohort",
                        help="grouping column (created when --identifiers is given)")
    parser.add_argument("--identifiers", type=Path, default=None,
                        help="file whose first column lists member subject IDs")
    parser.add_argument("--member-label", default="mutant")
    parser.add_argument("--default-label", default="non-mutant")
    parser.add_argument("--levels", nargs="+", default=None,
                        help="group order; the first level is the reference")
    parser.add_argument("--covariates", nargs="*", default=[])
    parser.add_argument("--conf-level", type=float, default=0.95)
    parser.add_argument("--strict", action="store_true",
                        help="fail on invalid rows instead of dropping them")
    parser.add_argument("--hr-table", type=Path, default=None,
                        help="write the hazard-ratio table here (tab-separated)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        table = read_subjects(
            args.subjects,
            time_col=args.time_col,
            status_col=args.status_col,
            id_col=args.id_col,
            sep=args.sep,
            on_invalid="raise" if args.strict else "drop",
        )

        group = normalize_column_name(args.group_col)
        if args.identifiers is not None:
            members = read_identifiers(args.identifiers, sep=args.sep)
            table = label_cohort(
                table, members,
                column=group,
                member_label=args.member_label,
                default_label=args.default_label,
            )

        comparison = compare_cohorts(
            table, group,
            levels=args.levels,
            covariates=[normalize_column_name(c) for c in args.covariates],
            conf_level=args.conf_level,
        )
    except CohortSurvError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    for row in table.rejected:
        print(f"rejected {row}", file=sys.stderr)

    print(comparison.summary())
    print()
    print(f"log-rank p = {round(comparison.p_value, 5)}")

    if args.hr_table is not None:
        records = [asdict(hr) for hr in comparison.cox.hazard_ratio_table()]
        pd.DataFrame(records).to_csv(args.hr_table, sep="\t", index=False)
        print(f"hazard ratios written to {args.hr_table}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
