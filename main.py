## Evaluates one design string and prints the verdict

import argparse
import logging

from evaluation import (EvaluationOracle, format_result, format_trajectory,
                        writeEvaluationResults, writeTrajectory, plotTrajectory)

BASE_DESIGN = "*aMM0+++++*bNM2+++*cMN1+++*dLM2+++*eML1+++^ab^ac^ad^ae,5,3"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="UAV design evaluation")
    parser.add_argument("-configuration", default=BASE_DESIGN,
                        help="design string to evaluate")
    parser.add_argument("-trajectory", action="store_true",
                        help="print the sampled trajectory after the result")
    parser.add_argument("--results", default=None,
                        help="CSV file collecting evaluation results")
    parser.add_argument("--trajectory-csv", default=None,
                        help="CSV file for the sampled trajectory")
    parser.add_argument("--plot", default=None,
                        help="image file for the trajectory plot")
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    want_trajectory = args.trajectory or args.trajectory_csv or args.plot
    result = EvaluationOracle().evaluate(args.configuration,
                                         return_trajectory=bool(want_trajectory))

    print(format_result(result))
    if args.trajectory:
        for line in format_trajectory(result):
            print(line)

    if args.results:
        writeEvaluationResults(args.configuration, result, args.results)
    if args.trajectory_csv:
        writeTrajectory(result, args.trajectory_csv)
    if args.plot:
        plotTrajectory(result, args.plot)


if __name__ == "__main__":
    main()
