
import argparse
import logging

import matplotlib
matplotlib.use("Agg")

from utils import load_events, load_covariate, ensure_output_dir
from metrics import time_rescaling_ks
from viz_nhpp import build_results_table, plot_model_aic, plot_seasonal_intensity, plot_cum_events

from nhpp.config import FitConfig
from nhpp.search import model_search


def _names(text):
    return [s.strip() for s in text.split(",") if s.strip()]


def build_parser():
    parser = argparse.ArgumentParser(description="Fit NHPP storm-timing models over a grid of rate equations.")
    parser.add_argument("--csv", type=str, default="data/storm_events.csv")
    parser.add_argument("--start-time", type=float, default=None)
    parser.add_argument("--end-time", type=float, default=None)
    parser.add_argument("--gap-hours", type=float, default=0.0)
    parser.add_argument("--annual", type=str, default="constant")
    parser.add_argument("--seasonal", type=str, default="constant,single_freq")
    parser.add_argument("--cluster", type=str, default="constant,exponential")
    parser.add_argument("--covariate-csv", type=str, default=None)
    parser.add_argument("--covariate-extrapolation", choices=["cyclic", "hold"], default="cyclic")
    parser.add_argument("--minimum-rate", type=float, default=0.0)
    parser.add_argument("--nonnegative", action="store_true")
    parser.add_argument("--passes", type=int, default=1)
    parser.add_argument("--methods", type=str, default=None,
                        help="comma separated scipy methods, e.g. Nelder-Mead,BFGS")
    parser.add_argument("--integration", choices=["gauss", "quad"], default="gauss")
    parser.add_argument("--warm-start", action="store_true")
    parser.add_argument("--jobs", type=int, default=1)
    parser.add_argument("--out", type=str, default="output")
    parser.add_argument("--log-level", type=str, default="INFO")
    return parser


def config_from_args(args):
    return FitConfig(
        minimum_rate=args.minimum_rate,
        enforce_nonnegative_theta=args.nonnegative,
        methods=_names(args.methods) if args.methods else None,
        passes=args.passes,
        integration=args.integration,
    )


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    out_dir = ensure_output_dir(args.out)
    events = load_events(args.csv, start_time=args.start_time, end_time=args.end_time, gap_hours=args.gap_hours)
    covariate = load_covariate(args.covariate_csv, how=args.covariate_extrapolation) if args.covariate_csv else None

    results = model_search(events, _names(args.annual), _names(args.seasonal), _names(args.cluster),
                           config=config_from_args(args), covariate=covariate,
                           warm_start=args.warm_start, n_jobs=args.jobs)

    for fit in results:
        print("=" * 60)
        print(fit.label)
        print("theta:", fit.theta)
        print("se:", fit.se if fit.se is not None else f"invalid ({fit.standard_errors.message if fit.standard_errors else fit.message})")
        print("NLL:", fit.nll, " AIC:", fit.aic, " convergence:", fit.convergence.name)

    table = build_results_table(results)
    table.to_csv(f"{out_dir}/model_search.csv")
    print(f"Saved table to {out_dir}/model_search.csv")

    fig = plot_model_aic(table)
    fig.savefig(f"{out_dir}/model_aic.png", dpi=150, bbox_inches="tight")

    best = results.best()
    if best is not None:
        print("Best model:", best.label, " KS(time rescaling):", time_rescaling_ks(best, events))
        plot_seasonal_intensity(best, events).savefig(f"{out_dir}/seasonal_intensity.png", dpi=150, bbox_inches="tight")
        plot_cum_events(best, events).savefig(f"{out_dir}/cum_events.png", dpi=150, bbox_inches="tight")
    print(f"Saved plots to {out_dir}")
    return results


if __name__ == "__main__":
    main()
