"""Command-line interface for the metbreed toolkit."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd

from .ammi import performs_ammi
from .anova import anova_ind
from .config import configure_logging, settings
from .correlation import can_corr, lpcor
from .factanal import ge_factanal
from .plotting import plot_fai, plot_scores, residual_plots, save_figure
from .report import print_report
from .selection import fai_blup
from .stability import fox, shukla

logger = logging.getLogger(__name__)


def _load_trial(path: str, sep: str) -> pd.DataFrame:
    return pd.read_csv(path, sep=sep)


def _split(values: Optional[str]) -> Optional[List[str]]:
    if values is None:
        return None
    return [value.strip() for value in values.split(",") if value.strip()]


def _write_csv(path: str | Path, frame: pd.DataFrame, index: bool = False) -> None:
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(output, index=index)


def _output_path(base: str, suffix: str) -> Path:
    base_path = Path(base)
    return base_path.with_name(f"{base_path.stem}_{suffix}{base_path.suffix or '.csv'}")


def _report(args: argparse.Namespace, result: object) -> None:
    if args.report:
        print_report(result, export=True, file_name=args.report, digits=args.digits)


def command_anova_ind(args: argparse.Namespace) -> None:
    data = _load_trial(args.data, args.sep)
    result = anova_ind(data, args.env, args.gen, args.rep, _split(args.resp), block=args.block)
    frames = [values.individual.assign(TRAIT=trait) for trait, values in result.items()]
    _write_csv(args.output, pd.concat(frames, ignore_index=True))
    _report(args, result)


def command_ammi(args: argparse.Namespace) -> None:
    data = _load_trial(args.data, args.sep)
    result = performs_ammi(data, args.env, args.gen, args.rep, _split(args.resp), block=args.block, impute=not args.no_impute)
    tables = [values.ANOVA.assign(TRAIT=trait) for trait, values in result.items()]
    _write_csv(args.output, pd.concat(tables, ignore_index=True))
    if args.scores_out:
        scores = [values.model.assign(TRAIT=trait) for trait, values in result.items()]
        _write_csv(args.scores_out, pd.concat(scores, ignore_index=True))
    if args.predict_naxis is not None:
        target = args.predict_out or _output_path(args.output, "predicted")
        _write_csv(target, result.predict(args.predict_naxis))
    if args.plot:
        save_figure(residual_plots(result), args.plot)
    if args.biplot:
        save_figure(plot_scores(result), args.biplot)
    _report(args, result)


def command_fox(args: argparse.Namespace) -> None:
    data = _load_trial(args.data, args.sep)
    result = fox(data, args.env, args.gen, _split(args.resp))
    _write_csv(args.output, pd.concat([table.assign(TRAIT=trait) for trait, table in result.items()], ignore_index=True))
    _report(args, result)


def command_shukla(args: argparse.Namespace) -> None:
    data = _load_trial(args.data, args.sep)
    result = shukla(data, args.env, args.gen, args.rep, _split(args.resp))
    _write_csv(args.output, pd.concat([table.assign(TRAIT=trait) for trait, table in result.items()], ignore_index=True))
    _report(args, result)


def command_ge_factanal(args: argparse.Namespace) -> None:
    data = _load_trial(args.data, args.sep)
    result = ge_factanal(data, args.env, args.gen, args.rep, _split(args.resp), mineval=args.mineval)
    strata = [values.env_strat.assign(TRAIT=trait) for trait, values in result.items()]
    _write_csv(args.output, pd.concat(strata, ignore_index=True))
    if args.scores_out:
        scores = [values.scores_gen.assign(TRAIT=trait) for trait, values in result.items()]
        _write_csv(args.scores_out, pd.concat(scores, ignore_index=True))
    _report(args, result)


def command_fai_blup(args: argparse.Namespace) -> None:
    means = _load_trial(args.data, args.sep)
    if args.gen is None:
        means = means.set_index(means.columns[0])
    result = fai_blup(means, gen=args.gen, DI=args.DI, UI=args.UI, SI=args.SI, mineval=args.mineval)
    _write_csv(args.output, result.FAI)
    if args.plot:
        save_figure(plot_fai(result, SI=args.SI), args.plot)
    _report(args, result)


def command_can_corr(args: argparse.Namespace) -> None:
    data = _load_trial(args.data, args.sep)
    result = can_corr(
        data,
        FG=_split(args.FG),
        SG=_split(args.SG),
        by=args.by,
        means_by=args.means_by,
        use=args.use,
        test=args.test,
        prob=args.prob,
    )
    if args.by is None:
        _write_csv(args.output, result.Sigtest)
    else:
        tables = [values.Sigtest.assign(LEVEL=level) for level, values in result.items()]
        _write_csv(args.output, pd.concat(tables, ignore_index=True))
    _report(args, result)


def command_lpcor(args: argparse.Namespace) -> None:
    data = _load_trial(args.data, args.sep)
    result = lpcor(data, columns=_split(args.columns), by=args.by, method=args.method)
    if args.by is None:
        _write_csv(args.output, result.results)
    else:
        tables = [values.results.assign(LEVEL=level) for level, values in result.items()]
        _write_csv(args.output, pd.concat(tables, ignore_index=True))
    _report(args, result)


def _add_io(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--data", required=True)
    parser.add_argument("--sep", default=",")
    parser.add_argument("--output", required=True)
    parser.add_argument("--report", default=None, help="Write a text report to <REPORT>.txt")


def _add_design(parser: argparse.ArgumentParser, rep: bool = True, block: bool = False) -> None:
    parser.add_argument("--env", required=True)
    parser.add_argument("--gen", required=True)
    if rep:
        parser.add_argument("--rep", required=True)
    if block:
        parser.add_argument("--block", default=None)
    parser.add_argument("--resp", default=None, help="Comma-separated response columns (default: all numeric)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="metbreed", description="Multi-environment trial analysis toolkit")
    parser.add_argument("--log-level", dest="log_level", default=None)
    parser.add_argument("--digits", type=int, default=None)
    subparsers = parser.add_subparsers(dest="command", required=True)

    anova_parser = subparsers.add_parser("anova-ind", help="Within-environment analysis of variance")
    _add_io(anova_parser)
    _add_design(anova_parser, block=True)
    anova_parser.set_defaults(func=command_anova_ind)

    ammi_parser = subparsers.add_parser("ammi", help="Fit AMMI models")
    _add_io(ammi_parser)
    _add_design(ammi_parser, block=True)
    ammi_parser.add_argument("--no-impute", dest="no_impute", action="store_true")
    ammi_parser.add_argument("--scores-out", dest="scores_out")
    ammi_parser.add_argument("--predict-naxis", dest="predict_naxis", type=int, default=None)
    ammi_parser.add_argument("--predict-out", dest="predict_out")
    ammi_parser.add_argument("--plot", help="Residual diagnostics PNG")
    ammi_parser.add_argument("--biplot", help="AMMI1 biplot PNG")
    ammi_parser.set_defaults(func=command_ammi)

    fox_parser = subparsers.add_parser("fox", help="Fox TOP third stability criterion")
    _add_io(fox_parser)
    _add_design(fox_parser, rep=False)
    fox_parser.set_defaults(func=command_fox)

    shukla_parser = subparsers.add_parser("shukla", help="Shukla stability variance")
    _add_io(shukla_parser)
    _add_design(shukla_parser)
    shukla_parser.set_defaults(func=command_shukla)

    factanal_parser = subparsers.add_parser("ge-factanal", help="Environment stratification by factor analysis")
    _add_io(factanal_parser)
    _add_design(factanal_parser)
    factanal_parser.add_argument("--mineval", type=float, default=1.0)
    factanal_parser.add_argument("--scores-out", dest="scores_out")
    factanal_parser.set_defaults(func=command_ge_factanal)

    fai_parser = subparsers.add_parser("fai-blup", help="FAI-BLUP multi-trait selection index")
    _add_io(fai_parser)
    fai_parser.add_argument("--gen", default=None, help="Genotype column (default: first column as index)")
    fai_parser.add_argument("--DI", default=None, help="Desirable ideotype, e.g. 'max, max, min'")
    fai_parser.add_argument("--UI", default=None, help="Undesirable ideotype, e.g. 'min, min, max'")
    fai_parser.add_argument("--SI", type=float, default=15)
    fai_parser.add_argument("--mineval", type=float, default=1.0)
    fai_parser.add_argument("--plot", help="Spatial probability PNG")
    fai_parser.set_defaults(func=command_fai_blup)

    cc_parser = subparsers.add_parser("can-corr", help="Canonical correlation analysis")
    _add_io(cc_parser)
    cc_parser.add_argument("--FG", required=True, help="Comma-separated first-group columns")
    cc_parser.add_argument("--SG", required=True, help="Comma-separated second-group columns")
    cc_parser.add_argument("--by", default=None)
    cc_parser.add_argument("--means-by", dest="means_by", default=None)
    cc_parser.add_argument("--use", choices=["cor", "cov"], default="cor")
    cc_parser.add_argument("--test", choices=["Bartlett", "Rao"], default="Bartlett")
    cc_parser.add_argument("--prob", type=float, default=0.05)
    cc_parser.set_defaults(func=command_can_corr)

    lpcor_parser = subparsers.add_parser("lpcor", help="Linear and partial correlation")
    _add_io(lpcor_parser)
    lpcor_parser.add_argument("--columns", default=None)
    lpcor_parser.add_argument("--by", default=None)
    lpcor_parser.add_argument("--method", choices=["pearson", "spearman", "kendall"], default="pearson")
    lpcor_parser.set_defaults(func=command_lpcor)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    logger.debug("Running %s with verbose=%s", args.command, settings.VERBOSE)
    args.func(args)


if __name__ == "__main__":
    main()
