# SPDX-License-Identifier: MIT
"""
Commands:
    parse       Parse a log file into structured lines and templates
    evaluate    Score a structured result against ground truth
"""

import argparse
import logging
import os
import sys
from typing import Optional, Sequence

from tabulate import tabulate

from drainminer import __version__
from drainminer.evaluator import evaluate
from drainminer.log_parser import LogParser
from drainminer.template_miner_config import TemplateMinerConfig

logger = logging.getLogger(__name__)

DEFAULT_REX = [
    r'(/|)([0-9]+\.){3}[0-9]+(:[0-9]+|)(:|)',  # IP
    r'(?<=[^A-Za-z0-9])(\-?\+?\d+)(?=[^A-Za-z0-9])|[0-9]+$',  # numbers
]


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='drainminer', description=__doc__,
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('--version', action='version', version=f'drainminer {__version__}')
    parser.add_argument('--verbose', action='store_true')

    subparsers = parser.add_subparsers(dest='command')
    parse_parser = subparsers.add_parser('parse')
    parse_parser.add_argument('--log', required=True, help='input log file name, inside --indir')
    parse_parser.add_argument('--format', default=None, help='log format, e.g. "<Date> <Time> <Content>"')
    parse_parser.add_argument('--indir', default=os.getcwd())
    parse_parser.add_argument('--out', default=os.path.join(os.getcwd(), 'result'))
    parse_parser.add_argument('--config', default=None, help='INI file with DRAIN/MASKING/PARSER sections')
    parse_parser.add_argument('--depth', type=int, default=None)
    parse_parser.add_argument('--st', type=float, default=None)
    parse_parser.add_argument('--max-child', type=int, default=None)
    parse_parser.add_argument('--rex', nargs='*', default=None)
    parse_parser.add_argument('--protected', nargs='*', default=None)
    parse_parser.add_argument('--top', type=int, default=10, help='templates shown in the summary')

    evaluate_parser = subparsers.add_parser('evaluate')
    evaluate_parser.add_argument('--groundtruth', required=True)
    evaluate_parser.add_argument('--structured', required=True)
    return parser


def load_config(args: argparse.Namespace) -> TemplateMinerConfig:
    config = TemplateMinerConfig()
    # command line defaults, the INI file overrides them where it sets a value
    config.drain_sim_th = 0.5
    config.rex = list(DEFAULT_REX)
    if args.config:
        config.load(args.config)

    if args.format is not None:
        config.log_format = args.format
    if args.depth is not None:
        config.drain_depth = args.depth
    if args.st is not None:
        config.drain_sim_th = args.st
    if args.max_child is not None:
        config.drain_max_children = args.max_child
    if args.rex is not None:
        config.rex = args.rex
    if args.protected is not None:
        config.protected_patterns = args.protected
    return config


def run_parse(args: argparse.Namespace) -> int:
    full_log_path = os.path.join(os.path.abspath(args.indir), args.log)
    if not os.path.exists(full_log_path):
        logger.error(f"Log file not found: {full_log_path}")
        return 1

    config = load_config(args)
    logger.info(f"Using file: {full_log_path}")
    logger.info(f"Output dir: {os.path.abspath(args.out)}")

    parser = LogParser(config.log_format, indir=os.path.abspath(args.indir), outdir=os.path.abspath(args.out),
                       config=config)
    df_log = parser.parse(args.log)
    logger.info(f"Parsed {len(df_log)} logs into {len(parser.drain.clusters)} templates.")

    if len(df_log) > 0:
        table = (df_log.groupby(['EventId', 'EventTemplate'], sort=False).size()
                 .reset_index(name='Occurrences')
                 .sort_values('Occurrences', ascending=False, kind='stable')
                 .head(args.top))
        print(tabulate(table, headers='keys', tablefmt='grid', showindex=False))
    return 0


def run_evaluate(args: argparse.Namespace) -> int:
    for path in (args.groundtruth, args.structured):
        if not os.path.exists(path):
            logger.error(f"CSV file not found: {path}")
            return 1
    accuracy = evaluate(args.groundtruth, args.structured)
    print(tabulate([[os.path.basename(args.structured), accuracy]],
                   headers=['Result', 'Group Accuracy'], tablefmt='grid', floatfmt='.4f'))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(stream=sys.stdout, level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(message)s')

    if args.command is None:
        parser.print_help()
        return 1

    if args.command == 'parse':
        return run_parse(args)
    elif args.command == 'evaluate':
        return run_evaluate(args)
    return 1


if __name__ == '__main__':
    sys.exit(main())
