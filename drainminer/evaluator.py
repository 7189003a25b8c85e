# SPDX-License-Identifier: MIT
# This file scores parsed templates against labelled ground truth.

import logging

import pandas as pd

logger = logging.getLogger(__name__)


def evaluate_group_accuracy(groundtruth: pd.Series, parsed: pd.Series) -> float:
    """
    Grouping accuracy: a parsed event counts as correct only when its lines carry a single
    ground truth event and that ground truth event has no lines outside of it. Returns the
    share of lines belonging to correct events.

    :param groundtruth: ground truth EventId per line
    :param parsed: parsed EventId per line, on the same index as groundtruth
    """
    if parsed.size == 0:
        raise ValueError("no parsed lines to evaluate")
    if not groundtruth.index.equals(parsed.index):
        raise ValueError("groundtruth and parsed series must share the same index")

    count = 0
    for parsed_event_id in parsed.value_counts().index:
        log_ids = parsed[parsed == parsed_event_id].index
        series_groundtruth_log_id_valuecounts = groundtruth[log_ids].value_counts()
        if series_groundtruth_log_id_valuecounts.size == 1:
            groundtruth_event_id = series_groundtruth_log_id_valuecounts.index[0]
            if log_ids.size == groundtruth[groundtruth == groundtruth_event_id].size:
                count += log_ids.size
            else:
                logger.debug(f"event {parsed_event_id} covers part of ground truth event {groundtruth_event_id}")
        else:
            logger.debug(f"event {parsed_event_id} mixes ground truth events "
                         f"{list(series_groundtruth_log_id_valuecounts.index)}")

    return float(count) / parsed.size


def evaluate(groundtruth_csv: str, structured_csv: str) -> float:
    df_groundtruth = pd.read_csv(groundtruth_csv, dtype={'EventId': str}, encoding='utf-8')
    df_parsed = pd.read_csv(structured_csv, dtype={'EventId': str}, encoding='utf-8')

    df_merged = df_groundtruth[['LineId', 'EventId']].merge(df_parsed[['LineId', 'EventId']], on='LineId',
                                                             suffixes=('_groundtruth', '_parsed'))
    if len(df_merged) != len(df_groundtruth):
        logger.warning(f"{len(df_groundtruth) - len(df_merged)} ground truth lines have no parsed counterpart")

    accuracy = evaluate_group_accuracy(df_merged['EventId_groundtruth'], df_merged['EventId_parsed'])
    logger.info(f"Group Accuracy: {accuracy:.4f}")
    return accuracy
