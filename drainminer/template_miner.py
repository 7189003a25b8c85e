# SPDX-License-Identifier: MIT

import logging
import re
from typing import Optional, Sequence

from drain3.simple_profiler import Profiler, NullProfiler, SimpleProfiler

from drainminer.drain import Drain, LogCluster, PARAM_STR
from drainminer.template_miner_config import TemplateMinerConfig

logger = logging.getLogger(__name__)


def preprocess(line: str, rex: Sequence[str] = (), filter: Sequence[str] = ()) -> str:
    for current_fil in filter:
        line = re.sub(current_fil, '', line)
    for current_rex in rex:
        line = re.sub(current_rex, PARAM_STR, line)
    return line


class TemplateMiner:

    def __init__(self, config: Optional[TemplateMinerConfig] = None) -> None:
        if config is None:
            config = TemplateMinerConfig()
        self.config = config

        self.profiler: Profiler = NullProfiler()
        if self.config.profiling_enabled:
            self.profiler = SimpleProfiler(enclosing_section_name="total", printer=logger.info,
                                           report_sec=self.config.profiling_report_sec)

        self.drain = Drain(depth=self.config.drain_depth,
                           sim_th=self.config.drain_sim_th,
                           max_children=self.config.drain_max_children,
                           protected_patterns=self.config.protected_patterns,
                           profiler=self.profiler)
        self.line_count = 0

    def reset(self) -> None:
        self.drain.reset()
        self.line_count = 0

    def get_content_as_tokens(self, content: str) -> Sequence[str]:
        content = content.strip()
        for delimiter in self.config.drain_extra_delimiters:
            content = content.replace(delimiter, " ")
        return content.split()

    def add_log_message(self, log_message: str, line_id: Optional[int] = None) -> dict:
        if line_id is None:
            line_id = self.line_count + 1
        elif line_id <= self.line_count:
            raise ValueError(f"line ids must be strictly increasing, got {line_id} after {self.line_count}")
        self.line_count = line_id

        self.profiler.start_section("total")

        self.profiler.start_section("mask")
        masked_content = preprocess(log_message, self.config.rex, self.config.filter)
        self.profiler.end_section("mask")

        self.profiler.start_section("drain")
        tokens = self.get_content_as_tokens(masked_content)
        cluster, change_type = self.drain.add_log_message(line_id, tokens)
        self.profiler.end_section("drain")

        result = {
            "change_type": change_type,
            "cluster_id": cluster.cluster_id,
            "cluster_size": cluster.size,
            "template_mined": cluster.get_template(),
            "cluster_count": len(self.drain.clusters)
        }

        if change_type == "cluster_created":
            logger.info(f"New cluster E{cluster.cluster_id}: {cluster.get_template()}")
        elif change_type == "cluster_template_changed":
            logger.info(f"Cluster E{cluster.cluster_id} template changed: {cluster.get_template()}")

        self.profiler.end_section("total")
        self.profiler.report(self.config.profiling_report_sec)
        return result

    def match(self, log_message: str) -> Optional[LogCluster]:
        masked_content = preprocess(log_message, self.config.rex, self.config.filter)
        return self.drain.match(self.get_content_as_tokens(masked_content))
