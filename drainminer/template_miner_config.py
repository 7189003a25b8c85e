# SPDX-License-Identifier: MIT

import configparser
import json
import logging
from typing import List

logger = logging.getLogger(__name__)


class TemplateMinerConfig:
    def __init__(self) -> None:
        self.profiling_enabled = False
        self.profiling_report_sec = 60
        self.drain_depth = 4
        self.drain_sim_th = 0.4
        self.drain_max_children = 100
        self.drain_extra_delimiters: List[str] = []
        self.protected_patterns: List[str] = []
        self.rex: List[str] = []
        self.filter: List[str] = []
        self.log_format = "<Content>"
        self.keep_para = True

    def load(self, config_filename: str) -> None:
        parser = configparser.ConfigParser(interpolation=None)
        read_files = parser.read(config_filename)
        if len(read_files) == 0:
            logger.warning(f"config file not found: {config_filename}")

        section_profiling = 'PROFILING'
        section_drain = 'DRAIN'
        section_masking = 'MASKING'
        section_parser = 'PARSER'

        self.profiling_enabled = parser.getboolean(section_profiling, 'enabled',
                                                   fallback=self.profiling_enabled)
        self.profiling_report_sec = parser.getint(section_profiling, 'report_sec',
                                                  fallback=self.profiling_report_sec)

        self.drain_depth = parser.getint(section_drain, 'depth', fallback=self.drain_depth)
        self.drain_sim_th = parser.getfloat(section_drain, 'sim_th', fallback=self.drain_sim_th)
        self.drain_max_children = parser.getint(section_drain, 'max_children', fallback=self.drain_max_children)
        self.drain_extra_delimiters = self._get_list(parser, section_drain, 'extra_delimiters',
                                                     self.drain_extra_delimiters)
        self.protected_patterns = self._get_list(parser, section_drain, 'protected_patterns',
                                                 self.protected_patterns)

        self.rex = self._get_list(parser, section_masking, 'rex', self.rex)
        self.filter = self._get_list(parser, section_masking, 'filter', self.filter)

        self.log_format = parser.get(section_parser, 'log_format', fallback=self.log_format)
        self.keep_para = parser.getboolean(section_parser, 'keep_para', fallback=self.keep_para)

    @staticmethod
    def _get_list(parser: configparser.ConfigParser, section: str, option: str, fallback: List[str]) -> List[str]:
        value = parser.get(section, option, fallback=None)
        if value is None:
            return fallback
        items = json.loads(value)
        if not isinstance(items, list):
            raise ValueError(f"[{section}] {option} must be a JSON list, got {value!r}")
        return [str(item) for item in items]
