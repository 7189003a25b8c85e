# SPDX-License-Identifier: MIT
# This file wraps the Drain engine with log format parsing, enrichment and CSV results.

import csv
import hashlib
import logging
import os
import re
import time
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from drainminer.drain import PARAM_STR
from drainminer.template_miner import TemplateMiner
from drainminer.template_miner_config import TemplateMinerConfig

logger = logging.getLogger(__name__)

STRUCTURED_COLUMNS = ["LineId", "EventId", "EventTemplate", "Content", "ParameterList"]


def template_id(template: str) -> str:
    return hashlib.md5(template.encode('utf-8')).hexdigest()[0:8]


def clean_params(tmpl_token: str, msg_token: str) -> str:
    pattern = re.escape(tmpl_token).replace(re.escape(PARAM_STR), "(.+?)")
    match = re.match(f"^{pattern}$", msg_token)
    return match.group(1) if match else msg_token


def get_parameter_list(template: str, content: str, extra_delimiters: Sequence[str] = ()) -> List[str]:
    """
    Align a template with the log content token by token and return the values found at
    wildcard positions. Tokens that only embed a wildcard (e.g. "id=<*>") yield the captured part.
    The content is split the same way the miner split it, so pass its extra delimiters.
    """
    if not template or not content:
        return []

    for delimiter in extra_delimiters:
        content = content.replace(delimiter, " ")
    template_tokens = template.split()
    content_tokens = content.split()
    if len(template_tokens) != len(content_tokens):
        return []

    parameters = []
    for tmpl_token, content_token in zip(template_tokens, content_tokens):
        if tmpl_token == PARAM_STR:
            parameters.append(content_token)
        elif PARAM_STR in tmpl_token:
            parameters.append(clean_params(tmpl_token, content_token))
    return parameters


class LogParser:
    def __init__(self,
                 log_format: str,
                 indir: str = './',
                 outdir: str = './result/',
                 depth: int = 4,
                 st: float = 0.4,
                 max_child: int = 100,
                 rex: Sequence[str] = (),
                 protected_patterns: Sequence[str] = (),
                 keep_para: bool = True,
                 filter: Sequence[str] = (),
                 config: Optional[TemplateMinerConfig] = None) -> None:
        """
        :param log_format: log line format, e.g. '<Date> <Time> <Level> <Content>'
        :param indir: directory of the input logs
        :param outdir: directory the CSV results are written to
        :param rex: regexes replaced with the wildcard before clustering
        :param protected_patterns: regexes of tokens that must not be merged away
        :param keep_para: extract the parameter values of each line
        :param filter: regexes removed from the content before clustering
        :param config: a loaded config; overrides the clustering and masking arguments
        """
        if config is None:
            config = TemplateMinerConfig()
            config.drain_depth = depth
            config.drain_sim_th = st
            config.drain_max_children = max_child
            config.rex = list(rex)
            config.filter = list(filter)
            config.protected_patterns = list(protected_patterns)
            config.keep_para = keep_para

        self.path = indir
        self.save_path = outdir
        self.log_format = log_format
        self.keep_para = config.keep_para
        self.log_name: Optional[str] = None
        self.df_log: Optional[pd.DataFrame] = None
        self.template_miner = TemplateMiner(config=config)

    @property
    def drain(self):
        return self.template_miner.drain

    def parse(self, log_name: str, auto_save: bool = True) -> pd.DataFrame:
        logger.info('Parsing file: ' + os.path.join(self.path, log_name))
        start_time = time.time()
        self.log_name = log_name

        self.template_miner.reset()
        self.load_data()

        total = len(self.df_log)
        count = 0
        for line_id, content in zip(self.df_log['LineId'], self.df_log['Content']):
            self.template_miner.add_log_message(str(content), line_id=int(line_id))
            count += 1
            if count % 1000 == 0 or count == total:
                logger.info(f"Processed {count * 100.0 / total:.1f}% of log lines.")

        self.enrich(self.df_log)
        if auto_save:
            self.save_results(self.df_log, log_name)

        logger.info(f"Parsing done. [Time taken: {time.time() - start_time:.2f} sec, "
                    f"{len(self.drain.clusters)} clusters]")
        return self.df_log

    def load_data(self) -> None:
        headers, regex = self.generate_logformat_regex(self.log_format)
        self.df_log = self.log_to_dataframe(os.path.join(self.path, self.log_name), regex, headers)

    def enrich(self, df_log: pd.DataFrame) -> None:
        """Assign EventId, EventTemplate and (optionally) ParameterList to every parsed line."""
        id_to_template = {}
        for cluster in self.drain.clusters:
            template_str = cluster.get_template()
            for log_id in cluster.log_ids:
                id_to_template[log_id] = template_str

        templates = df_log['LineId'].map(id_to_template).fillna('')
        df_log['EventTemplate'] = templates
        df_log['EventId'] = templates.map(template_id)
        if self.keep_para:
            delimiters = self.template_miner.config.drain_extra_delimiters
            df_log['ParameterList'] = [get_parameter_list(t, c, delimiters)
                                       for t, c in zip(templates, df_log['Content'])]
        else:
            df_log['ParameterList'] = [[] for _ in range(len(df_log))]

    def save_results(self, df_log: pd.DataFrame, log_name: str) -> None:
        os.makedirs(self.save_path, exist_ok=True)
        base_name = os.path.basename(log_name)

        extra_columns = [c for c in df_log.columns if c not in STRUCTURED_COLUMNS]
        df_out = df_log[STRUCTURED_COLUMNS + extra_columns].copy()
        df_out['ParameterList'] = df_out['ParameterList'].map('|'.join)
        structured_path = os.path.join(self.save_path, base_name + '_structured.csv')
        df_out.to_csv(structured_path, index=False, quoting=csv.QUOTE_ALL)

        occurrences = df_log.groupby('EventTemplate', sort=False).size()
        df_event = pd.DataFrame({
            'EventId': [template_id(t) for t in occurrences.index],
            'EventTemplate': occurrences.index,
            'Occurrences': occurrences.values
        })
        templates_path = os.path.join(self.save_path, base_name + '_templates.csv')
        df_event.to_csv(templates_path, index=False, quoting=csv.QUOTE_NONNUMERIC)
        logger.info(f"Saved structured logs to {structured_path} and templates to {templates_path}")

    def reload_results(self, log_name: str) -> pd.DataFrame:
        """
        Rebuild the structured frame of a previous run from {outdir}/{log_name}_structured.csv.
        """
        structured_path = os.path.join(self.save_path, os.path.basename(log_name) + '_structured.csv')
        if not os.path.exists(structured_path):
            raise FileNotFoundError(f"Structured CSV not found: {structured_path}")

        df_log = pd.read_csv(structured_path, dtype=str, keep_default_na=False)
        df_log['LineId'] = df_log['LineId'].astype(int)
        df_log['ParameterList'] = df_log['ParameterList'].map(lambda s: s.split('|') if s else [])
        return df_log

    def generate_logformat_regex(self, logformat: str) -> Tuple[List[str], re.Pattern]:
        """ Function to generate regular expression to split log messages
        """
        headers = []
        splitters = re.split(r'(<[^<>]+>)', logformat)
        regex = ''
        for k in range(len(splitters)):
            if k % 2 == 0:
                splitter = re.sub(r' +', r'\\s+', splitters[k])
                regex += splitter
            else:
                header = splitters[k].strip('<').strip('>')
                regex += '(?P<%s>.*?)' % header
                headers.append(header)
        regex = re.compile('^' + regex + '$')
        return headers, regex

    def log_to_dataframe(self, log_file: str, regex: re.Pattern, headers: List[str]) -> pd.DataFrame:
        """ Function to transform log file to dataframe
        """
        log_messages = []
        linecount = 0
        with open(log_file, 'r', encoding='UTF-8', errors='ignore') as fin:
            for line in fin:
                match = regex.search(line.strip())
                if match is None:
                    logger.warning('Skip line: ' + line.rstrip('\n'))
                    continue
                message = [match.group(header) for header in headers]
                log_messages.append(message)
                linecount += 1
        logger.info(f'Total lines: {linecount}')

        logdf = pd.DataFrame(log_messages, columns=headers)
        if 'Content' not in logdf.columns:
            logdf['Content'] = ''
        logdf.insert(0, 'LineId', [i + 1 for i in range(linecount)])
        return logdf
