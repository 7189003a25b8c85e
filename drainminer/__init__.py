# SPDX-License-Identifier: MIT

__version__ = "1.0.0"

from drainminer.drain import ChildLeaf, ChildNode, Drain, DrainBase, LogCluster, Node, PrefixTree, PARAM_STR, \
    DISQUALIFIED_PARAM_COUNT
from drainminer.log_parser import LogParser, get_parameter_list, template_id
from drainminer.template_miner import TemplateMiner
from drainminer.template_miner_config import TemplateMinerConfig
