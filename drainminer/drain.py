# SPDX-License-Identifier: MIT
# This file implements the Drain clustering engine for online log template mining.

import logging
import re
import sys
from abc import ABC, abstractmethod
from typing import Collection, IO, Iterable, Iterator, List, MutableMapping, MutableSequence, Optional, \
    Sequence, Tuple, Union

from cachetools import LRUCache
from drain3.simple_profiler import Profiler, NullProfiler

logger = logging.getLogger(__name__)

PARAM_STR = "<*>"

# never reachable by a real count, a template can't have sys.maxsize positions
DISQUALIFIED_PARAM_COUNT = sys.maxsize


class LogCluster:
    __slots__ = ["log_template_tokens", "log_ids", "cluster_id"]

    def __init__(self, log_template_tokens: Iterable[str], log_ids: Iterable[int] = (), cluster_id: int = 0) -> None:
        self.log_template_tokens = tuple(log_template_tokens)
        self.log_ids: List[int] = list(log_ids)
        self.cluster_id = cluster_id

    @property
    def size(self) -> int:
        return len(self.log_ids)

    def get_template(self) -> str:
        return ' '.join(self.log_template_tokens)

    def set_template(self, template: Iterable[str]) -> None:
        template = tuple(template)
        if len(template) != len(self.log_template_tokens):
            raise ValueError(f"template length is fixed at {len(self.log_template_tokens)}, got {len(template)}")
        self.log_template_tokens = template

    def __str__(self) -> str:
        return f"ID={str(self.cluster_id).ljust(5)} : size={str(self.size).ljust(10)}: {self.get_template()}"


class ChildNode:
    """Child slot pointing to a deeper tree node."""
    __slots__ = ["node"]

    def __init__(self, node: "Node") -> None:
        self.node = node


class ChildLeaf:
    """Child slot holding the clusters of a leaf bucket."""
    __slots__ = ["clusters"]

    def __init__(self, clusters: Optional[MutableSequence[LogCluster]] = None) -> None:
        self.clusters: MutableSequence[LogCluster] = [] if clusters is None else clusters


class Node:
    __slots__ = ["depth", "token", "key_to_child", "leaf"]

    def __init__(self, depth: int, token: Union[int, str]) -> None:
        self.depth = depth
        self.token = token
        self.key_to_child: MutableMapping[str, ChildNode] = {}
        self.leaf: Optional[ChildLeaf] = None

    @property
    def branch_count(self) -> int:
        return len(self.key_to_child)

    def get_child(self, token: str) -> Optional["Node"]:
        child = self.key_to_child.get(token)
        return None if child is None else child.node

    def add_child(self, token: str) -> "Node":
        node = Node(self.depth + 1, token)
        self.key_to_child[token] = ChildNode(node)
        return node


class PrefixTree:
    """
    Root of the search index. The first layer is keyed by token count only, every
    layer below it is keyed by token text (or the wildcard marker).
    """

    def __init__(self) -> None:
        self.length_to_node: MutableMapping[int, Node] = {}

    def lookup_bucket(self, length: int) -> Optional[Node]:
        return self.length_to_node.get(length)

    def ensure_bucket(self, length: int) -> Node:
        node = self.length_to_node.get(length)
        if node is None:
            node = Node(1, length)
            self.length_to_node[length] = node
        return node

    def clear(self) -> None:
        self.length_to_node.clear()

    def iter_nodes(self) -> Iterator[Node]:
        stack = list(self.length_to_node.values())
        while stack:
            node = stack.pop()
            yield node
            stack.extend(child.node for child in node.key_to_child.values())


class DrainBase(ABC):
    def __init__(self,
                 depth: int = 4,
                 sim_th: float = 0.4,
                 max_children: int = 100,
                 protected_patterns: Sequence[Union[str, re.Pattern]] = (),
                 profiler: Profiler = NullProfiler(),
                 protected_cache_size: int = 10000) -> None:
        """
        Create a new Drain instance.

        :param depth: depth levels of log clusters. Root and the token-count layer take two of them,
            so the number of token layers walked is max(1, depth - 2).
        :param sim_th: similarity threshold - if percentage of similar tokens for a log message is below this
            number, a new log cluster will be created.
        :param max_children: max number of children of an internal node
        :param protected_patterns: regular expressions for tokens that identify an event and must never be
            generalized to a wildcard.
        :param protected_cache_size: number of per-token protected-pattern results to remember.
        """
        if depth < 1:
            raise ValueError("depth argument must be at least 1")
        if not 0 <= sim_th <= 1:
            raise ValueError("sim_th argument must be within [0, 1]")
        if max_children < 1:
            raise ValueError("max_children argument must be at least 1")

        self.max_node_depth = max(1, depth - 2)
        self.sim_th = sim_th
        self.max_children = max_children
        self.profiler = profiler
        self.param_str = PARAM_STR
        self.protected_patterns: Tuple[re.Pattern, ...] = tuple(re.compile(p) for p in protected_patterns)
        self.protected_cache: MutableMapping[str, bool] = LRUCache(maxsize=protected_cache_size)

        self.prefix_tree = PrefixTree()
        self.cluster_list: List[LogCluster] = []

    @property
    def clusters(self) -> Collection[LogCluster]:
        return self.cluster_list

    def reset(self) -> None:
        self.prefix_tree.clear()
        self.cluster_list = []

    @staticmethod
    def has_numbers(s: Iterable[str]) -> bool:
        return any(char.isdigit() for char in s)

    def is_protected(self, token: str) -> bool:
        if not self.protected_patterns:
            return False
        protected = self.protected_cache.get(token)
        if protected is None:
            protected = any(pattern.search(token) for pattern in self.protected_patterns)
            self.protected_cache[token] = protected
        return protected

    def fast_match(self,
                   clusters: Collection[LogCluster],
                   tokens: Sequence[str],
                   sim_th: float,
                   include_params: bool = False) -> Optional[LogCluster]:
        """
        Find the best match for a log message (represented as tokens) versus a list of clusters
        :param clusters: List of clusters to match against
        :param tokens: the log message, separated to tokens.
        :param sim_th: minimum required similarity threshold (None will be returned in no clusters reached it)
        :param include_params: consider tokens matched to wildcard parameters in similarity threshold.
        :return: Best match cluster or None
        """
        match_cluster = None

        max_sim: Union[int, float] = -1
        max_param_count = -1
        max_cluster = None

        for cluster in clusters:
            cur_sim, param_count = self.get_seq_distance(cluster.log_template_tokens, tokens, include_params)
            if cur_sim > max_sim or (cur_sim == max_sim and param_count > max_param_count):
                max_sim = cur_sim
                max_param_count = param_count
                max_cluster = cluster

        if max_sim >= sim_th:
            match_cluster = max_cluster
        return match_cluster

    def print_tree(self, file: Optional[IO[str]] = None, max_clusters: int = 5) -> None:
        print("<root>", file=file)
        for node in self.prefix_tree.length_to_node.values():
            self.print_node(node, 1, file, max_clusters)

    def print_node(self, node: Node, depth: int, file: Optional[IO[str]], max_clusters: int) -> None:
        out_str = '\t' * depth

        if depth == 1:
            out_str += f'<L={node.token}>'
        else:
            out_str += f'"{node.token}"'

        if node.leaf is not None:
            out_str += f" (cluster_count={len(node.leaf.clusters)})"

        print(out_str, file=file)

        for child in node.key_to_child.values():
            self.print_node(child.node, depth + 1, file, max_clusters)

        if node.leaf is not None:
            for cluster in node.leaf.clusters[:max_clusters]:
                print('\t' * (depth + 1) + str(cluster), file=file)

    def match(self, tokens: Sequence[str]) -> Optional[LogCluster]:
        """
        Match a log message against an already existing cluster.
        Match shall be perfect (sim_th=1.0), wildcard positions count as matched.
        New cluster will not be created as a result of this call, nor any cluster modifications.
        """
        return self.tree_search(tokens, sim_th=1.0, include_params=True)

    @abstractmethod
    def tree_search(self,
                    tokens: Sequence[str],
                    sim_th: Optional[float] = None,
                    include_params: bool = False) -> Optional[LogCluster]:
        ...

    @abstractmethod
    def add_seq_to_prefix_tree(self, cluster: LogCluster) -> None:
        ...

    @abstractmethod
    def get_seq_distance(self, seq1: Sequence[str], seq2: Sequence[str],
                         include_params: bool = False) -> Tuple[float, int]:
        ...

    @abstractmethod
    def create_template(self, seq1: Sequence[str], seq2: Sequence[str]) -> Sequence[str]:
        ...

    @abstractmethod
    def add_log_message(self, line_id: int, tokens: Sequence[str]) -> Tuple[LogCluster, str]:
        ...


class Drain(DrainBase):

    def tree_search(self,
                    tokens: Sequence[str],
                    sim_th: Optional[float] = None,
                    include_params: bool = False) -> Optional[LogCluster]:
        if sim_th is None:
            sim_th = self.sim_th

        # at first level, children are grouped by token (word) count
        token_count = len(tokens)
        cur_node = self.prefix_tree.lookup_bucket(token_count)

        # no template with same token count yet
        if cur_node is None:
            return None

        # find the leaf node for this log - a path of nodes matching the first N tokens (N=tree depth)
        current_depth = 1
        while current_depth < self.max_node_depth and current_depth <= token_count:
            token = tokens[current_depth - 1]
            next_node = cur_node.get_child(token)
            if next_node is None:  # no exact next token exist, try wildcard node
                next_node = cur_node.get_child(self.param_str)
            if next_node is None:  # no wildcard node exist
                return None
            cur_node = next_node
            current_depth += 1

        if cur_node.leaf is None:
            return None

        # get best match among all clusters with same prefix, or None if no match is above sim_th
        return self.fast_match(cur_node.leaf.clusters, tokens, sim_th, include_params)

    def add_seq_to_prefix_tree(self, cluster: LogCluster) -> None:
        tokens = cluster.log_template_tokens
        token_count = len(tokens)
        cur_node = self.prefix_tree.ensure_bucket(token_count)

        current_depth = 1
        while True:
            # if at max depth or past the last token in template - add current log cluster to the leaf node
            if current_depth >= self.max_node_depth or current_depth > token_count:
                if cur_node.leaf is None:
                    cur_node.leaf = ChildLeaf([cluster])
                elif not any(c is cluster for c in cur_node.leaf.clusters):
                    cur_node.leaf.clusters.append(cluster)
                break

            token = tokens[current_depth - 1]
            children = cur_node.key_to_child

            # if token not matched in this layer of existing tree.
            if token not in children:
                if not self.has_numbers(token):
                    if self.param_str in children:
                        if len(children) < self.max_children:
                            cur_node = cur_node.add_child(token)
                        else:
                            cur_node = children[self.param_str].node
                    else:
                        if len(children) + 1 < self.max_children:
                            cur_node = cur_node.add_child(token)
                        else:
                            # last free slot is reserved for the wildcard
                            cur_node = cur_node.add_child(self.param_str)

                else:
                    if self.param_str not in children:
                        cur_node = cur_node.add_child(self.param_str)
                    else:
                        cur_node = children[self.param_str].node

            # if the token is matched
            else:
                cur_node = children[token].node

            current_depth += 1

    # seq1 is a template, seq2 is the log to match
    def get_seq_distance(self, seq1: Sequence[str], seq2: Sequence[str],
                         include_params: bool = False) -> Tuple[float, int]:
        if len(seq1) != len(seq2):
            raise ValueError(f"sequences must be same length, got {len(seq1)} and {len(seq2)}")

        # sequences are empty - full match
        if len(seq1) == 0:
            return 1.0, 0

        sim_tokens = 0
        param_count = 0

        for token1, token2 in zip(seq1, seq2):
            if token1 == self.param_str:
                if self.is_protected(token2):
                    return 0.0, DISQUALIFIED_PARAM_COUNT
                param_count += 1
                continue
            if token1 == token2:
                sim_tokens += 1

        if include_params:
            sim_tokens += param_count

        ret_val = float(sim_tokens) / len(seq1)

        return ret_val, param_count

    def has_protected_mismatch(self, template: Sequence[str], tokens: Sequence[str]) -> bool:
        """
        True when some position differs between the template and the log message and one of the two
        tokens is protected. Such a log denotes a different event and must not be merged.
        """
        for token1, token2 in zip(template, tokens):
            if token1 != token2 and (self.is_protected(token1) or self.is_protected(token2)):
                return True
        return False

    def create_template(self, seq1: Sequence[str], seq2: Sequence[str]) -> Sequence[str]:
        """
        Loop through two sequences and create a template sequence that
        replaces unmatched tokens with the parameter string.

        :param seq1: the log message
        :param seq2: the existing template, its protected tokens win over seq1's
        :return: template sequence with param_str in place of unmatched tokens
        """
        if len(seq1) != len(seq2):
            raise ValueError(f"sequences must be same length, got {len(seq1)} and {len(seq2)}")

        template = []
        for token1, token2 in zip(seq1, seq2):
            if token1 == token2:
                template.append(token1)
            elif self.is_protected(token1) or self.is_protected(token2):
                template.append(token2)
            else:
                template.append(self.param_str)
        return template

    def add_new_cluster(self, tokens: Sequence[str], line_id: int) -> LogCluster:
        cluster = LogCluster(tokens, [line_id], len(self.cluster_list) + 1)
        self.cluster_list.append(cluster)
        self.add_seq_to_prefix_tree(cluster)
        return cluster

    def merge_into_cluster(self, cluster: LogCluster, tokens: Sequence[str], line_id: int) -> bool:
        new_template_tokens = tuple(self.create_template(tokens, cluster.log_template_tokens))
        cluster.log_ids.append(line_id)
        if new_template_tokens != cluster.log_template_tokens:
            cluster.set_template(new_template_tokens)
            return True
        return False

    def add_log_message(self, line_id: int, tokens: Sequence[str]) -> Tuple[LogCluster, str]:
        if self.profiler:
            self.profiler.start_section("tree_search")
        match_cluster = self.tree_search(tokens)
        if self.profiler:
            self.profiler.end_section("tree_search")

        if match_cluster is not None and self.has_protected_mismatch(match_cluster.log_template_tokens, tokens):
            logger.debug("line %s vetoed from cluster %s on a protected token", line_id, match_cluster.cluster_id)
            match_cluster = None

        # Match no existing log cluster
        if match_cluster is None:
            section = "create_cluster"
            if self.profiler:
                self.profiler.start_section(section)
            match_cluster = self.add_new_cluster(tokens, line_id)
            update_type = "cluster_created"

        # Add the new log message to the existing cluster
        else:
            section = "cluster_exist"
            if self.profiler:
                self.profiler.start_section(section)
            if self.merge_into_cluster(match_cluster, tokens, line_id):
                update_type = "cluster_template_changed"
            else:
                update_type = "none"

        if self.profiler:
            self.profiler.end_section(section)

        logger.debug("line %s: %s -> cluster %s", line_id, update_type, match_cluster.cluster_id)
        return match_cluster, update_type
