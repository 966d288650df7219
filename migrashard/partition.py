"""Account partitioning: constrained label propagation, load balancing, METIS and PageRank."""

from __future__ import annotations

import logging
import math
import random
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Sequence

from .account import address_to_shard
from .graph import Graph

logger = logging.getLogger(__name__)

ShardLookup = Callable[[str], int]

_SKIP_AFTER_MOVES = 1000


def _div(a: float, b: float) -> float:
    """Float division that yields inf or nan on a zero divisor instead of raising."""
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a)
    return a / b


def _default_lookup(shard_num: int) -> ShardLookup:
    return lambda address: address_to_shard(address, shard_num)


@dataclass
class CLPAState:
    """State of the constrained label propagation algorithm.

    weight_penalty is the beta of the algorithm, max_iterations its tau.
    shard_of gives the shard an account starts in.
    """

    weight_penalty: float
    max_iterations: int
    shard_num: int
    shard_of: ShardLookup | None = None
    net_graph: Graph = field(default_factory=Graph)
    partition_map: dict[str, int] = field(default_factory=dict)
    edges_to_shard: list[int] = field(default_factory=list)
    vertices_num_in_shard: list[int] = field(default_factory=list)
    min_edges_to_shard: int = 0
    cross_shard_edge_num: int = 0
    graph_hash: bytes = b""

    def __post_init__(self) -> None:
        if self.shard_of is None:
            self.shard_of = _default_lookup(self.shard_num)
        if not self.vertices_num_in_shard:
            self.vertices_num_in_shard = [0] * self.shard_num

    def add_vertex(self, v: str) -> None:
        """Add an account, placing it in its current shard if it has none yet."""
        self.net_graph.add_vertex(v)
        if v not in self.partition_map:
            self.partition_map[v] = self.shard_of(v)
        self.vertices_num_in_shard[self.partition_map[v]] += 1

    def add_edge(self, u: str, v: str) -> None:
        """Add an undirected edge, adding missing endpoints first."""
        if u not in self.net_graph:
            self.add_vertex(u)
        if v not in self.net_graph:
            self.add_vertex(v)
        self.net_graph.add_edge(u, v, 0)

    def compute_edges_to_shard(self) -> None:
        """Recompute the edge weight of every shard and the cross-shard edge count."""
        edges = [0] * self.shard_num
        inner = [0] * self.shard_num
        for v, neighbours in self.net_graph.edge_set.items():
            v_shard = self.partition_map[v]
            for u in neighbours:
                u_shard = self.partition_map[u]
                if v_shard != u_shard:
                    edges[u_shard] += 1
                else:
                    inner[u_shard] += 1
        self.cross_shard_edge_num = sum(edges) // 2
        self.edges_to_shard = [e + i // 2 for e, i in zip(edges, inner)]
        self.min_edges_to_shard = min(self.edges_to_shard, default=0x7FFFFFFF)

    def _update_after_move(self, v: str, old_shard: int) -> None:
        v_shard = self.partition_map[v]
        for u in self.net_graph.edge_set.get(v, []):
            u_shard = self.partition_map[u]
            if v_shard != u_shard:
                self.edges_to_shard[v_shard] += 1
                if u_shard == old_shard:
                    self.cross_shard_edge_num += 1
                else:
                    self.edges_to_shard[old_shard] -= 1
            else:
                self.edges_to_shard[old_shard] -= 1
                self.cross_shard_edge_num -= 1
        self.min_edges_to_shard = min(self.edges_to_shard)

    def _shard_score(self, v: str, shard: int) -> float:
        neighbours = self.net_graph.edge_set.get(v, [])
        linked = sum(1 for u in neighbours if self.partition_map[u] == shard)
        share = _div(float(linked), float(len(neighbours)))
        load = _div(
            self.weight_penalty * float(self.edges_to_shard[shard]),
            float(self.min_edges_to_shard),
        )
        return share * (1 - load)

    def partition(self) -> tuple[list[str], dict[str, int]]:
        """Run the algorithm; return moved accounts in order of first move, and their shards."""
        self.compute_edges_to_shard()
        logger.info("cross-shard edges: %d", self.cross_shard_edge_num)
        moved: dict[str, int] = {}
        addrs: list[str] = []
        move_count: dict[str, int] = {}
        for iteration in range(self.max_iterations):
            for v in self.net_graph.vertices:
                if move_count.get(v, 0) >= _SKIP_AFTER_MOVES:
                    continue
                scores: dict[int, float] = {}
                best_score = -9999.0
                now_shard = best_shard = self.partition_map[v]
                for u in self.net_graph.edge_set.get(v, []):
                    u_shard = self.partition_map[u]
                    if u_shard in scores:
                        continue
                    scores[u_shard] = self._shard_score(v, u_shard)
                    if best_score < scores[u_shard]:
                        best_score = scores[u_shard]
                        best_shard = u_shard
                if best_shard != now_shard and self.vertices_num_in_shard[now_shard] > 1:
                    self.partition_map[v] = best_shard
                    if v not in moved:
                        addrs.append(v)
                    moved[v] = best_shard
                    move_count[v] = move_count.get(v, 0) + 1
                    self.vertices_num_in_shard[now_shard] -= 1
                    self.vertices_num_in_shard[best_shard] += 1
                    self._update_after_move(v, now_shard)
            logger.info("%d over", iteration)
        for shard, count in enumerate(self.vertices_num_in_shard):
            logger.info("%d has vertexs: %d", shard, count)
        return addrs, moved


@dataclass
class LBFState:
    """State of the load-balancing partitioner that fills shards at random."""

    alpha: float
    shard_num: int
    shard_of: ShardLookup | None = None
    rng: random.Random = field(default_factory=random.Random)
    net_graph: Graph = field(default_factory=Graph)
    partition_map: dict[str, int] = field(default_factory=dict)
    avg_weight: float = 0.0

    def __post_init__(self) -> None:
        if self.shard_of is None:
            self.shard_of = _default_lookup(self.shard_num)

    def add_vertex(self, v: str) -> None:
        self.net_graph.add_vertex(v)

    def add_edge(self, u: str, v: str, uni: int = 0) -> None:
        """Add an edge; with uni set it is one-way, otherwise both ways."""
        self.net_graph.add_edge(u, v, uni)

    def compute_avg_weight(self) -> float:
        """Average load per shard: the total of all adjacency list lengths over shard_num."""
        total = sum(len(n) for n in self.net_graph.edge_set.values())
        self.avg_weight = _div(float(total), float(self.shard_num))
        return self.avg_weight

    def partition(self) -> tuple[list[str], dict[str, int]]:
        """Fill all but the last shard with random accounts up to the average load.

        Returns the accounts whose shard changes, in order, and their new shards.
        """
        self.compute_avg_weight()
        logger.info("average weight: %s", self.avg_weight)
        moved: dict[str, int] = {}
        addrs: list[str] = []
        self.partition_map = {}
        remaining = list(self.net_graph.vertices)

        def place(vertex: str, shard: int) -> None:
            self.partition_map[vertex] = shard
            if shard != self.shard_of(vertex):
                addrs.append(vertex)
                moved[vertex] = shard

        for shard in range(self.shard_num - 1):
            load = 0.0
            while load < self.avg_weight and remaining:
                vertex = remaining.pop(self.rng.randrange(len(remaining)))
                place(vertex, shard)
                load += float(len(self.net_graph.edge_set.get(vertex, [])))
        for vertex in remaining:
            place(vertex, self.shard_num - 1)
        return addrs, moved


@dataclass
class METISState:
    """State of a partition delegated to an external METIS program."""

    alpha: float
    shard_num: int
    shard_of: ShardLookup | None = None
    executable: str = "METIS/partition"
    input_path: str = "sampleGraph0.txt"
    output_path: str = "MetisPartionGraph0.txt"
    net_graph: Graph = field(default_factory=Graph)
    partition_map: dict[str, int] = field(default_factory=dict)
    avg_weight: float = 0.0

    def __post_init__(self) -> None:
        if self.shard_of is None:
            self.shard_of = _default_lookup(self.shard_num)

    def add_vertex(self, v: str) -> None:
        self.net_graph.add_vertex(v)

    def add_edge(self, u: str, v: str, uni: int = 0) -> None:
        """Add an edge; with uni set it is one-way, otherwise both ways."""
        self.net_graph.add_edge(u, v, uni)

    def write_graph(self, path: str | Path) -> None:
        """Write the graph as "nodes edges" then one "1 code weight ..." line per vertex."""
        graph = self.net_graph
        if len(graph.vertex_set) != len(graph.vertices):
            raise ValueError("vertex count mismatch in graph")
        edge_num = sum(len(w) for w in graph.edge_weight)
        if edge_num % 2 != 0:
            raise ValueError("edge count is odd; the graph is not undirected")
        lines = [f"{len(graph.vertices)} {edge_num // 2}\n"]
        for weights in graph.edge_weight:
            lines.append("1" + "".join(f" {k} {w}" for k, w in weights.items()) + "\n")
        Path(path).write_text("".join(lines))

    def run_metis(
        self, input_path: str, output_path: str, executable: str, shard_num: int
    ) -> str:
        """Run the METIS program on the graph file and return what it printed."""
        logger.info("running METIS")
        try:
            done = subprocess.run(
                [executable, input_path, output_path, str(shard_num)],
                capture_output=True,
                check=True,
                text=True,
            )
        except (OSError, subprocess.CalledProcessError) as exc:
            raise RuntimeError(f"METIS failed: {exc}") from exc
        logger.info("%s", done.stdout)
        logger.info("METIS finished")
        return done.stdout

    def partition(self) -> tuple[list[str], dict[str, int]]:
        """Partition with METIS; return accounts whose shard changes, and their new shards."""
        self.write_graph(self.input_path)
        self.run_metis(self.input_path, self.output_path, self.executable, self.shard_num)
        moved: dict[str, int] = {}
        addrs: list[str] = []
        with open(self.output_path, encoding="utf-8") as result:
            for line in result:
                line = line.rstrip("\r\n")
                if not line:
                    continue
                index_text, shard_text = line.split(" ")[:2]
                vertex = self.net_graph.vertices[int(index_text)]
                shard = int(shard_text)
                self.partition_map[vertex] = shard
                if shard != self.shard_of(vertex):
                    addrs.append(vertex)
                    moved[vertex] = shard
        return addrs, moved


def _weighted_mean(out: Mapping[str, int], points: Mapping[str, list[float]], shard: int) -> float:
    total = 0.0
    count = 0
    for neighbour, weight in out.items():
        if weight != 0:
            total += float(weight) * points[neighbour][shard]
            count += weight
    return _div(total, float(count))


def pagerank(
    graph: Mapping[str, Mapping[str, int]],
    addrs: Sequence[str],
    addr2shard: Mapping[str, int],
    numbda: float,
    iters: int,
    shard_num: int,
) -> dict[str, list[float]]:
    """Score every account for every shard by iterated neighbour averaging.

    Each score mixes (1 - numbda) of a uniform share of the account's own
    shard with numbda of the weighted mean of its neighbours' scores.
    """
    points = {addr: [0.0] * shard_num for addr in addrs}
    shard_size = [0] * shard_num
    for shard in addr2shard.values():
        shard_size[shard] += 1
    for _ in range(iters):
        for addr in addrs:
            own = addr2shard.get(addr, 0)
            out = graph.get(addr, {})
            for shard in range(shard_num):
                w = _div(1.0, float(shard_size[shard])) if own == shard else 0.0
                points[addr][shard] = (1 - numbda) * w + numbda * _weighted_mean(out, points, shard)
    return points