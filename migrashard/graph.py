"""Transaction graphs of accounts and helpers built on them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from .transactions import Transaction


@dataclass
class Graph:
    """Accounts joined by the transactions between them.

    Vertices are account addresses.  edge_set holds adjacency lists, and
    edge_weight, indexed by vertex number, counts edges per neighbour number.
    """

    vertex_set: dict[str, int] = field(default_factory=dict)
    vertices: list[str] = field(default_factory=list)
    edge_set: dict[str, list[str]] = field(default_factory=dict)
    edge_weight: list[dict[int, int]] = field(default_factory=list)

    def __contains__(self, v: str) -> bool:
        return v in self.vertex_set

    def add_vertex(self, v: str) -> None:
        if v not in self.vertex_set:
            self.vertex_set[v] = len(self.vertices)
            self.vertices.append(v)
            self.edge_weight.append({})

    def _link(self, a: str, b: str) -> None:
        self.edge_set.setdefault(a, []).append(b)
        weights = self.edge_weight[self.vertex_set[a]]
        key = self.vertex_set[b]
        weights[key] = weights.get(key, 0) + 1

    def add_edge(self, u: str, v: str, uni: int = 0) -> None:
        """Add an edge; with uni set only v points back to u, otherwise both ways."""
        self.add_vertex(u)
        self.add_vertex(v)
        if not uni:
            self._link(u, v)
        self._link(v, u)

    def copy(self) -> Graph:
        """An independent copy of the graph."""
        return Graph(
            vertex_set=dict(self.vertex_set),
            vertices=list(self.vertices),
            edge_set={k: list(v) for k, v in self.edge_set.items()},
            edge_weight=[dict(w) for w in self.edge_weight],
        )

    def render(self) -> str:
        """Each vertex with its neighbours, one line per vertex, then a blank line."""
        lines = []
        for v in self.vertices:
            neighbours = "".join(f" {u}\t" for u in self.edge_set.get(v, []))
            lines.append(f"{v} edge:{neighbours}\n")
        return "".join(lines) + "\n"


def transactions_to_graph(
    txs: Iterable[Transaction],
) -> tuple[dict[str, dict[str, int]], list[str]]:
    """Weighted undirected graph of the transactions, and addresses in first-seen order."""
    graph: dict[str, dict[str, int]] = {}
    addrs: list[str] = []
    seen: set[str] = set()
    for tx in txs:
        sender, recipient = tx.sender.hex(), tx.recipient.hex()
        out = graph.setdefault(sender, {})
        out[recipient] = out.get(recipient, 0) + 1
        back = graph.setdefault(recipient, {})
        back[sender] = back.get(sender, 0) + 1
        for address in (sender, recipient):
            if address not in seen:
                seen.add(address)
                addrs.append(address)
    return graph, addrs


def allocate(points: dict[str, list[float]]) -> dict[str, int]:
    """Give each address the shard of its highest positive score.

    The first shard reaching the maximum wins; addresses with no positive
    score are left out.
    """
    result: dict[str, int] = {}
    for address, scores in points.items():
        best = 0.0
        for shard, score in enumerate(scores):
            if score > best:
                best = score
                result[address] = shard
    return result