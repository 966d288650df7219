from migrashard.graph import Graph, allocate, transactions_to_graph
from migrashard.transactions import Transaction


def test_add_vertex_is_idempotent():
    g = Graph()
    g.add_vertex("a")
    g.add_vertex("b")
    g.add_vertex("a")
    assert g.vertices == ["a", "b"]
    assert g.vertex_set == {"a": 0, "b": 1}
    assert len(g.edge_weight) == 2


def test_add_edge_both_ways():
    g = Graph()
    g.add_edge("a", "b")
    g.add_edge("a", "b")
    assert g.edge_set["a"] == ["b", "b"]
    assert g.edge_set["b"] == ["a", "a"]
    assert g.edge_weight[g.vertex_set["a"]][g.vertex_set["b"]] == 2
    assert g.edge_weight[g.vertex_set["b"]][g.vertex_set["a"]] == 2


def test_add_edge_one_way_points_back_only():
    g = Graph()
    g.add_edge("a", "b", 1)
    assert "a" not in g.edge_set
    assert g.edge_set["b"] == ["a"]
    assert g.edge_weight[g.vertex_set["a"]] == {}
    assert "a" in g and "b" in g


def test_weights_are_symmetric_for_undirected_graph():
    g = Graph()
    for u, v in [("a", "b"), ("b", "c"), ("c", "a"), ("a", "b")]:
        g.add_edge(u, v)
    for i, weights in enumerate(g.edge_weight):
        for j, w in weights.items():
            assert g.edge_weight[j][i] == w


def test_copy_is_independent():
    g = Graph()
    g.add_edge("a", "b")
    c = g.copy()
    assert c == g
    c.add_edge("a", "c")
    assert "c" not in g
    assert g.edge_set["a"] == ["b"]


def test_render():
    g = Graph()
    g.add_edge("a", "b")
    assert g.render() == "a edge: b\t\nb edge: a\t\n\n"


def test_transactions_to_graph():
    txs = [
        Transaction(sender=b"\x01", recipient=b"\x02"),
        Transaction(sender=b"\x02", recipient=b"\x01"),
        Transaction(sender=b"\x01", recipient=b"\x03"),
    ]
    graph, addrs = transactions_to_graph(txs)
    assert addrs == ["01", "02", "03"]
    assert graph["01"] == {"02": 2, "03": 1}
    assert graph["02"] == {"01": 2}
    assert graph["03"] == {"01": 1}


def test_transactions_to_graph_empty():
    assert transactions_to_graph([]) == ({}, [])


def test_allocate_picks_highest_score():
    points = {"a": [0.1, 0.7, 0.2], "b": [0.5, 0.5], "c": [0.0, 0.0]}
    result = allocate(points)
    assert result == {"a": 1, "b": 0}
    assert "c" not in result


def test_allocate_empty():
    assert allocate({}) == {}