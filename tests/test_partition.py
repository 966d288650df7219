import random
import sys

import pytest

from migrashard.partition import CLPAState, LBFState, METISState, pagerank

START = {"a": 0, "b": 0, "c": 0, "d": 1, "e": 1}


def _clpa():
    state = CLPAState(weight_penalty=0.0, max_iterations=3, shard_num=2, shard_of=START.__getitem__)
    for u, v in [("a", "b"), ("a", "c"), ("b", "c"), ("a", "d"), ("b", "d"), ("c", "d")]:
        state.add_edge(u, v)
    state.add_vertex("e")
    return state


def test_clpa_edges_single_cross_edge():
    state = CLPAState(weight_penalty=0.5, max_iterations=1, shard_num=2, shard_of=START.__getitem__)
    state.add_edge("a", "d")
    state.compute_edges_to_shard()
    assert state.cross_shard_edge_num == 1
    assert state.edges_to_shard == [1, 1]
    assert state.min_edges_to_shard == 1


def test_clpa_initial_placement_counts():
    state = _clpa()
    assert state.partition_map == START
    assert sum(state.vertices_num_in_shard) == len(START)


def test_clpa_moves_outlier_to_its_neighbours():
    state = _clpa()
    addrs, moved = state.partition()
    assert moved == {"d": 0}
    assert addrs == ["d"]
    assert state.partition_map["d"] == 0
    assert state.vertices_num_in_shard == [4, 1]
    assert state.cross_shard_edge_num == 0


def test_clpa_partition_consistent_with_recount():
    state = _clpa()
    state.partition()
    cross = state.cross_shard_edge_num
    state.compute_edges_to_shard()
    assert state.cross_shard_edge_num == cross


def test_lbf_avg_weight():
    state = LBFState(alpha=0.5, shard_num=2, shard_of=START.__getitem__)
    state.add_edge("a", "b", 0)
    state.add_edge("b", "c", 0)
    assert state.compute_avg_weight() == pytest.approx(2.0)


def test_lbf_partition_invariants():
    state = LBFState(alpha=0.5, shard_num=2, shard_of=START.__getitem__, rng=random.Random(7))
    for u, v in [("a", "b"), ("b", "c"), ("c", "d"), ("d", "e")]:
        state.add_edge(u, v, 0)
    addrs, moved = state.partition()
    assert set(state.partition_map) == set(START)
    assert all(0 <= s < 2 for s in state.partition_map.values())
    assert addrs == list(moved)
    for addr, shard in state.partition_map.items():
        assert (addr in moved) == (shard != START[addr])
    assert state.net_graph.vertices == ["a", "b", "c", "d", "e"]


def test_lbf_single_shard_takes_everything():
    state = LBFState(alpha=0.5, shard_num=1, shard_of=START.__getitem__)
    state.add_edge("a", "d", 0)
    state.add_edge("e", "b", 0)
    addrs, moved = state.partition()
    assert set(state.partition_map.values()) == {0}
    assert moved == {"d": 0, "e": 0}
    assert sorted(addrs) == ["d", "e"]


def test_metis_write_graph_format(tmp_path):
    state = METISState(alpha=0.5, shard_num=2, shard_of=START.__getitem__)
    state.add_edge("a", "b", 0)
    path = tmp_path / "graph.txt"
    state.write_graph(path)
    assert path.read_text() == "2 1\n1 1 1\n1 0 1\n"


def test_metis_write_graph_rejects_one_way_edges(tmp_path):
    state = METISState(alpha=0.5, shard_num=2, shard_of=START.__getitem__)
    state.add_edge("a", "b", 1)
    with pytest.raises(ValueError):
        state.write_graph(tmp_path / "graph.txt")


def test_metis_run_missing_program(tmp_path):
    state = METISState(alpha=0.5, shard_num=2)
    with pytest.raises(RuntimeError):
        state.run_metis("in.txt", "out.txt", str(tmp_path / "no-such-program"), 2)


def test_metis_partition_reads_program_output(tmp_path):
    script = tmp_path / "fake_metis"
    script.write_text(
        f"#!{sys.executable}\n"
        "import sys\n"
        "open(sys.argv[2], 'w').write('0 1\\n1 0\\n')\n"
        "print('done', sys.argv[3])\n"
    )
    script.chmod(0o755)
    state = METISState(
        alpha=0.5,
        shard_num=2,
        shard_of=START.__getitem__,
        executable=str(script),
        input_path=str(tmp_path / "in.txt"),
        output_path=str(tmp_path / "out.txt"),
    )
    state.add_edge("a", "b", 0)
    addrs, moved = state.partition()
    assert addrs == ["a"]
    assert moved == {"a": 1}
    assert (tmp_path / "in.txt").read_text().startswith("2 1\n")


def test_pagerank_without_neighbours_gives_uniform_share():
    addr2shard = {"a": 0, "b": 1, "c": 0}
    points = pagerank({}, ["a", "b", "c"], addr2shard, 0.0, 2, 2)
    for shard in range(2):
        members = [a for a, s in addr2shard.items() if s == shard]
        assert sum(points[a][shard] for a in members) == pytest.approx(1.0)
        others = [a for a, s in addr2shard.items() if s != shard]
        assert all(points[a][shard] == 0.0 for a in others)


def test_pagerank_isolated_account_is_nan_when_mixing():
    points = pagerank({}, ["a"], {"a": 0}, 0.5, 1, 1)
    assert str(points["a"][0]) == "nan"


def test_pagerank_scores_bounded():
    graph = {"a": {"b": 2}, "b": {"a": 2, "c": 1}, "c": {"b": 1}}
    addr2shard = {"a": 0, "b": 0, "c": 1}
    points = pagerank(graph, ["a", "b", "c"], addr2shard, 0.5, 5, 2)
    assert set(points) == {"a", "b", "c"}
    assert all(0.0 <= p <= 1.0 for scores in points.values() for p in scores)
    assert points["a"][0] > points["a"][1]
    assert points["c"][1] > points["c"][0]