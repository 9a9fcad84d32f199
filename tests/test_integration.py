"""integration tests for the notes/data to line coverage pipeline"""

import pytest

from gcovtool import (
    CoverageUnit,
    GcovVersion,
    aggregate,
    builder,
    decode_data,
    decode_graph,
    encode_data,
    encode_graph,
    make_sample,
    reduce,
    reduce_sample,
)
from gcovtool.errors import TruncatedInput


def create_program_graph(version=None):
    """two functions of calc.c plus one inlined from calc.h"""
    b = builder()
    if version is not None:
        b.set_version(version)
    b.set_stamp(0xC0FFEE)

    # int sum(int n) { for (...) total += i; return total; }
    b.add_function("sum", source="calc.c", start_line=3, lineno_checksum=11, cfg_checksum=12)
    b.add_blocks(5)
    b.add_arc(0, 1, on_tree=True)
    b.add_arc(1, 2)
    b.add_arc(1, 3)
    b.add_arc(2, 1, on_tree=True)
    b.add_arc(3, 4, on_tree=True)
    b.add_lines(1, [4])
    b.add_lines(2, [5])
    b.add_lines(3, [6])

    # int main() { if (...) sum(); else clamp(); }
    b.add_function("main", source="calc.c", start_line=9, lineno_checksum=21, cfg_checksum=22)
    b.add_blocks(5)
    b.add_arc(0, 1, fallthrough=True)
    b.add_arc(1, 2)
    b.add_arc(1, 3)
    b.add_arc(2, 4, on_tree=True)
    b.add_arc(3, 4, on_tree=True)
    b.add_lines(1, [10])
    b.add_lines(2, [11])
    b.add_lines(3, [2], source="calc.h")
    b.add_lines(3, [13])
    b.add_lines(4, [14])
    return b.build()


class TestPipeline:
    """test decode, reduce and aggregate together"""

    def test_end_to_end(self):
        """test encoded artifacts reduce to the expected line counts"""
        graph = decode_graph(encode_graph(create_program_graph()))
        # sum: loop body 6 times over 2 calls; main: 3 calls, 2 through sum
        blob = encode_data(make_sample(graph, [[6, 2], [3, 2, 1]]))
        sample = decode_data(blob, graph)
        unit = aggregate(graph, [reduce_sample(graph, sample)])

        assert unit.source == "calc.c"
        assert len(unit) == 14
        assert unit.line(4).hit_count == 8
        assert unit.line(5).hit_count == 6
        assert unit.line(6).hit_count == 2
        assert unit.line(10).hit_count == 3
        assert unit.line(11).hit_count == 2
        assert unit.line(13).hit_count == 1
        assert unit.line(14).hit_count == 3
        assert unit.line(2).executable is False
        assert [fn.execution_count for fn in unit.functions] == [2, 3]

    def test_header_lines_follow_their_source(self):
        """test inlined header lines aggregate under the header"""
        graph = create_program_graph()
        reduced = reduce_sample(graph, make_sample(graph, [[6, 2], [3, 2, 1]]))
        unit = aggregate(graph, [reduced], source="calc.h")

        assert len(unit) == 2
        assert unit.line(2).hit_count == 1

    @pytest.mark.parametrize(
        "version",
        [GcovVersion(4, 8), GcovVersion(8, 3), GcovVersion(12, 2), GcovVersion(13, 2)],
        ids=str,
    )
    @pytest.mark.parametrize("little_endian", [True, False])
    def test_files_on_disk(self, tmp_path, version, little_endian):
        """test every layout through the file based entry point"""
        graph = create_program_graph(version)
        graph_path = tmp_path / "calc.gcno"
        graph_path.write_bytes(encode_graph(graph, little_endian=little_endian))
        data_paths = []
        for i, counters in enumerate(([[6, 2], [3, 2, 1]], [[0, 0], [0, 0, 0]])):
            path = tmp_path / f"calc{i}.gcda"
            path.write_bytes(
                encode_data(make_sample(graph, counters), little_endian=little_endian)
            )
            data_paths.append(path)

        unit = CoverageUnit.from_files(graph_path, data_paths, source="src/calc.c")

        assert unit.runs == 2
        assert unit.programs == 2
        assert unit.line(4).hit_count == 8
        assert unit.line(14).hit_count == 3

    def test_counters_round_trip(self):
        """test counters recovered from a flow reproduce the same flow"""
        graph = create_program_graph()
        sample = make_sample(graph, [[6, 2], [3, 2, 1]])
        first = reduce_sample(graph, sample)

        rebuilt = make_sample(graph, [flow.counters() for flow in first.flows])
        decoded = decode_data(encode_data(rebuilt), graph)
        second = reduce_sample(graph, decoded)

        assert [f.block_counts for f in second.flows] == [f.block_counts for f in first.flows]

    def test_reduce_from_full_arc_counts(self):
        """test a fully measured flow reduces to itself"""
        graph = create_program_graph()
        flows = reduce_sample(graph, make_sample(graph, [[6, 2], [3, 2, 1]])).flows
        for flow in flows:
            assert reduce(flow.graph, flow.arc_counts) == flow

    def test_doubling_through_files(self):
        """test one data file aggregated twice doubles the counts"""
        graph = create_program_graph()
        blob = encode_data(make_sample(graph, [[6, 2], [3, 2, 1]]))
        reduced = reduce_sample(graph, decode_data(blob, graph))

        once = aggregate(graph, [reduced])
        twice = aggregate(graph, [reduced, reduced])
        for single, double in zip(once.executable_lines, twice.executable_lines):
            assert double.hit_count == 2 * single.hit_count
        assert twice.runs == 2

    def test_truncated_data_never_partial(self):
        """test every prefix of a multi-function data file is rejected"""
        graph = create_program_graph()
        blob = encode_data(make_sample(graph, [[6, 2], [3, 2, 1]], runs=4))
        for cut in range(len(blob)):
            with pytest.raises(TruncatedInput):
                decode_data(blob[:cut], graph)
