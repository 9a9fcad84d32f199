"""tests for line coverage aggregation"""

import pytest

from gcovtool.core import (
    CoverageUnit,
    LineAccumulator,
    LineRecord,
    aggregate,
    artifact_paths,
    build_unit,
    resolve_source,
)
from gcovtool.errors import StructuralMismatch
from gcovtool.flow import reduce_sample
from gcovtool.gcov import builder, decode_graph, encode_data, encode_graph, make_sample


def create_test_graph():
    """main.c: if/else in main plus a helper inlined from util.h"""
    b = builder()
    b.add_function("main", source="main.c", start_line=9)
    b.add_blocks(4)
    b.add_arc(0, 1, fallthrough=True)
    b.add_arc(0, 2)
    b.add_arc(1, 3, on_tree=True)
    b.add_arc(2, 3, on_tree=True)
    b.add_lines(0, [10])
    b.add_lines(1, [11])
    b.add_lines(2, [13])
    b.add_lines(3, [14])

    b.add_function("helper", source="main.c", start_line=20)
    b.add_blocks(3)
    b.add_arc(0, 1)
    b.add_arc(1, 2, on_tree=True)
    b.add_lines(1, [21, 22])
    b.add_lines(1, [5], source="util.h")
    return b.build()


def reduced(graph, main=(7, 3), helper=(0,), runs=1, programs=1):
    sample = make_sample(graph, [list(main), list(helper)], runs=runs, programs=programs)
    return reduce_sample(graph, sample)


class TestAggregate:
    """test folding reduced samples into a coverage unit"""

    def test_single_sample(self):
        """test block counts become line counts"""
        graph = create_test_graph()
        unit = aggregate(graph, [reduced(graph)])

        assert unit.source == "main.c"
        assert len(unit) == 22
        assert unit.runs == 1
        assert unit.programs == 1
        assert unit.line(10) == LineRecord(10, True, 10)
        assert unit.line(11) == LineRecord(11, True, 7)
        assert unit.line(13) == LineRecord(13, True, 3)
        assert unit.line(14) == LineRecord(14, True, 10)
        assert unit.line(12) == LineRecord(12, False, None)

    def test_executed_never_hit_vs_not_executable(self):
        """test zero-hit executable lines differ from non-executable lines"""
        graph = create_test_graph()
        unit = aggregate(graph, [reduced(graph)])

        assert unit.line(21) == LineRecord(21, True, 0)
        assert not unit.line(21).covered
        assert unit.line(1).executable is False
        assert unit.line(1).hit_count is None

    def test_multi_line_block(self):
        """test every line of a block receives the block count"""
        graph = create_test_graph()
        unit = aggregate(graph, [reduced(graph, helper=(4,))])

        assert unit.line(21).hit_count == 4
        assert unit.line(22).hit_count == 4

    def test_other_sources_excluded(self):
        """test lines of other source files do not leak into the unit"""
        graph = create_test_graph()
        unit = aggregate(graph, [reduced(graph, helper=(4,))])

        # line 5 of util.h must not show up as line 5 of main.c
        assert unit.line(5).executable is False

    def test_header_as_unit(self):
        """test aggregating for a secondary source file"""
        graph = create_test_graph()
        unit = aggregate(graph, [reduced(graph, helper=(4,))], source="util.h")

        assert unit.source == "util.h"
        assert len(unit) == 5
        assert unit.line(5) == LineRecord(5, True, 4)
        assert len(unit.executable_lines) == 1

    def test_line_repeated_after_source_switch(self):
        """test a block naming a line twice counts it once"""
        b = builder()
        b.add_function("loop", source="main.c", start_line=30)
        b.add_blocks(2)
        b.add_arc(0, 1)
        b.add_lines(0, [31])
        b.add_lines(0, [5], source="util.h")
        b.add_lines(0, [31])
        graph = decode_graph(encode_graph(b.build()))
        assert [loc.line for loc in graph.functions[0].blocks[0].lines] == [31, 5, 31]

        unit = aggregate(graph, [reduce_sample(graph, make_sample(graph, [[6]]))])
        assert unit.line(31).hit_count == 6

    def test_identical_samples_double(self):
        """test two identical samples double every count"""
        graph = create_test_graph()
        once = aggregate(graph, [reduced(graph, helper=(3,))])
        twice = aggregate(graph, [reduced(graph, helper=(3,))] * 2)

        assert twice.runs == 2 * once.runs
        assert twice.programs == 2 * once.programs
        for single, double in zip(once.lines, twice.lines):
            assert double.executable == single.executable
            if single.executable:
                assert double.hit_count == 2 * single.hit_count
            else:
                assert double.hit_count is None

    def test_order_independent(self):
        """test the fold order of samples does not change the result"""
        graph = create_test_graph()
        a = reduced(graph, main=(1, 0), helper=(2,), runs=1)
        b = reduced(graph, main=(0, 5), helper=(0,), runs=3, programs=2)

        assert aggregate(graph, [a, b]) == aggregate(graph, [b, a])
        unit = aggregate(graph, [a, b])
        assert unit.runs == 4
        assert unit.programs == 3
        assert unit.line(10).hit_count == 6

    def test_no_samples(self):
        """test executable lines are known without any data"""
        graph = create_test_graph()
        unit = aggregate(graph, [])

        assert unit.runs == 0
        assert unit.programs == 0
        assert [line.number for line in unit.executable_lines] == [10, 11, 13, 14, 21, 22]
        assert all(line.hit_count == 0 for line in unit.executable_lines)
        assert unit.covered_lines == []
        assert unit.line_rate == 0.0

    def test_line_count_extends_unit(self):
        """test the unit spans the whole source file when its length is known"""
        graph = create_test_graph()
        unit = aggregate(graph, [reduced(graph)], line_count=30)

        assert len(unit) == 30
        assert unit.line(30) == LineRecord(30, False, None)

    def test_line_count_never_truncates(self):
        """test a short line count still covers every executable line"""
        graph = create_test_graph()
        unit = aggregate(graph, [reduced(graph)], line_count=3)
        assert len(unit) == 22

    def test_function_summaries(self):
        """test per-function entry counts and block coverage"""
        graph = create_test_graph()
        unit = aggregate(graph, [reduced(graph), reduced(graph, main=(1, 1), helper=(2,))])

        main, helper = unit.functions
        assert (main.name, main.start_line) == ("main", 9)
        assert main.execution_count == 12
        assert (main.blocks_executed, main.block_count) == (4, 4)
        assert helper.execution_count == 2
        assert (helper.blocks_executed, helper.block_count) == (1, 1)

    def test_line_out_of_range(self):
        """test line lookups outside the unit"""
        graph = create_test_graph()
        unit = aggregate(graph, [])
        with pytest.raises(IndexError):
            unit.line(0)
        with pytest.raises(IndexError):
            unit.line(len(unit) + 1)

    def test_line_rate(self):
        """test the covered share of executable lines"""
        graph = create_test_graph()
        unit = aggregate(graph, [reduced(graph)])

        assert len(unit.covered_lines) == 4
        assert unit.line_rate == pytest.approx(4 / 6)


class TestLineAccumulator:
    """test partial totals and merging"""

    def test_merge_sums_counts(self):
        """test merging adds hits and unions executable lines"""
        a = LineAccumulator("x.c", executable={1, 2}, runs=1, programs=1)
        a.hits.update({1: 3})
        b = LineAccumulator("x.c", executable={2, 3}, runs=2, programs=1)
        b.hits.update({1: 1, 3: 5})

        merged = a + b
        assert merged.executable == {1, 2, 3}
        assert merged.hits == {1: 4, 3: 5}
        assert (merged.runs, merged.programs) == (3, 2)
        assert a.hits == {1: 3}

    def test_merge_different_sources(self):
        """test accumulators of different sources cannot be merged"""
        with pytest.raises(ValueError):
            LineAccumulator("a.c") + LineAccumulator("b.c")


class TestResolveSource:
    """test choosing the unit's source file"""

    def test_default_is_primary_source(self):
        """test the source named by most functions wins"""
        assert resolve_source(create_test_graph()) == "main.c"

    def test_exact_match(self):
        assert resolve_source(create_test_graph(), "util.h") == "util.h"

    def test_match_by_file_name(self):
        """test an absolute path matches the recorded relative name"""
        assert resolve_source(create_test_graph(), "/src/project/main.c") == "main.c"

    def test_normalized_path(self):
        assert resolve_source(create_test_graph(), "./main.c") == "main.c"

    def test_unknown_source(self, caplog):
        """test an unknown source is kept and reported"""
        assert resolve_source(create_test_graph(), "other.c") == "other.c"
        assert "other.c" in caplog.text


class TestBuildUnit:
    """test decoding and aggregating raw artifacts"""

    def create_artifacts(self, samples):
        graph = create_test_graph()
        blobs = [
            encode_data(make_sample(graph, [list(main), list(helper)]))
            for main, helper in samples
        ]
        return encode_graph(graph), blobs

    def test_build_unit(self):
        """test the raw artifact path matches decoded aggregation"""
        graph_data, blobs = self.create_artifacts([((7, 3), (0,))])
        unit = build_unit(graph_data, blobs)

        assert unit.line(10).hit_count == 10
        assert unit.line(12).executable is False
        assert unit.runs == 1

    def test_parallel_matches_serial(self):
        """test worker processes produce the same unit"""
        graph_data, blobs = self.create_artifacts(
            [((7, 3), (0,)), ((1, 0), (4,)), ((0, 2), (1,))]
        )
        serial = build_unit(graph_data, blobs, workers=1)
        parallel = build_unit(graph_data, blobs, workers=2)

        assert parallel == serial
        assert serial.runs == 3
        assert serial.line(10).hit_count == 13

    def test_bad_sample_fails_build(self):
        """test a failing data file is not silently dropped"""
        graph_data, blobs = self.create_artifacts([((7, 3), (0,))])
        other = builder().add_function("main", source="main.c", ident=42)
        other.add_blocks(1)
        bad = encode_data(make_sample(other.build(), [[]]))

        with pytest.raises(StructuralMismatch):
            build_unit(graph_data, blobs + [bad])
        with pytest.raises(StructuralMismatch):
            build_unit(graph_data, blobs + [bad, bad], workers=2)

    def test_from_files(self, tmp_path):
        """test loading artifacts from disk"""
        graph_data, blobs = self.create_artifacts([((7, 3), (0,)), ((1, 1), (1,))])
        graph_path = tmp_path / "main.gcno"
        graph_path.write_bytes(graph_data)
        data_paths = []
        for i, blob in enumerate(blobs):
            path = tmp_path / f"run{i}" / "main.gcda"
            path.parent.mkdir()
            path.write_bytes(blob)
            data_paths.append(path)

        unit = CoverageUnit.from_files(graph_path, data_paths, line_count=25)

        assert len(unit) == 25
        assert unit.runs == 2
        assert unit.line(10).hit_count == 12
        assert unit.line(21).hit_count == 1


class TestArtifactPaths:
    """test deriving notes/data paths from a source path"""

    def test_next_to_source(self):
        assert artifact_paths("src/main.c") == ("src/main.gcno", "src/main.gcda")

    def test_object_dir(self):
        """test artifacts in a separate object directory"""
        assert artifact_paths("/src/lib/util.cpp", "/build/obj") == (
            "/build/obj/util.gcno",
            "/build/obj/util.gcda",
        )

    def test_bare_file_name(self):
        assert artifact_paths("main.c") == ("main.gcno", "main.gcda")
