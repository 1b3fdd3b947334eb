"""Tests for graph construction and reachability marking."""

import json

from sweepgraph.config_manager import SweepSettings
from sweepgraph.graph import GraphBuilder
from sweepgraph.models import EdgeKind, ReferenceKind
from sweepgraph.parser import collect_units
from sweepgraph.reachability import ReachabilityAnalyzer, RootSet, analyze_tree


def _build(root):
    return GraphBuilder().build(collect_units(root))


class TestGraphBuilder:
    """Two-pass graph assembly."""

    def test_references_resolve_against_later_units(self, make_tree):
        root = make_tree({
            "a.gs": "function first() {\n  second();\n}\n",
            "b.gs": "function second() {\n  return 1;\n}\n",
        })
        graph = _build(root).graph
        assert graph.successors("symbol:first", [EdgeKind.REFERENCES]) == ["symbol:second"]

    def test_every_symbol_has_a_defines_edge(self, sample_project_path):
        graph = _build(sample_project_path).graph
        for name, symbol in graph.symbols.items():
            owners = graph.predecessors(symbol.node_id, [EdgeKind.DEFINES])
            assert owners == [f"file:{p}" for p in symbol.defining_units], name

    def test_adjacency_is_symmetric(self, sample_project_path):
        graph = _build(sample_project_path).graph
        for edge in graph.edges:
            assert edge.dst in graph.successors(edge.src)
            assert edge.src in graph.predecessors(edge.dst)

    def test_unresolved_references_are_diagnostics_only(self, make_tree):
        root = make_tree({"a.gs": "function doGet() {\n  missingThing();\n  x.memberOnly();\n}\n"})
        build = _build(root)
        assert [(u.name, u.line) for u in build.unresolved] == [("missingThing", 2)]
        assert build.unresolved_count == 1
        assert not build.graph.has_node("symbol:missingThing")

    def test_include_matches_base_name_without_extension(self, make_tree):
        root = make_tree({
            "Index.html": "<?!= include('sidebar'); ?>",
            "Sidebar.html": "<div></div>",
        })
        graph = _build(root).graph
        assert graph.successors("file:Index.html", [EdgeKind.INCLUDES]) == ["file:Sidebar.html"]

    def test_unknown_include_is_unresolved(self, make_tree):
        root = make_tree({"Index.html": "<?!= include('Nowhere'); ?>"})
        build = _build(root)
        includes = [u.name for u in build.unresolved if u.kind == ReferenceKind.INCLUDE]
        assert includes == ["Nowhere"]

    def test_multiply_defined_symbol_keeps_all_definitions(self, make_tree):
        root = make_tree({
            "a.gs": "function dup() {}\n",
            "b.gs": "function dup() {}\n",
        })
        symbol = _build(root).graph.symbols["dup"]
        assert symbol.is_multiply_defined
        assert symbol.defining_units == ["a.gs", "b.gs"]


class TestReachability:
    """Mark phase from the root set."""

    def test_concrete_scenario(self, scenario_tree):
        result = analyze_tree(scenario_tree)
        assert result.used_files == ["A.gs", "B.gs"]
        assert result.unused_files == []
        assert result.used_symbols == ["doGet", "helper"]
        assert [s.name for s in result.unused_symbols] == ["orphan"]
        orphan = result.unused_symbols[0]
        assert orphan.defined_in == ["B.gs"]
        assert (orphan.definitions[0].start_line, orphan.definitions[0].end_line) == (5, 7)

    def test_roots_are_used_without_edges(self, make_tree):
        root = make_tree({
            "Debug.gs": "function debugDump() {\n  return 1;\n}\n",
            "Lone.gs": "function lonely() {}\n",
        })
        result = analyze_tree(root)
        assert "debugDump" in result.used_symbols
        assert "Debug.gs" in result.used_files
        assert [f.path for f in result.unused_files] == ["Lone.gs"]

    def test_root_invariant_holds_for_every_root(self, sample_project_path):
        settings = SweepSettings()
        result = analyze_tree(sample_project_path, settings)
        graph = result.graph
        roots = RootSet.from_settings(settings)
        for name in graph.symbols:
            if roots.matches(name):
                assert name in result.used_symbols
                for path in graph.symbols[name].defining_units:
                    assert path in result.used_files
        assert "appsscript.json" in result.used_files

    def test_trigger_names_become_roots(self, make_tree):
        root = make_tree({
            "Setup.gs": "function installJobs() {\n  ScriptApp.newTrigger('nightly').timeBased().create();\n}\n",
            "Jobs.gs": "function nightly() {\n  cleanup();\n}\nfunction cleanup() {}\n",
        })
        result = analyze_tree(root, SweepSettings(entry_points=["installJobs"]))
        assert {"nightly", "cleanup"} <= set(result.used_symbols)
        assert "nightly" in result.root_names

    def test_mutual_includes_terminate(self, make_tree):
        root = make_tree({
            "Code.gs": "function doGet() {\n  return HtmlService.createTemplateFromFile('A').evaluate();\n}\n",
            "A.html": "<?!= include('B'); ?>",
            "B.html": "<?!= include('A'); ?>",
        })
        result = analyze_tree(root)
        assert result.used_files == ["A.html", "B.html", "Code.gs"]

    def test_sample_project(self, sample_project_path):
        result = analyze_tree(sample_project_path)
        assert [f.path for f in result.unused_files] == ["Orphan.gs"]
        assert [s.name for s in result.unused_symbols] == ["formatRow", "legacyExport", "neverCalled"]
        assert {"Index.html", "Stylesheet.html", "Data.gs", "Tests.gs"} <= set(result.used_files)
        assert {"refresh", "renderItems", "getItems", "loadSheet"} <= set(result.used_symbols)

    def test_analysis_is_idempotent(self, sample_project_path):
        first = analyze_tree(sample_project_path)
        second = analyze_tree(sample_project_path)
        assert json.dumps(first.partitions(), sort_keys=True) == json.dumps(second.partitions(), sort_keys=True)

    def test_mark_is_side_effect_free(self, scenario_tree):
        build = _build(scenario_tree)
        analyzer = ReachabilityAnalyzer(build.graph, RootSet(names={"doGet"}))
        edges_before = list(build.graph.edges)
        assert analyzer.mark() == analyzer.mark()
        assert build.graph.edges == edges_before
