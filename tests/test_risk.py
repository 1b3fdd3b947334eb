"""Tests for the deletion risk classifier."""

import copy

import pytest

from sweepgraph.models import RiskLevel, SymbolDefinition, SymbolKind, UnitKind, UnusedFile, UnusedSymbol
from sweepgraph.reachability import analyze_tree
from sweepgraph.risk import RiskClassifier, RiskPolicy


def _symbol(name, *paths, kind=UnitKind.BACKEND, strings=False):
    paths = paths or ("Code.gs",)
    return UnusedSymbol(
        name=name,
        definitions=[SymbolDefinition(p, name, SymbolKind.FUNCTION, 1, 3) for p in paths],
        unit_kinds={p: kind for p in paths},
        mentioned_in_strings=strings,
    )


@pytest.fixture
def classifier():
    return RiskClassifier()


class TestFileRules:
    def test_config_file_is_high(self, classifier):
        rating = classifier.rate(UnusedFile("appsscript.json", UnitKind.CONFIG, 120))
        assert rating.level == RiskLevel.HIGH

    def test_named_config_file_is_high_whatever_the_kind(self, classifier):
        rating = classifier.rate(UnusedFile("tools/package.json", UnitKind.BACKEND, 10))
        assert rating.level == RiskLevel.HIGH

    def test_frontend_file_is_medium(self, classifier):
        rating = classifier.rate(UnusedFile("Sidebar.html", UnitKind.FRONTEND, 50))
        assert rating.level == RiskLevel.MEDIUM

    def test_large_backend_file_is_medium(self):
        classifier = RiskClassifier(RiskPolicy(large_file_bytes=100))
        assert classifier.rate(UnusedFile("Big.gs", UnitKind.BACKEND, 101)).level == RiskLevel.MEDIUM
        assert classifier.rate(UnusedFile("Small.gs", UnitKind.BACKEND, 100)).level == RiskLevel.LOW

    def test_plain_backend_file_is_low(self, classifier):
        rating = classifier.rate(UnusedFile("Orphan.gs", UnitKind.BACKEND, 80))
        assert rating == classifier.rate(UnusedFile("Orphan.gs", UnitKind.BACKEND, 80))
        assert rating.level == RiskLevel.LOW
        assert rating.rationale


class TestSymbolRules:
    def test_multiply_defined_is_medium(self, classifier):
        rating = classifier.rate(_symbol("render", "A.gs", "B.gs"))
        assert rating.level == RiskLevel.MEDIUM
        assert "A.gs" in rating.rationale

    def test_more_definitions_never_lowers_risk(self, classifier):
        one = classifier.rate(_symbol("render", "A.gs"))
        two = classifier.rate(_symbol("render", "A.gs", "B.gs"))
        assert two.level.rank >= one.level.rank

    @pytest.mark.parametrize("name", ["setupSheet", "initMenu", "dateUtils", "loadConfig", "HelperFn"])
    def test_protected_fragment_is_medium(self, classifier, name):
        assert classifier.rate(_symbol(name)).level == RiskLevel.MEDIUM

    def test_string_mention_is_medium(self, classifier):
        rating = classifier.rate(_symbol("runLater", strings=True))
        assert rating.level == RiskLevel.MEDIUM
        assert "string" in rating.rationale

    def test_frontend_only_symbol_is_medium(self, classifier):
        assert classifier.rate(_symbol("onPick", "Page.html", kind=UnitKind.FRONTEND)).level == RiskLevel.MEDIUM

    def test_plain_symbol_is_low(self, classifier):
        assert classifier.rate(_symbol("neverCalled")).level == RiskLevel.LOW

    def test_first_matching_rule_supplies_rationale(self, classifier):
        rating = classifier.rate(_symbol("setupThing", "A.gs", "B.gs", strings=True))
        assert rating.rationale.startswith("Defined 2 times")

    def test_custom_substrings(self):
        classifier = RiskClassifier(RiskPolicy(protected_substrings=["keep"]))
        assert classifier.rate(_symbol("setupSheet")).level == RiskLevel.LOW
        assert classifier.rate(_symbol("keepMe")).level == RiskLevel.MEDIUM


class TestAssess:
    def test_assess_rates_every_candidate(self, classifier, sample_project_path):
        result = analyze_tree(sample_project_path)
        assessment = classifier.assess(result)
        assert len(assessment.ratings) == len(result.unused_files) + len(result.unused_symbols)
        assert all(assessment.for_symbol(s).level == RiskLevel.LOW for s in result.unused_symbols)

    def test_assess_does_not_touch_the_result(self, classifier, scenario_tree):
        result = analyze_tree(scenario_tree)
        before = copy.deepcopy(result.partitions())
        classifier.assess(result)
        assert result.partitions() == before

    def test_breakdown_counts(self, classifier, scenario_tree):
        result = analyze_tree(scenario_tree)
        breakdown = classifier.assess(result).breakdown(result)
        assert breakdown["symbols"] == {"low": 1, "medium": 0, "high": 0}
        assert breakdown["files"] == {"low": 0, "medium": 0, "high": 0}
