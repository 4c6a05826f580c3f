"""Tests for test plan resolution."""

import pytest

from fleetci.errors import ConfigError
from fleetci.planner import TestPlanner


@pytest.fixture
def graph(make_repo, build_graph):
    types = make_repo("types", {"Types": [], "TypesDocs": []}, tests=["Types"])
    ui = make_repo("ui", {"UI": ["Types"], "UIDemo": ["UI"]}, tests=["UI"])
    app = make_repo("app", {"App": ["UI"]})
    other = make_repo("other", {"Other": []})
    return build_graph([types, ui, app, other])


def test_all_repositories(graph):
    planner = TestPlanner(graph)
    assert planner.required_modules == ["Types", "UI", "App", "Other"]


def test_named_repository_pulls_in_dependents(graph):
    planner = TestPlanner(graph, repos=["types"])
    assert planner.required_modules == ["Types", "UI", "App"]


def test_only_mode_skips_dependents(graph):
    planner = TestPlanner(graph, repos=["types", "other"], only=True)
    assert planner.required_modules == ["Types", "Other"]


def test_entry_points_take_priority(graph):
    planner = TestPlanner(graph, repos=["other"], only=True, entry=["App"])
    assert planner.required_modules == ["App", "UI", "Types"]
    assert planner.plan() == [("App", ["App"]), ("UI", ["UI"]), ("Types", ["Types"])]


def test_unknown_entry_point_is_fatal(graph):
    planner = TestPlanner(graph, entry=["Ghost"])
    with pytest.raises(ConfigError):
        planner.required_modules


def test_result_is_memoized(graph):
    planner = TestPlanner(graph, repos=["ui"])
    first = planner.required_modules
    assert planner.required_modules is first


def test_no_duplicates(graph):
    planner = TestPlanner(graph, repos=["types", "ui"])
    result = planner.required_modules
    assert len(result) == len(set(result))


def test_plan_groups_by_repository(graph):
    planner = TestPlanner(graph, repos=["types"])
    assert planner.plan() == [("types", ["Types"]), ("ui", ["UI"]), ("app", ["App"])]
    assert planner.test_keys() == ["types", "ui", "app"]
    assert planner.modules_for("ui") == ["UI"]
    assert planner.modules_for("nope") == []
