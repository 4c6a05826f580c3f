"""Tests for flake classification rules."""

from fleetci.flake import FLAKE, FLAKE_RULES, FlakeRule, classify, is_flake


def test_address_in_use_is_flake():
    assert is_flake(["Error: listen EADDRINUSE: address already in use :::40123"])


def test_driver_launch_failure_is_flake():
    assert is_flake(["Error: Failed to launch the browser process!"])


def test_network_fetch_failure_is_flake():
    assert is_flake(["page.goto: net::ERR_CONNECTION_RESET at http://localhost:41000"])


def test_assertion_failure_is_not_flake():
    assert not is_flake(["AssertionError: expected 1 to equal 2"])
    assert classify([]) is None


def test_match_is_case_insensitive():
    assert is_flake(["ADDRESS ALREADY IN USE"])


def test_first_matching_rule_decides():
    rules = [FlakeRule("timeout", classification="slow"), FlakeRule("timeout")]
    assert classify(["Navigation timeout of 30000 ms exceeded"], rules) == "slow"
    assert not is_flake(["Navigation timeout"], rules)


def test_default_rules_all_classify_as_flake():
    assert all(rule.classification == FLAKE for rule in FLAKE_RULES)
