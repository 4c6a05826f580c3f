# flake.py
# Tells transient, environment-caused harness failures apart from real ones.
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

FLAKE = "flake"


@dataclass(frozen=True)
class FlakeRule:
    pattern: str
    classification: str = FLAKE
    description: str = ""

    def matches(self, text: str) -> bool:
        return self.pattern.lower() in text.lower()


# Ordered; the first matching rule decides.
FLAKE_RULES: List[FlakeRule] = [
    FlakeRule("EADDRINUSE", description="port taken between probe and listen"),
    FlakeRule("address already in use", description="port taken between probe and listen"),
    FlakeRule("Failed to launch", description="browser driver did not start"),
    FlakeRule("Protocol error (Target.", description="browser driver lost its target"),
    FlakeRule("net::ERR_CONNECTION_REFUSED", description="harness page not served yet"),
    FlakeRule("net::ERR_", description="network fetch failed during bootstrap"),
    FlakeRule("Navigation timeout", description="harness page did not load"),
]


def classify(errors: Iterable[str], rules: Sequence[FlakeRule] = FLAKE_RULES) -> Optional[str]:
    """Classification of the first rule matching any error text, else None."""
    texts = [e for e in errors if e]
    for rule in rules:
        if any(rule.matches(t) for t in texts):
            return rule.classification
    return None


def is_flake(errors: Iterable[str], rules: Sequence[FlakeRule] = FLAKE_RULES) -> bool:
    return classify(errors, rules) == FLAKE
