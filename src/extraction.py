"""
Structured extraction from HMS-Mirror console output.

The hms-mirror binary reports its results as human-readable text. Each
operation that parses that text owns a static tuple of ExtractionRule
entries; swapping a tuple is enough to follow a change in the CLI's output
format. A rule that does not match simply leaves its field out.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Pattern


@dataclass(frozen=True)
class ExtractionRule:
    """Maps a regular expression onto a payload field.

    Single rules take group 1 of the first match. Repeating rules collect
    ``groupdict()`` of every match into a list.
    """

    field: str
    pattern: Pattern[str]
    repeating: bool = False


MIGRATION_RULES = (
    ExtractionRule("reportPath", re.compile(r"Report saved to: (.+)")),
)

ANALYSIS_RULES = (
    ExtractionRule(
        "tables",
        re.compile(
            r"Table: (?P<name>\S+)\s+Type: (?P<type>\S+)\s+"
            r"Strategy: (?P<recommendedStrategy>\S+)"
        ),
        repeating=True,
    ),
)

JAVA_VERSION_RULES = (
    ExtractionRule("version", re.compile(r'version "([^"]+)"')),
)


def normalize_output(text: str, rules: Iterable[ExtractionRule]) -> Dict[str, Any]:
    """
    Apply extraction rules to raw process output.

    Args:
        text: stdout (or combined output) of the process
        rules: Rule table for the operation

    Returns:
        Dict holding one entry per rule that matched
    """
    payload: Dict[str, Any] = {}
    if not text:
        return payload

    for rule in rules:
        if rule.repeating:
            matches = [m.groupdict() for m in rule.pattern.finditer(text)]
            if matches:
                payload[rule.field] = matches
        else:
            match = rule.pattern.search(text)
            if match:
                payload[rule.field] = match.group(1).strip()

    return payload
