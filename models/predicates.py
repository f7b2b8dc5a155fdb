"""
Attribute predicates evaluated against raw catalog documents.

Paths are dotted (``insurance.medicaid``); a path that crosses a list
(``services.name``) matches when any element matches.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple


def resolve_path(document: Dict[str, Any], path: str) -> List[Any]:
    """
    Collect every value found at a dotted path.

    Args:
        document: Raw catalog document
        path: Dotted field path

    Returns:
        Flat list of values (empty when the path is missing)
    """
    values: List[Any] = [document]
    for key in path.split("."):
        next_values = []
        for value in values:
            if isinstance(value, list):
                for item in value:
                    if isinstance(item, dict) and key in item:
                        next_values.append(item[key])
            elif isinstance(value, dict) and key in value:
                next_values.append(value[key])
        values = next_values

    flat = []
    for value in values:
        if isinstance(value, list):
            flat.extend(value)
        else:
            flat.append(value)
    return flat


@dataclass(frozen=True)
class Equals:
    """Field equals a value (strings compared case-insensitively when asked)."""
    path: str
    value: Any
    case_insensitive: bool = False

    def matches(self, document: Dict[str, Any]) -> bool:
        for found in resolve_path(document, self.path):
            if self.case_insensitive and isinstance(found, str) and isinstance(self.value, str):
                if found.lower() == self.value.lower():
                    return True
            elif type(found) is type(self.value) and found == self.value:
                return True
        return False


@dataclass(frozen=True)
class Pattern:
    """Any of the paths contains any of the terms (case-insensitive substring)."""
    paths: Tuple[str, ...]
    terms: Tuple[str, ...]

    def matches(self, document: Dict[str, Any]) -> bool:
        needles = [term.lower() for term in self.terms if term]
        for path in self.paths:
            for found in resolve_path(document, path):
                if not isinstance(found, str):
                    continue
                haystack = found.lower()
                if any(needle in haystack for needle in needles):
                    return True
        return False


@dataclass(frozen=True)
class AnyOf:
    """A list field holds an element matching any of the values (case-insensitive substring)."""
    path: str
    values: Tuple[str, ...]

    def matches(self, document: Dict[str, Any]) -> bool:
        return Pattern(paths=(self.path,), terms=self.values).matches(document)


def matches_all(document: Dict[str, Any], predicates: Sequence[Any]) -> bool:
    """True when the document satisfies every predicate."""
    return all(predicate.matches(document) for predicate in predicates)
