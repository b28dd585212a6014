"""Decide which body rewrite, if any, an outbound request qualifies for."""

from enum import Enum

from ampfree.config import ANTHROPIC_MESSAGES_PATH, FREE_TIER_QUERIES, INTERNAL_API_PATH


class Policy(str, Enum):
    NONE = "none"
    FREE_TIER = "free_tier"
    MODEL_MAPPING = "model_mapping"


def classify(
    path: str,
    query: str,
    free_search_enabled: bool,
    model_mapping_enabled: bool,
    has_body: bool,
    has_mappings: bool,
) -> Policy:
    """Return the rewrite policy for a request.

    The two qualifying paths are disjoint, so at most one policy matches.
    Only exact path and query matches count: ``/api/internal?webSearch2&x=1``
    is passed through untouched.
    """
    if not has_body:
        return Policy.NONE

    if free_search_enabled and path == INTERNAL_API_PATH and query in FREE_TIER_QUERIES:
        return Policy.FREE_TIER

    if model_mapping_enabled and has_mappings and path == ANTHROPIC_MESSAGES_PATH:
        return Policy.MODEL_MAPPING

    return Policy.NONE


def split_path(path: str) -> tuple[str, str]:
    """Split a request target into (path, raw query)."""
    path, _, query = path.partition("?")
    return path, query
