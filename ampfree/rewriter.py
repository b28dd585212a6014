"""Textual JSON body rewriting.

Bodies are patched in place with regular expressions rather than parsed and
re-serialized, so key order, spacing and every byte outside the matched
field survive untouched. The body does not even have to be valid JSON.
All matching goes through :func:`rewrite_field`.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable

from ampfree.classifier import Policy
from ampfree.settings import ModelMapping

FREE_TIER_FIELD = "isFreeTierRequest"
MODEL_FIELD = "model"


@dataclass(frozen=True)
class RewriteOutcome:
    """Result of rewriting one request body."""

    mutated: bool
    body: bytes
    mapping: ModelMapping | None = None


@lru_cache(maxsize=256)
def _field_pattern(field_name: str, match_value: str) -> re.Pattern[bytes]:
    # Trailing lookahead stops "false" matching "falsey"
    return re.compile(
        rb'"'
        + re.escape(field_name.encode())
        + rb'"\s*:\s*'
        + re.escape(match_value.encode())
        + rb"(?!\w)"
    )


def rewrite_field(
    body: bytes,
    field_name: str,
    match_value: str,
    new_value: str,
    count: int = 0,
) -> tuple[bytes, bool]:
    """Replace ``"field_name": match_value`` with ``"field_name":new_value``.

    Values are raw JSON text, e.g. ``"false"`` or ``'"claude-x"'``. Whitespace
    around the colon is tolerated on input and dropped on output. ``count``
    limits the number of replacements; 0 replaces every occurrence.

    Returns:
        (new body, whether anything was replaced)
    """
    pattern = _field_pattern(field_name, match_value)
    replacement = b'"' + field_name.encode() + b'":' + new_value.encode()
    # Callable replacement so backslashes in model names are not read as group refs
    new_body, replaced = pattern.subn(lambda _m: replacement, body, count=count)
    if not replaced:
        return body, False
    return new_body, True


def rewrite_free_tier(body: bytes) -> RewriteOutcome:
    """Flip every ``"isFreeTierRequest": false`` to true."""
    new_body, changed = rewrite_field(body, FREE_TIER_FIELD, "false", "true")
    return RewriteOutcome(mutated=changed, body=new_body)


def rewrite_model(body: bytes, mappings: Iterable[ModelMapping]) -> RewriteOutcome:
    """Apply the first mapping whose source model appears in the body.

    Only the first matching ``"model"`` field is rewritten, and only one
    mapping is ever applied, so a chain like a->b, b->c stops at b.
    """
    for mapping in mappings:
        new_body, changed = rewrite_field(
            body,
            MODEL_FIELD,
            f'"{mapping.source}"',
            f'"{mapping.target}"',
            count=1,
        )
        if changed:
            return RewriteOutcome(mutated=True, body=new_body, mapping=mapping)
    return RewriteOutcome(mutated=False, body=body)


def rewrite(policy: Policy, body: bytes, mappings: Iterable[ModelMapping] = ()) -> RewriteOutcome:
    """Dispatch to the rewriter for ``policy``."""
    if policy is Policy.FREE_TIER:
        return rewrite_free_tier(body)
    if policy is Policy.MODEL_MAPPING:
        return rewrite_model(body, mappings)
    return RewriteOutcome(mutated=False, body=body)
