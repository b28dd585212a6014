"""Tests for textual body rewriting."""

from ampfree.classifier import Policy
from ampfree.rewriter import rewrite, rewrite_field, rewrite_free_tier, rewrite_model
from ampfree.settings import ModelMapping


def mapping(source: str, target: str) -> ModelMapping:
    return ModelMapping(source=source, target=target)


# =============================================================================
# Free-tier flag
# =============================================================================

def test_free_tier_flag_flipped():
    outcome = rewrite_free_tier(b'{"isFreeTierRequest":false,"q":"x"}')
    assert outcome.mutated
    assert outcome.body == b'{"isFreeTierRequest":true,"q":"x"}'
    assert outcome.mapping is None


def test_free_tier_tolerates_whitespace_around_colon():
    outcome = rewrite_free_tier(b'{\n  "isFreeTierRequest" :\n\tfalse,\n  "q": "x"\n}')
    assert outcome.mutated
    assert outcome.body == b'{\n  "isFreeTierRequest":true,\n  "q": "x"\n}'


def test_free_tier_replaces_every_occurrence():
    body = b'[{"isFreeTierRequest":false},{"isFreeTierRequest": false}]'
    outcome = rewrite_free_tier(body)
    assert outcome.body == b'[{"isFreeTierRequest":true},{"isFreeTierRequest":true}]'


def test_free_tier_already_true_is_unchanged():
    body = b'{"isFreeTierRequest":true}'
    outcome = rewrite_free_tier(body)
    assert not outcome.mutated
    assert outcome.body == body


def test_free_tier_missing_field_is_unchanged():
    body = b'{"q":"isFreeTierRequest false"}'
    outcome = rewrite_free_tier(body)
    assert not outcome.mutated
    assert outcome.body == body


def test_free_tier_ignores_lookalike_fields():
    body = b'{"notisFreeTierRequest":false,"isFreeTierRequestX":false,"isFreeTierRequest":falsey}'
    outcome = rewrite_free_tier(body)
    assert not outcome.mutated
    assert outcome.body == body


def test_free_tier_ignores_escaped_field_inside_string():
    body = b'{"text":"\\"isFreeTierRequest\\":false","isFreeTierRequest":false}'
    outcome = rewrite_free_tier(body)
    assert outcome.body == b'{"text":"\\"isFreeTierRequest\\":false","isFreeTierRequest":true}'


def test_free_tier_does_not_require_valid_json():
    outcome = rewrite_free_tier(b'garbage "isFreeTierRequest": false {{')
    assert outcome.mutated
    assert outcome.body == b'garbage "isFreeTierRequest":true {{'


def test_free_tier_is_idempotent():
    bodies = [
        b'{"isFreeTierRequest":false,"q":"x"}',
        b'{"isFreeTierRequest":true}',
        b"",
        b"\x00\xff not json",
    ]
    for body in bodies:
        once = rewrite_free_tier(body).body
        twice = rewrite_free_tier(once).body
        assert once == twice


# =============================================================================
# Model mapping
# =============================================================================

def test_model_mapping_applied():
    outcome = rewrite_model(b'{"model":"a","x":1}', [mapping("a", "b")])
    assert outcome.mutated
    assert outcome.body == b'{"model":"b","x":1}'
    assert outcome.mapping == mapping("a", "b")


def test_model_mapping_is_single_pass():
    """a->b must not be followed by b->c on the rewritten body."""
    outcome = rewrite_model(b'{"model":"a"}', [mapping("a", "b"), mapping("b", "c")])
    assert outcome.body == b'{"model":"b"}'
    assert outcome.mapping.source == "a"


def test_model_mapping_skips_sources_not_present():
    outcome = rewrite_model(b'{"model":"a"}', [mapping("x", "y"), mapping("a", "b")])
    assert outcome.body == b'{"model":"b"}'
    assert outcome.mapping == mapping("a", "b")


def test_model_mapping_rewrites_first_occurrence_only():
    body = b'{"model":"a","sub":{"model":"a"}}'
    outcome = rewrite_model(body, [mapping("a", "b")])
    assert outcome.body == b'{"model":"b","sub":{"model":"a"}}'


def test_model_mapping_tolerates_whitespace():
    outcome = rewrite_model(b'{"model" : "a", "x": 1}', [mapping("a", "b")])
    assert outcome.body == b'{"model":"b", "x": 1}'


def test_model_mapping_requires_exact_name():
    body = b'{"model":"ab"}'
    outcome = rewrite_model(body, [mapping("a", "b")])
    assert not outcome.mutated
    assert outcome.body == body


def test_model_mapping_escapes_regex_characters():
    body = b'{"model":"claudeX3+x"}'
    assert not rewrite_model(body, [mapping("claude.3+x", "other")]).mutated

    outcome = rewrite_model(b'{"model":"claude.3+x"}', [mapping("claude.3+x", "other")])
    assert outcome.body == b'{"model":"other"}'


def test_model_mapping_target_is_literal():
    outcome = rewrite_model(b'{"model":"a"}', [mapping("a", r"b\1\g<0>")])
    assert outcome.body == b'{"model":"b\\1\\g<0>"}'


def test_model_mapping_no_match_is_unchanged():
    body = b'{"model":"claude-opus","x":1}'
    outcome = rewrite_model(body, [mapping("a", "b")])
    assert not outcome.mutated
    assert outcome.body == body
    assert outcome.mapping is None


def test_model_mapping_without_mappings_is_unchanged():
    body = b'{"model":"a"}'
    assert rewrite_model(body, []).body == body


# =============================================================================
# Narrow interface and dispatch
# =============================================================================

def test_rewrite_field_returns_input_when_unchanged():
    body = b'{"other":false}'
    new_body, changed = rewrite_field(body, "flag", "false", "true")
    assert not changed
    assert new_body is body


def test_rewrite_field_count_limits_replacements():
    new_body, changed = rewrite_field(b'{"f":1,"f":1}', "f", "1", "2", count=1)
    assert changed
    assert new_body == b'{"f":2,"f":1}'


def test_rewrite_dispatch():
    body = b'{"isFreeTierRequest":false,"model":"a"}'
    mappings = [mapping("a", "b")]

    assert rewrite(Policy.FREE_TIER, body, mappings).body == b'{"isFreeTierRequest":true,"model":"a"}'
    assert rewrite(Policy.MODEL_MAPPING, body, mappings).body == b'{"isFreeTierRequest":false,"model":"b"}'

    untouched = rewrite(Policy.NONE, body, mappings)
    assert not untouched.mutated
    assert untouched.body == body
