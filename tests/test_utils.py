"""Tests for the shared hashing, scoring and slug helpers."""

from gtm_utils import (
    calculate_score,
    deep_clone,
    extract_variable_references,
    generate_unique_id,
    get_score_grade,
    group_by,
    is_built_in,
    rolling_hash,
    slugify,
    to_base36,
)


class TestHashing:
    def test_equal_strings_hash_equal(self):
        assert rolling_hash('GA4 - Purchase') == rolling_hash('GA4 - Purchase')
        assert rolling_hash('') == 0

    def test_hash_is_non_negative(self):
        assert all(rolling_hash(text) >= 0 for text in ('a', 'zzzzzzzzzzzzzzzzzzzz', '{"x":[1,2,3]}'))

    def test_base36(self):
        assert to_base36(0) == '0'
        assert to_base36(35) == 'z'
        assert to_base36(36) == '10'

    def test_unique_id_depends_on_content_only(self):
        first = {'type': 'gaawe', 'name': 'Tag', 'parameter': [{'key': 'a', 'value': '1'}], 'notes': 'x'}
        second = {'type': 'gaawe', 'name': 'Tag', 'parameter': [{'key': 'a', 'value': '1'}], 'notes': 'y'}

        assert generate_unique_id(first) == generate_unique_id(second)
        assert generate_unique_id(first).startswith('uid_')
        assert generate_unique_id(first) != generate_unique_id(dict(first, name='Other'))

    def test_unique_id_tolerates_non_dict(self):
        assert generate_unique_id(None) == generate_unique_id({})


class TestScoring:
    def test_weighted_penalty_scaled_by_denominator(self):
        assert calculate_score([{'severity': 'high'}], 50) == 90
        assert calculate_score([{'severity': 'critical'}] * 20, 50) == 0

    def test_unknown_severity_costs_one(self):
        assert calculate_score([{'severity': 'odd'}], 100) == 99

    def test_invalid_denominator_defaults_to_hundred(self):
        assert calculate_score([{'severity': 'low'}], 0) == 99

    def test_grades(self):
        assert [get_score_grade(s) for s in (95, 85, 75, 65, 10)] == ['A', 'B', 'C', 'D', 'F']


class TestHelpers:
    def test_slugify(self):
        assert slugify('Add To Cart - Button') == 'add_to_cart_button'
        assert slugify('!!!') == 'unknown_event'
        assert slugify(None) == 'unknown_event'

    def test_variable_references(self):
        assert extract_variable_references('{{A}} and {{ B }} and {{}}') == ['A', 'B']
        assert extract_variable_references(5) == []

    def test_group_by_keeps_first_seen_order(self):
        groups = group_by(['b1', 'a1', 'b2'], key=lambda s: s[0])

        assert list(groups) == ['b', 'a']
        assert groups['b'] == ['b1', 'b2']

    def test_deep_clone_is_independent(self):
        original = {'tag': [{'parameter': []}]}
        clone = deep_clone(original)
        clone['tag'][0]['parameter'].append('x')

        assert original == {'tag': [{'parameter': []}]}

    def test_built_in(self):
        assert is_built_in({'type': 'k'})
        assert is_built_in({'type': 'v', 'tagManagerUrl': 'https://x/builtins/1'})
        assert not is_built_in({'type': 'v'})
        assert not is_built_in(None)
