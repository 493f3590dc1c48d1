"""Tests for merging and resolving on-call participants."""

import logging

import pytest

from participants import (
    Resolution,
    ResolutionMode,
    merge_participants,
    normalise_identifier,
    resolve_aliases,
    resolve_participants,
    resolve_remote,
)


class TestMergeParticipants:
    def test_overlapping_shifts_are_deduplicated(self):
        merged = merge_participants(["a@x.com", "b@x.com"], ["b@x.com", "c@x.com"])
        assert merged == {"a@x.com", "b@x.com", "c@x.com"}
        assert len(merged) == 3

    def test_duplicates_within_one_shift_collapse(self):
        assert len(merge_participants(["a@x.com", "a@x.com"], [])) == 1

    def test_equality_is_exact_string_match(self):
        assert merge_participants(["A@x.com"], ["a@x.com"]) == {"A@x.com", "a@x.com"}

    def test_empty_shifts(self):
        assert merge_participants([], []) == set()


class TestNormaliseIdentifier:
    @pytest.mark.parametrize(
        "identifier, expected",
        [
            ("jane.doe+oncall@example.com", "jane.doe"),
            ("jane.doe@example.com", "jane.doe"),
            ("jane.doe", "jane.doe"),
            ("a+b+c@x.com", "a"),
            ("weird@name+tag@x.com", "weird"),
        ],
    )
    def test_local_part_before_plus(self, identifier, expected):
        assert normalise_identifier(identifier) == expected


class TestAliasResolution:
    def test_mapped_alias_is_used(self):
        assert resolve_aliases(["jane.doe+oncall@example.com"], {"jane.doe": "jdoe"}) == ["jdoe"]

    def test_unmapped_identifier_uses_local_part(self):
        assert resolve_aliases(["jane.doe+oncall@example.com"], {}) == ["jane.doe"]

    def test_missing_table_behaves_like_empty(self):
        assert resolve_aliases(["jane.doe@example.com"], None) == ["jane.doe"]

    def test_table_is_never_keyed_by_full_identifier(self):
        table = {"jane.doe@example.com": "wrong"}
        assert resolve_aliases(["jane.doe@example.com"], table) == ["jane.doe"]


class TestRemoteResolution:
    """Remote lookups fall back to the raw identifier on failure."""

    def test_successful_lookups(self):
        resolution = resolve_remote({"a@x.com", "b@x.com"}, lambda email: "@" + email.split("@")[0])
        assert sorted(resolution.identities) == ["@a", "@b"]
        assert resolution.failures == 0
        assert not resolution.all_failed

    def test_partial_failure_keeps_raw_identifier(self, caplog):
        def lookup(email):
            if email == "b@x.com":
                raise RuntimeError("not found")
            return "@a"

        with caplog.at_level(logging.WARNING, logger="participants"):
            resolution = resolve_remote({"a@x.com", "b@x.com"}, lookup)

        assert sorted(resolution.identities) == ["@a", "b@x.com"]
        assert resolution.failures == 1
        assert not resolution.all_failed
        assert "b@x.com" in caplog.text

    def test_every_lookup_failing_is_flagged(self):
        def lookup(email):
            raise RuntimeError("down")

        resolution = resolve_remote({"a@x.com", "b@x.com"}, lookup)
        assert sorted(resolution.identities) == ["a@x.com", "b@x.com"]
        assert resolution.all_failed

    def test_malformed_user_record_counts_as_failure(self):
        users = {"a@x.com": {"id": "u1"}}

        resolution = resolve_remote({"a@x.com"}, lambda email: "@" + users[email]["username"])

        assert resolution.identities == ["a@x.com"]
        assert resolution.all_failed

    def test_no_participants_is_not_a_failure(self):
        resolution = resolve_remote(set(), lambda email: email)
        assert resolution == Resolution(identities=[], attempted=0, failures=0)
        assert not resolution.all_failed

    def test_each_identifier_is_looked_up_once(self):
        calls = []

        def lookup(email):
            calls.append(email)
            return email

        resolve_participants(["a@x.com", "b@x.com"], ["b@x.com"], ResolutionMode.LOOKUP, lookup=lookup)
        assert sorted(calls) == ["a@x.com", "b@x.com"]


class TestResolveParticipants:
    def test_alias_mode_end_to_end(self):
        resolution = resolve_participants(
            ["a@x.com", "b@x.com"], ["b@x.com"], ResolutionMode.ALIAS, aliases={}
        )
        assert set(resolution.identities) == {"a", "b"}
        assert len(resolution.identities) == 2

    def test_email_mode_returns_raw_identifiers(self):
        resolution = resolve_participants(["b@x.com"], ["a@x.com", "b@x.com"], ResolutionMode.EMAIL)
        assert resolution.identities == ["a@x.com", "b@x.com"]

    def test_lookup_mode_requires_lookup(self):
        with pytest.raises(ValueError):
            resolve_participants(["a@x.com"], [], ResolutionMode.LOOKUP)

    def test_modes_parse_from_config_strings(self):
        assert ResolutionMode("alias") is ResolutionMode.ALIAS
        assert ResolutionMode("lookup") is ResolutionMode.LOOKUP
        assert ResolutionMode("email") is ResolutionMode.EMAIL
