import pytest

from xrmsim import convert_pattern
from xrmsim.like_pattern import compile_pattern, escape_literal, match_pattern


def test_wildcards_translate_to_regex():
    assert convert_pattern("a%b_c") == "^a.*b.c$"


def test_empty_and_none_match_only_empty_text():
    assert convert_pattern("") == "^$"
    assert convert_pattern(None) == "^$"
    assert match_pattern("", "")
    assert not match_pattern("x", None)


def test_regex_metacharacters_are_literal():
    assert match_pattern("a.b(c)+d", "a.b(c)+d")
    assert not match_pattern("aXb(c)+d", "a.b(c)+d")
    assert match_pattern("50$ off?", "50$%")


@pytest.mark.parametrize("text", ["Contoso", "CONTOSO", "contoso"])
def test_pattern_without_wildcards_matches_exact_text_any_case(text):
    assert match_pattern(text, "contoso")
    assert not match_pattern(text + "x", "contoso")
    assert not match_pattern(text[1:], "contoso")


def test_single_character_wildcard():
    words = ["test", "text", "tent", "testing"]
    assert [w for w in words if match_pattern(w, "te_t")] == ["test", "text", "tent"]


def test_character_class_and_negated_class():
    words = ["1abc", "9xyz", "abc"]
    assert [w for w in words if match_pattern(w, "[0-9]%")] == ["1abc", "9xyz"]
    assert [w for w in words if match_pattern(w, "[^0-9]%")] == ["abc"]


def test_unterminated_bracket_is_literal():
    assert convert_pattern("a[b") == "^a\\[b$"
    assert match_pattern("a[b", "a[b")


def test_invalid_class_falls_back_to_literal_match():
    assert match_pattern("[z-a]", "[z-a]")
    assert not match_pattern("m", "[z-a]")


def test_missing_text_never_matches():
    assert not match_pattern(None, "%")


def test_escape_literal_round_trip():
    raw = "100%_done[1]"
    assert match_pattern(raw, escape_literal(raw))
    assert not match_pattern("100X_done[1]", escape_literal(raw))


def test_compiled_patterns_are_cached_with_a_bound():
    compile_pattern.cache_clear()
    first = compile_pattern("abc%")
    assert compile_pattern("abc%") is first
    info = compile_pattern.cache_info()
    assert info.hits == 1
    assert info.maxsize is not None
