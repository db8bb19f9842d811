"""Tests for span-anchored literal substitution."""

from services.substitution_service import SubstitutionService

substitution = SubstitutionService()


def test_replaces_every_occurrence():
    text = "Maria called. Maria left."
    assert substitution.substitute(text, {"Maria": "[NAM1-abcd]"}) == "[NAM1-abcd] called. [NAM1-abcd] left."


def test_values_are_literal_not_patterns():
    text = "a.b+c@x.com and aXb+c@x.com and a.bbc@x.com"
    result = substitution.substitute(text, {"a.b+c@x.com": "[EMA1-abcd]"})
    assert result == "[EMA1-abcd] and aXb+c@x.com and a.bbc@x.com"


def test_special_characters_in_values():
    text = "tel (555) 123-4567 [x]"
    assert substitution.substitute(text, {"(555) 123-4567": "[PHO1-abcd]"}) == "tel [PHO1-abcd] [x]"


def test_longer_value_is_not_split_by_shorter_one():
    text = "Juan wrote from Juan.Perez@x.com"
    replacements = {"Juan": "[NAM1-aaaa]", "Juan.Perez@x.com": "[EMA1-bbbb]"}
    assert substitution.substitute(text, replacements) == "[NAM1-aaaa] wrote from [EMA1-bbbb]"


def test_inserted_tokens_are_not_rescanned():
    replacements = {"Ana": "[NAM1-ana0]", "ana0": "leak"}
    assert substitution.substitute("Ana", replacements) == "[NAM1-ana0]"


def test_nothing_to_replace():
    assert substitution.substitute("plain text", {}) == "plain text"
    assert substitution.substitute("", {"Maria": "[NAM1-abcd]"}) == ""


def test_detected_spans_take_precedence():
    text = "Ana Maria wrote. Ana Maria.Lopez@x.com"
    replacements = {"Ana Maria": "[NAM1-aaaa]", "Maria.Lopez@x.com": "[EMA1-bbbb]"}
    result = substitution.substitute(text, replacements, [(0, 9), (21, 38)])
    assert result == "[NAM1-aaaa] wrote. Ana [EMA1-bbbb]"


def test_token_shaped_text_is_not_special():
    text = "id [CED1-1234567] and 1234567"
    result = substitution.substitute(text, {"1234567": "[CED2-abcd]"})
    assert result == "id [CED1-[CED2-abcd]] and [CED2-abcd]"
