# tests/test_repair.py
import json

import pytest

from core.exceptions import UnparsableOutputError
from core.repair import candidates, repair, requote_fields, strip_fences


def test_unquoted_cjk_values_are_requoted():
    raw = '[{"title": 第一章, "summary": 开始}]'
    assert repair(raw) == [{"title": "第一章", "summary": "开始"}]


def test_fenced_json_with_prose():
    payload = [{"id": 1, "title": "Dawn", "summary": "A ship arrives."}]
    raw = "Here is your outline:\n```json\n" + json.dumps(payload) + "\n```\nEnjoy!"
    assert repair(raw) == payload


def test_object_wrapped_in_prose():
    raw = 'Sure! {"name": "Lin", "role": "Detective", "traits": ["calm", "stubborn"]} Hope this helps.'
    assert repair(raw) == {"name": "Lin", "role": "Detective", "traits": ["calm", "stubborn"]}


def test_array_wrapped_in_prose():
    raw = 'The characters are: [{"name": "Mei", "role": "lead"}] as requested.'
    assert repair(raw) == [{"name": "Mei", "role": "lead"}]


def test_unquoted_values_inside_prose():
    raw = 'Result:\n[{"id": 2, "title": 风暴, "summary": 船沉了}]\nDone.'
    assert repair(raw) == [{"id": 2, "title": "风暴", "summary": "船沉了"}]


def test_valid_json_is_left_alone():
    value = [{"title": "A, B", "summary": "x"}]
    text = json.dumps(value, ensure_ascii=False)
    assert repair(text) == value
    assert repair(json.dumps(repair(text), ensure_ascii=False)) == value


def test_quoted_values_survive_requoting_neighbours():
    raw = '[{"title": "Dawn", "summary": 开始}]'
    assert repair(raw) == [{"title": "Dawn", "summary": "开始"}]


def test_numeric_and_literal_values_are_not_requoted():
    text = '{"name": 42, "role": -1, "title": true, "summary": null, "description": 1.5}'
    assert requote_fields(text) == text
    assert repair('[{"name": 42, "title": Dawn}]') == [{"name": 42, "title": "Dawn"}]


@pytest.mark.parametrize("raw, expected", [
    ('[{"name": "A", "role": - villain}]', [{"name": "A", "role": "- villain"}]),
    ('[{"title": 2nd Act, "summary": "x"}]', [{"title": "2nd Act", "summary": "x"}]),
    ('[{"title": true love, "summary": "x"}]', [{"title": "true love", "summary": "x"}]),
    ('[{"title": null island, "summary": "x"}]', [{"title": "null island", "summary": "x"}]),
])
def test_values_starting_like_literals_are_requoted(raw, expected):
    assert repair(raw) == expected


def test_unquoted_name_inside_prose():
    raw = 'Sure! Here is the data: [{"name": Alice, "role": "Hero"}] Hope that helps!'
    assert repair(raw) == [{"name": "Alice", "role": "Hero"}]


def test_requoted_value_escapes_quotes():
    assert repair('{"title": He said "hi"}') == {"title": 'He said "hi"'}


@pytest.mark.parametrize("raw", ["", "   ", "\n\t", None])
def test_empty_input_yields_empty_list(raw):
    assert repair(raw) == []


@pytest.mark.parametrize("raw, expected", [("[]", []), ("{}", {}), ("0", 0), ("false", False)])
def test_falsy_json_values_are_valid(raw, expected):
    assert repair(raw) == expected


def test_unparsable_output_carries_prefix():
    raw = "I'm sorry, I can't produce that outline right now. " * 3
    with pytest.raises(UnparsableOutputError) as info:
        repair(raw)

    assert info.value.raw_prefix == raw[:50]
    assert str(info.value).startswith("Could not parse or repair model output. Raw: ")
    assert raw[:50] in str(info.value)


def test_strip_fences():
    assert strip_fences("```JSON\n[1]\n```") == "[1]"
    assert strip_fences("```\n{}\n```") == "{}"


def test_candidate_order():
    raw = 'text [{"title": x}] more'
    assert [c.strategy for c in candidates(raw)] == [
        "fences_stripped",
        "requoted",
        "array_extracted",
        "array_extracted_requoted",
        "object_extracted",
        "object_extracted_requoted",
    ]


def test_outer_object_is_tried_before_nested_array():
    raw = 'Here: {"chapters": [1, 2], "title": "T"} ok'
    strategies = [c.strategy for c in candidates(raw)]
    assert strategies.index("object_extracted") < strategies.index("array_extracted")
    assert repair(raw) == {"chapters": [1, 2], "title": "T"}
