import pytest

from changelog_api.agent.parsing import (
    parse_json_response,
    remove_trailing_commas,
    scan_structure,
    strip_code_fences,
)
from changelog_api.errors import ResponseParseError


def test_plain_json_passes_through():
    """Valid JSON needs no repair."""
    assert parse_json_response('{"a": 1}') == {"a": 1}


def test_fenced_block_is_unwrapped():
    text = 'Here you go:\n```json\n{"version": "1.0", "sections": []}\n```\nThanks!'
    assert parse_json_response(text, expect=dict) == {"version": "1.0", "sections": []}


def test_unterminated_fence_keeps_body():
    """A response cut off before the closing fence still parses."""
    assert strip_code_fences("```json\n[1, 2]") == "[1, 2]"
    assert parse_json_response("```json\n[1, 2]", expect=list) == [1, 2]


def test_prose_around_json():
    text = 'Sure! The analysis is [{"sha": "abc1234", "type": "feature"}] as requested.'
    assert parse_json_response(text, expect=list) == [{"sha": "abc1234", "type": "feature"}]


def test_brackets_inside_strings_are_ignored():
    text = 'Result: {"text": "a } b [", "n": 1} trailing'
    assert parse_json_response(text, expect=dict) == {"text": "a } b [", "n": 1}


def test_escaped_quotes_inside_strings():
    text = 'x {"q": "say \\"hi\\" {", "n": 2} y'
    assert parse_json_response(text, expect=dict) == {"q": 'say "hi" {', "n": 2}


def test_trailing_commas_removed():
    assert parse_json_response('{"a": [1, 2,], "b": 3,}') == {"a": [1, 2], "b": 3}


def test_remove_trailing_commas_leaves_strings_alone():
    assert remove_trailing_commas('{"a": ",]", }') == '{"a": ",]" }'


def test_truncated_array_drops_partial_element():
    """A truncated array recovers only the elements that were complete."""
    text = '[{"sha": "a1", "type": "feature"}, {"sha": "b2", "type": "bug'
    assert parse_json_response(text, expect=list) == [{"sha": "a1", "type": "feature"}]


def test_truncation_inside_nested_list_drops_whole_element():
    """A cut inside an element's own list must not keep that element."""
    text = '[{"sha": "a1", "tags": ["x"]}, {"sha": "b2", "tags": ["y", "z'
    assert parse_json_response(text, expect=list) == [{"sha": "a1", "tags": ["x"]}]


def test_truncation_before_first_complete_element_fails():
    with pytest.raises(ResponseParseError):
        parse_json_response('{"version": "1.0", "title": "Release", "summ', expect=dict)


def test_truncated_scalar_list_drops_partial_tail():
    assert parse_json_response("[1, 2, 3", expect=list) == [1, 2]


def test_truncated_nested_document():
    text = (
        '{"version": "1.0", "sections": [{"title": "Features", '
        '"changes": [{"description": "Add export"}, {"descr'
    )
    value = parse_json_response(text, expect=dict)
    assert value == {
        "version": "1.0",
        "sections": [{"title": "Features", "changes": [{"description": "Add export"}]}],
    }


def test_expected_list_inside_wrapper_object():
    text = '{"analyses": [{"sha": "abc1234"}]}'
    assert parse_json_response(text, expect=list) == [{"sha": "abc1234"}]


def test_empty_response_raises():
    with pytest.raises(ResponseParseError) as excinfo:
        parse_json_response("   ")
    assert excinfo.value.code == "EMPTY_RESPONSE"


def test_no_json_raises():
    with pytest.raises(ResponseParseError) as excinfo:
        parse_json_response("I could not analyze these commits.")
    assert excinfo.value.code == "PARSE_ERROR"


def test_mismatched_brackets_raise():
    with pytest.raises(ResponseParseError):
        parse_json_response("[1, 2}", expect=list)


def test_scan_records_open_stack():
    scan = scan_structure('{"a": [1, 2', 0)
    assert not scan.balanced
    assert scan.open_stack == ["}", "]"]
    # Cutting inside "a" would leave the object partial
    assert scan.boundaries == []


def test_scan_cuts_only_after_complete_array_elements():
    text = '[{"a": 1, "b": 2}, {"a": 3'
    scan = scan_structure(text, 0)
    assert {cut for cut, _ in scan.boundaries} == {len('[{"a": 1, "b": 2}')}
    assert all(closers == ("]",) for _, closers in scan.boundaries)


def test_bracketed_prose_before_payload_is_skipped():
    text = 'Analysed commits [3 of 3]:\n[{"sha": "a1b2c3d", "type": "feature"}]'
    assert parse_json_response(text, expect=list) == [{"sha": "a1b2c3d", "type": "feature"}]


def test_bracketed_prose_without_payload_raises():
    with pytest.raises(ResponseParseError):
        parse_json_response("Found [none] and {nothing} useful", expect=list)
