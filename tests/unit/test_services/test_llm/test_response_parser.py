"""Unit tests for the multi-strategy response parser."""

import json

import pytest

from resilient_llm.models.extraction import ArrayRule, NumberRule, StringRule
from resilient_llm.models.llm import HandlerResult
from resilient_llm.services.llm.response_parser import (
    NO_JSON_ERROR,
    ResponseParser,
    clean_json_text,
    extract,
    extract_array,
    extract_from_tool_invocation,
    find_balanced_spans,
    strip_comments,
    strip_reasoning,
)


@pytest.fixture
def parser():
    """Create parser instance."""
    return ResponseParser()


@pytest.fixture
def score_schema():
    """Schema requiring a bounded numeric score and a summary."""
    return [
        NumberRule(field="score", min=0, max=100),
        StringRule(field="summary"),
    ]


class TestExtractStrategies:
    """Tests for each extraction strategy."""

    def test_direct_parse(self, parser):
        """Clean JSON is parsed as-is."""
        result = parser.extract('{"score": 85}')
        assert result.success
        assert result.data == {"score": 85}

    def test_fenced_block_with_prose(self, parser, score_schema):
        """JSON inside a json fence surrounded by prose is recovered."""
        text = (
            "Here is the analysis:\n"
            '```json\n{"score": 85, "summary": "Strong"}\n```\n'
            "Hope this helps!"
        )
        result = parser.extract(text, score_schema)
        assert result.success
        assert result.data == {"score": 85, "summary": "Strong"}

    def test_fenced_block_without_language(self, parser):
        """Untagged fences work too."""
        result = parser.extract('Result:\n```\n{"a": 1}\n```')
        assert result.data == {"a": 1}

    def test_array_in_prose_recovered_whole(self, parser):
        """A top-level array in prose is returned, not its first element."""
        result = parser.extract('Here you go: [{"a": 1}, {"b": 2}] done')
        assert result.data == [{"a": 1}, {"b": 2}]

    def test_numeric_list_in_prose(self, parser):
        """A bare numeric list is still recovered when nothing else is found."""
        assert parser.extract("The ids are [1, 2, 3].").data == [1, 2, 3]

    def test_balanced_span_in_prose(self, parser):
        """A brace-balanced object embedded in prose is found."""
        result = parser.extract('The result is {"a": {"b": 2}} as requested.')
        assert result.data == {"a": {"b": 2}}

    def test_braces_inside_strings_ignored(self, parser):
        """Braces within string literals do not affect matching."""
        result = parser.extract('Answer: {"text": "use } and { freely"} end')
        assert result.data == {"text": "use } and { freely"}

    def test_unclosed_opener_skipped(self, parser):
        """A stray opening brace in prose does not swallow the payload."""
        result = parser.extract('Note {see below. Final: {"a": 1}')
        assert result.success
        assert result.data == {"a": 1}

    def test_reasoning_trace_removed(self, parser):
        """<think> blocks are dropped before extraction."""
        text = '<think>maybe {"draft": true}</think>\n{"final": 1}'
        assert parser.extract(text).data == {"final": 1}

    def test_truncated_reasoning_trace_removed(self, parser):
        """Everything before a dangling closing tag is trace."""
        text = 'still thinking {"draft": true}</think>{"final": 2}'
        assert parser.extract(text).data == {"final": 2}


class TestExtractCleaning:
    """Tests for the cleaning pass."""

    def test_trailing_commas(self, parser):
        """Trailing commas before closers are dropped."""
        result = parser.extract('{"a": 1, "b": [1, 2,],}')
        assert result.data == {"a": 1, "b": [1, 2]}

    def test_citation_markers(self, parser):
        """Citation markers after values are stripped."""
        result = parser.extract('{"summary": "Growth is strong"[1], "score": 3}')
        assert result.data == {"summary": "Growth is strong", "score": 3}

    def test_comments_outside_strings(self, parser):
        """Line comments are removed but URLs inside strings survive."""
        text = '{\n  "a": 1, // count\n  "url": "http://x.com"\n}'
        result = parser.extract(text)
        assert result.data == {"a": 1, "url": "http://x.com"}

    def test_doubled_quotes(self, parser):
        """Doubled quotes around keys and values are repaired."""
        result = parser.extract('{""name"": ""Alice""}')
        assert result.data == {"name": "Alice"}

    def test_fully_escaped_payload(self, parser):
        """A payload with only escaped quotes is unescaped."""
        result = parser.extract('{\\"a\\": 1}')
        assert result.data == {"a": 1}

    def test_comma_and_closer_inside_string_kept(self, parser):
        """Trailing-comma repair leaves string contents alone."""
        result = parser.extract('{"s": "a,}", "n": 1,}')
        assert result.data == {"s": "a,}", "n": 1}

    def test_citation_inside_string_kept(self, parser):
        """Citation stripping leaves string contents alone."""
        result = parser.extract('{"note": "see [1]", "x": 1,}')
        assert result.data == {"note": "see [1]", "x": 1}

    def test_escaped_quote_at_end_of_value(self, parser):
        """An escaped quote closing a value is not treated as doubled."""
        result = parser.extract('{"q": "say \\"hi\\"",}')
        assert result.success
        assert result.data == {"q": 'say "hi"'}

    def test_citation_before_broken_object(self, parser):
        """A leading citation marker does not win over the repaired payload."""
        result = parser.extract('According to [2], {"a": 1,}')
        assert result.data == {"a": 1}


class TestExtractFailures:
    """Tests for failure reporting."""

    def test_empty_text(self, parser):
        """Empty or whitespace input fails immediately."""
        assert parser.extract("").error == "Empty response"
        assert parser.extract("   ").error == "Empty response"
        assert parser.extract(None).error == "Empty response"

    def test_no_json(self, parser):
        """Plain prose yields the generic extraction error."""
        result = parser.extract("I cannot help with that.")
        assert not result.success
        assert result.error == NO_JSON_ERROR

    def test_schema_rejection_reported(self, parser, score_schema):
        """When every candidate fails the schema the first reason is returned."""
        result = parser.extract('{"score": "high", "summary": "x"}', score_schema)
        assert not result.success
        assert result.error == (
            "Schema validation failed: Field 'score' must be number, got string"
        )

    def test_never_raises_on_garbage(self, parser):
        """Pathological input fails softly."""
        result = parser.extract("{{{{[[[[" * 100)
        assert not result.success


class TestSchemaGuidedSelection:
    """Tests for schema-aware candidate selection."""

    def test_largest_valid_span_wins(self, parser, score_schema):
        """Among valid spans the largest is returned."""
        text = (
            'Example: {"score": 1, "summary": "a"} '
            'Actual: {"score": 90, "summary": "much longer summary text"}'
        )
        result = parser.extract(text, score_schema)
        assert result.data == {"score": 90, "summary": "much longer summary text"}

    def test_invalid_larger_span_skipped(self, parser, score_schema):
        """A larger span that fails validation gives way to a valid one."""
        text = (
            'Result: {"score": 90, "summary": "ok"} and also '
            '{"note": "this object is longer but has no score field at all"}'
        )
        result = parser.extract(text, score_schema)
        assert result.data == {"score": 90, "summary": "ok"}

    def test_without_schema_largest_span_wins(self, parser):
        """Without a schema the largest balanced span is taken."""
        result = parser.extract('small {"a": 1} big {"a": 1, "b": 2}')
        assert result.data == {"a": 1, "b": 2}


class TestExtractArray:
    """Tests for array extraction."""

    def test_array_in_prose(self, parser):
        """A top-level array inside prose is returned."""
        result = parser.extract_array('Items: [{"a": 1}, {"a": 2}] done')
        assert result.data == [{"a": 1}, {"a": 2}]

    def test_object_is_not_array(self, parser):
        """An object result reports the type mismatch."""
        result = parser.extract_array('{"a": 1}')
        assert not result.success
        assert result.error == "Expected JSON array but got object"

    def test_wrapped_list_not_unwrapped(self, parser):
        """A list nested in an object is not returned as the array."""
        result = parser.extract_array('Result: {"items": [{"a": 1}]}')
        assert not result.success
        assert result.error == "Expected JSON array but got object"

    def test_item_validation_aggregates(self, parser):
        """Invalid items are counted, not indexed."""
        schema = [NumberRule(field="id")]
        result = parser.extract_array('[{"id": 1}, {"id": "x"}, {}]', schema)
        assert not result.success
        assert result.error == "2 of 3 array items failed validation"

    def test_valid_items(self, parser):
        """All-valid arrays pass item validation."""
        schema = [NumberRule(field="id")]
        result = parser.extract_array('```json\n[{"id": 1}, {"id": 2}]\n```', schema)
        assert result.data == [{"id": 1}, {"id": 2}]

    def test_empty_text(self, parser):
        """Empty input fails."""
        assert parser.extract_array("").error == "Empty response"


class TestExtractFromToolInvocation:
    """Tests for structured tool-call extraction."""

    def test_string_arguments(self, parser):
        """Stringified arguments go through text extraction."""
        response = {
            "choices": [
                {
                    "message": {
                        "tool_calls": [
                            {
                                "function": {
                                    "name": "report",
                                    "arguments": '{"score": 7}',
                                }
                            }
                        ]
                    }
                }
            ]
        }
        result = parser.extract_from_tool_invocation(response, "report")
        assert result.data == {"score": 7}

    def test_structured_arguments_validated(self, parser):
        """Mapping arguments are validated directly."""
        result_obj = HandlerResult(
            tool_calls=[{"function": {"name": "report", "arguments": {"score": "x"}}}]
        )
        result = parser.extract_from_tool_invocation(
            result_obj, schema=[NumberRule(field="score")]
        )
        assert not result.success
        assert "Field 'score' must be number" in result.error

    def test_other_function_ignored(self, parser):
        """Calls to other functions are skipped; content is the fallback."""
        response = HandlerResult(
            content='{"from": "content"}',
            tool_calls=[{"function": {"name": "other", "arguments": "{}"}}],
        )
        result = parser.extract_from_tool_invocation(response, "report")
        assert result.data == {"from": "content"}

    def test_legacy_function_call(self, parser):
        """function_call payloads are recognized."""
        response = {
            "choices": [
                {"message": {"function_call": {"name": "f", "arguments": '{"a": 1}'}}}
            ]
        }
        assert parser.extract_from_tool_invocation(response).data == {"a": 1}

    def test_nothing_to_extract(self, parser):
        """No tool call and no content is a failure."""
        result = parser.extract_from_tool_invocation({"choices": []})
        assert result.error == "No tool call or content in response"


class TestExtractContent:
    """Tests for text payload lookup."""

    def test_chat_completion_shape(self, parser):
        """choices[0].message.content is returned."""
        response = {"choices": [{"message": {"content": "hi"}}]}
        assert parser.extract_content(response) == "hi"

    def test_plain_string(self, parser):
        """Strings are their own content."""
        assert parser.extract_content("hi") == "hi"

    def test_handler_result(self, parser):
        """HandlerResult content is returned."""
        assert parser.extract_content(HandlerResult(content="x")) == "x"

    def test_unknown_shape(self, parser):
        """Unrecognized shapes give None."""
        assert parser.extract_content(42) is None


class TestHelpers:
    """Tests for module-level helpers."""

    def test_find_balanced_spans(self):
        """Every top-level span is returned in order."""
        assert find_balanced_spans('{"a": 1} x {"b": {"c": 2}}') == [
            '{"a": 1}',
            '{"b": {"c": 2}}',
        ]

    def test_find_balanced_brackets(self):
        """Bracket spans share the scanner with object spans."""
        assert find_balanced_spans('x [1, [2]] y {"a": [3]}') == [
            "[1, [2]]",
            '{"a": [3]}',
        ]

    def test_find_balanced_mismatched_pairs_skipped(self):
        """An opener closed by the wrong bracket is not a span."""
        assert find_balanced_spans('[1, {"a": 2] {"b": 3}') == ['{"b": 3}']

    def test_strip_reasoning_without_tags(self):
        """Text without tags is unchanged."""
        assert strip_reasoning('{"a": 1}') == '{"a": 1}'

    def test_strip_comments_block(self):
        """Block comments are removed."""
        assert strip_comments('{"a": /* note */ 1}') == '{"a":  1}'

    def test_clean_keeps_array_literal(self):
        """Numeric arrays after a colon are data, not citations."""
        cleaned = clean_json_text('{"ids": [1, 2], "s": "x"[3]}')
        assert json.loads(cleaned) == {"ids": [1, 2], "s": "x"}


class TestModuleFunctions:
    """Tests for the module-level convenience functions."""

    def test_extract(self):
        """extract uses a shared default parser."""
        assert extract('{"a": 1}').data == {"a": 1}

    def test_extract_array(self):
        """extract_array uses a shared default parser."""
        assert extract_array("[1, 2]").data == [1, 2]

    def test_extract_from_tool_invocation(self):
        """extract_from_tool_invocation uses a shared default parser."""
        response = {"tool_calls": [{"function": {"name": "f", "arguments": "[1]"}}]}
        assert extract_from_tool_invocation(response).data == [1]

    def test_array_rule_in_schema(self):
        """Array rules participate in candidate acceptance."""
        result = extract(
            '{"tags": ["a", 1]} {"tags": ["a", "b"]}',
            [ArrayRule(field="tags", item_type="string")],
        )
        assert result.data == {"tags": ["a", "b"]}


ROUND_TRIP_PAYLOADS = [
    pytest.param(
        {"name": "Ada", "tags": ["x", "y"], "nested": {"depth": 2, "ok": True, "none": None}},
        id="nested",
    ),
    pytest.param([{"a": 1}, {"b": [2, 3]}], id="array"),
    pytest.param({"s": "a,}", "t": "b,]", "n": 1}, id="closer-in-string"),
    pytest.param({"note": "see [1] and [2, 3]", "x": 1.5}, id="citation-in-string"),
    pytest.param({"q": 'say "hi"'}, id="escaped-quotes"),
    pytest.param({"url": "https://example.com/a//b", "c": "/* kept */"}, id="comment-in-string"),
]

WRAPPINGS = [
    pytest.param(lambda s: f"Here is the result:\n{s}\nHope this helps!", id="prose"),
    pytest.param(lambda s: f"```json\n{s}\n```", id="fence"),
    pytest.param(lambda s: s[:-1] + "," + s[-1], id="trailing-comma"),
    pytest.param(lambda s: f"// model output\n{s}\n// end", id="line-comment"),
    pytest.param(lambda s: f"According to [2], {s} [3]", id="citation"),
]


class TestRoundTrip:
    """Serialized values survive the usual LLM wrappings unchanged."""

    @pytest.mark.parametrize("payload", ROUND_TRIP_PAYLOADS)
    @pytest.mark.parametrize("wrap", WRAPPINGS)
    def test_wrapped_payload_recovered(self, parser, payload, wrap):
        """extract returns a value equal to the serialized payload."""
        result = parser.extract(wrap(json.dumps(payload)))
        assert result.success, result.error
        assert result.data == payload

    @pytest.mark.parametrize("payload", ROUND_TRIP_PAYLOADS)
    def test_repeated_extraction_is_stable(self, parser, payload):
        """Extracting the same serialized text twice gives identical results."""
        text = json.dumps(payload)
        first = parser.extract(text)
        second = parser.extract(text)
        assert first == second
        assert first.data == payload
