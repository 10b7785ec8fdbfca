"""Response Parser Module

Recovers JSON values from noisy LLM text.

Strategies, tried in order (first accepted candidate wins):
1. Strip <think>...</think> reasoning traces
2. Direct parse of the cleaned text
3. Fenced code blocks (with or without a language tag)
4. Largest balanced {...} or [...] span found by bracket matching
5. Greedy capture from the first non-citation opener to its last closer
6. Cleaning pass (citations, fences, doubled quotes, trailing commas,
   comments) followed by strategies 2, 4 and 5 again
7. Bare numeric lists that were held back as likely citation markers

When a schema is given, a candidate that parses but fails validation is
skipped and the search continues. Among balanced spans the largest
schema-valid one wins.

Nothing here raises: every failure is a ParseResult.
"""

import json
import re
from typing import Any, Callable, Iterator, List, Mapping, Optional, Tuple

import structlog

from resilient_llm.models.extraction import ParseResult, Schema
from resilient_llm.models.llm import HandlerResult
from resilient_llm.services.llm.schema_validator import describe_type, validate

logger = structlog.get_logger()

NO_JSON_ERROR = "Could not extract valid JSON from response"

_THINK_BLOCK = re.compile(r"<(think|thinking)>.*?</\1>", re.DOTALL | re.IGNORECASE)
_THINK_CLOSE = re.compile(r"</(?:think|thinking)>", re.IGNORECASE)
_THINK_OPEN = re.compile(r"<(?:think|thinking)>", re.IGNORECASE)
_FENCED_BLOCK = re.compile(r"```[\w+-]*[ \t]*\r?\n?(.*?)```", re.DOTALL)
_FENCE_MARKER = re.compile(r"```[\w+-]*")
_NUMERIC_CITATION = re.compile(r"\[\d+(?:\s*,\s*\d+)*\]")
_UUID_CITATION = re.compile(
    r"\[[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}\]",
    re.IGNORECASE,
)
_DOUBLED_QUOTE_BEFORE_WORD = re.compile(r'(?<!\\)""(?=[^\s,:}\]"])')
_DOUBLED_QUOTE_AFTER_WORD = re.compile(r'(?<=[^\s,:{\["\\])""')
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_CLOSERS = {"{": "}", "[": "]"}

# A candidate check returns None when the value is acceptable,
# otherwise a description of why it was rejected.
Acceptor = Callable[[Any], Optional[str]]


class ResponseParser:
    """Multi-strategy JSON extraction engine.

    Stateless and reentrant; one instance can serve concurrent requests.
    """

    def extract(self, text: Optional[str], schema: Optional[Schema] = None) -> ParseResult:
        """Extract a JSON value from free text.

        Args:
            text: Raw LLM response text
            schema: Optional field rules every accepted candidate must pass

        Returns:
            ParseResult with the parsed value or an error message
        """
        if not text or not text.strip():
            return ParseResult.fail("Empty response")

        return self._run_strategies(text, _schema_acceptor(schema))

    def extract_array(
        self, text: Optional[str], item_schema: Optional[Schema] = None
    ) -> ParseResult:
        """Extract a top-level JSON array, optionally validating each item.

        Fails with an aggregate count of invalid items rather than the
        first offending index.
        """
        if not text or not text.strip():
            return ParseResult.fail("Empty response")

        result = self._run_strategies(text, _is_list)
        if not result.success:
            fallback = self.extract(text)
            if fallback.success:
                return ParseResult.fail(
                    f"Expected JSON array but got {describe_type(fallback.data)}"
                )
            return result

        items = result.data
        if item_schema is not None:
            invalid = sum(1 for item in items if validate(item, item_schema))
            if invalid:
                logger.debug(
                    "array_items_invalid", invalid=invalid, total=len(items)
                )
                return ParseResult.fail(
                    f"{invalid} of {len(items)} array items failed validation"
                )
        return ParseResult.ok(items)

    def extract_from_tool_invocation(
        self,
        response: Any,
        function_name: Optional[str] = None,
        schema: Optional[Schema] = None,
    ) -> ParseResult:
        """Extract from a structured function/tool call payload.

        Uses the call arguments directly when present; otherwise falls back
        to text extraction on the response's content.

        Args:
            response: HandlerResult, chat-completion style dict, or object
            function_name: Only consider calls to this function
            schema: Optional field rules
        """
        for arguments in _iter_tool_arguments(response, function_name):
            if isinstance(arguments, str):
                result = self.extract(arguments, schema)
            elif schema is not None:
                errors = validate(arguments, schema)
                result = (
                    ParseResult.ok(arguments)
                    if not errors
                    else ParseResult.fail(
                        "Schema validation failed: " + "; ".join(errors)
                    )
                )
            else:
                result = ParseResult.ok(arguments)
            logger.debug(
                "tool_call_extracted",
                function_name=function_name,
                success=result.success,
            )
            return result

        content = self.extract_content(response)
        if content is None:
            return ParseResult.fail("No tool call or content in response")
        return self.extract(content, schema)

    def extract_content(self, response: Any) -> Optional[str]:
        """Pull the text payload out of a handler result.

        Recognizes plain strings, HandlerResult, chat-completion style
        dicts (``choices[0].message.content``) and objects exposing a
        ``content`` or ``text`` string.
        """
        if isinstance(response, str):
            return response
        if isinstance(response, HandlerResult):
            return response.content
        if isinstance(response, Mapping):
            message = _first_choice_message(response)
            if message is not None:
                content = message.get("content")
                return content if isinstance(content, str) else None
            for key in ("content", "text"):
                if isinstance(response.get(key), str):
                    return response[key]
            return None
        for attr in ("content", "text"):
            value = getattr(response, attr, None)
            if isinstance(value, str):
                return value
        return None

    # ------------------------------------------------------------------
    # Strategy pipeline
    # ------------------------------------------------------------------

    def _run_strategies(self, text: str, accept: Acceptor) -> ParseResult:
        cleaned = strip_reasoning(text).strip()
        rejections: List[str] = []

        stages: List[Tuple[str, Callable[[str], Iterator[str]]]] = [
            ("direct", _direct_candidates),
            ("fenced", _fenced_candidates),
            ("balanced", _balanced_candidates),
            ("greedy", _greedy_candidates),
        ]
        for strategy, candidates in stages:
            found = self._first_accepted(candidates(cleaned), accept, rejections)
            if found is not None:
                logger.debug("json_extracted", strategy=strategy)
                return ParseResult.ok(found[0])

        repaired = clean_json_text(cleaned)
        if repaired != cleaned:
            for strategy, candidates in (stages[0], stages[2], stages[3]):
                found = self._first_accepted(candidates(repaired), accept, rejections)
                if found is not None:
                    logger.debug("json_extracted", strategy=f"cleaned_{strategy}")
                    return ParseResult.ok(found[0])

        found = self._first_accepted(_numeric_list_candidates(cleaned), accept, [])
        if found is not None:
            logger.debug("json_extracted", strategy="numeric_list")
            return ParseResult.ok(found[0])

        if rejections:
            return ParseResult.fail(rejections[0])
        return ParseResult.fail(NO_JSON_ERROR)

    @staticmethod
    def _first_accepted(
        candidates: Iterator[str], accept: Acceptor, rejections: List[str]
    ) -> Optional[Tuple[Any]]:
        for candidate in candidates:
            try:
                value = json.loads(candidate)
            except (ValueError, RecursionError):
                continue
            reason = accept(value)
            if reason is None:
                return (value,)
            rejections.append(reason)
        return None


# ----------------------------------------------------------------------
# Candidate generators
# ----------------------------------------------------------------------


def _direct_candidates(text: str) -> Iterator[str]:
    if text:
        yield text


def _fenced_candidates(text: str) -> Iterator[str]:
    for match in _FENCED_BLOCK.finditer(text):
        body = match.group(1).strip()
        if body:
            yield body


def _balanced_candidates(text: str) -> Iterator[str]:
    """Top-level balanced spans, longest first (stable for equal lengths).

    Bare numeric lists such as ``[1]`` read as citation markers and are
    left for the final fallback.
    """
    spans = [
        span
        for span in find_balanced_spans(text)
        if not _NUMERIC_CITATION.fullmatch(span)
    ]
    yield from sorted(spans, key=len, reverse=True)


def _greedy_candidates(text: str) -> Iterator[str]:
    for index, char in enumerate(text):
        if char in _CLOSERS and not _NUMERIC_CITATION.match(text, index):
            end = text.rfind(_CLOSERS[char])
            if end > index:
                yield text[index : end + 1]
            return


def _numeric_list_candidates(text: str) -> Iterator[str]:
    for span in find_balanced_spans(text):
        if _NUMERIC_CITATION.fullmatch(span):
            yield span


def find_balanced_spans(text: str) -> List[str]:
    """Find every top-level balanced ``{...}`` or ``[...]`` span.

    Brackets inside JSON string literals are ignored and nested brackets
    must pair up. An opener that never closes is skipped and scanning
    resumes just after it, so a stray brace in surrounding prose does not
    swallow the real payload. Spans nested inside an earlier span are not
    reported separately.
    """
    spans: List[str] = []
    position = 0
    length = len(text)
    while position < length:
        start = _next_opener(text, position)
        if start == -1:
            break
        end = _match_closer(text, start)
        if end is None:
            position = start + 1
            continue
        spans.append(text[start : end + 1])
        position = end + 1
    return spans


def _next_opener(text: str, position: int) -> int:
    starts = [i for i in (text.find(o, position) for o in _CLOSERS) if i != -1]
    return min(starts) if starts else -1


def _match_closer(text: str, start: int) -> Optional[int]:
    expected: List[str] = []
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            expected.append(_CLOSERS[char])
        elif char in "}]":
            if char != expected.pop():
                return None
            if not expected:
                return index
    return None


# ----------------------------------------------------------------------
# Text cleanup
# ----------------------------------------------------------------------


def strip_reasoning(text: str) -> str:
    """Remove <think>-style reasoning traces that precede the payload."""
    text = _THINK_BLOCK.sub("", text)
    closing = list(_THINK_CLOSE.finditer(text))
    if closing:
        # Opening tag was cut off; everything before the last close is trace
        text = text[closing[-1].end() :]
    return _THINK_OPEN.sub("", text)


def clean_json_text(text: str) -> str:
    """Repair common LLM JSON formatting drift.

    Strips citation markers, code-fence markers and comments, unescapes
    doubled or backslash-escaped quotes, and drops trailing commas.
    Citation and trailing-comma repairs never touch string literals.
    """
    text = _FENCE_MARKER.sub("", text)
    if '\\"' in text and not re.search(r'(?<!\\)"', text):
        text = text.replace('\\"', '"')
    text = _DOUBLED_QUOTE_BEFORE_WORD.sub('"', text)
    text = _DOUBLED_QUOTE_AFTER_WORD.sub('"', text)
    text = strip_comments(text)
    text = _outside_strings(text, _repair_structure)
    return text.strip()


def _repair_structure(code: str) -> str:
    code = _UUID_CITATION.sub("", code)
    code = _strip_citations(code)
    return _TRAILING_COMMA.sub(r"\1", code)


def _strip_citations(code: str) -> str:
    """Drop ``[1]``-style markers unless they sit where a JSON array can."""

    def replace(match: "re.Match[str]") -> str:
        index = match.start() - 1
        while index >= 0 and code[index].isspace():
            index -= 1
        if index >= 0 and code[index] in ":,[":
            return match.group(0)
        return ""

    return _NUMERIC_CITATION.sub(replace, code)


def _outside_strings(text: str, repair: Callable[[str], str]) -> str:
    """Apply ``repair`` to each stretch of text between JSON string literals."""
    out: List[str] = []
    start = 0
    index = 0
    length = len(text)
    in_string = False
    while index < length:
        char = text[index]
        if in_string:
            if char == "\\":
                index += 2
                continue
            if char == '"':
                in_string = False
                out.append(text[start : index + 1])
                start = index + 1
        elif char == '"':
            out.append(repair(text[start:index]))
            start = index
            in_string = True
        index += 1
    tail = text[start:]
    out.append(tail if in_string else repair(tail))
    return "".join(out)


def strip_comments(text: str) -> str:
    """Remove ``//`` and ``/* */`` comments outside string literals."""
    out: List[str] = []
    index = 0
    length = len(text)
    in_string = False
    while index < length:
        char = text[index]
        if in_string:
            out.append(char)
            if char == "\\" and index + 1 < length:
                out.append(text[index + 1])
                index += 2
                continue
            if char == '"':
                in_string = False
            index += 1
            continue
        if char == '"':
            in_string = True
            out.append(char)
            index += 1
        elif text.startswith("//", index):
            newline = text.find("\n", index)
            index = length if newline == -1 else newline
        elif text.startswith("/*", index):
            end = text.find("*/", index + 2)
            index = length if end == -1 else end + 2
        else:
            out.append(char)
            index += 1
    return "".join(out)


# ----------------------------------------------------------------------
# Acceptors and response shape helpers
# ----------------------------------------------------------------------


def _schema_acceptor(schema: Optional[Schema]) -> Acceptor:
    if schema is None:
        return lambda value: None

    def accept(value: Any) -> Optional[str]:
        errors = validate(value, schema)
        if errors:
            return "Schema validation failed: " + "; ".join(errors)
        return None

    return accept


def _is_list(value: Any) -> Optional[str]:
    if isinstance(value, list):
        return None
    return f"Expected JSON array but got {describe_type(value)}"


def _first_choice_message(response: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    choices = response.get("choices")
    if isinstance(choices, list) and choices:
        first = choices[0]
        if isinstance(first, Mapping) and isinstance(first.get("message"), Mapping):
            return first["message"]
    return None


def _iter_tool_arguments(response: Any, function_name: Optional[str]) -> Iterator[Any]:
    calls: List[Any] = []
    if isinstance(response, HandlerResult):
        calls = list(response.tool_calls or [])
    elif isinstance(response, Mapping):
        message = _first_choice_message(response) or response
        calls = list(message.get("tool_calls") or [])
        if not calls and isinstance(message.get("function_call"), Mapping):
            calls = [{"function": message["function_call"]}]

    for call in calls:
        if not isinstance(call, Mapping):
            continue
        function = call.get("function", call)
        if not isinstance(function, Mapping):
            continue
        if function_name is not None and function.get("name") != function_name:
            continue
        arguments = function.get("arguments")
        if arguments is not None:
            yield arguments


_default_parser = ResponseParser()


def extract(text: Optional[str], schema: Optional[Schema] = None) -> ParseResult:
    """Extract a JSON value from free text. See ResponseParser.extract."""
    return _default_parser.extract(text, schema)


def extract_array(
    text: Optional[str], item_schema: Optional[Schema] = None
) -> ParseResult:
    """Extract a top-level JSON array. See ResponseParser.extract_array."""
    return _default_parser.extract_array(text, item_schema)


def extract_from_tool_invocation(
    response: Any,
    function_name: Optional[str] = None,
    schema: Optional[Schema] = None,
) -> ParseResult:
    """Extract from a tool call payload. See ResponseParser."""
    return _default_parser.extract_from_tool_invocation(response, function_name, schema)
