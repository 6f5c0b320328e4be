"""
Streaming line grammar for TAP 14.

Every rule is called as ``rule(text, pos, final)`` and answers with one of:

  - ``Parsed(value, end)``: the rule matched ``text[pos:end]``.
  - ``INCOMPLETE``: ``text[pos:]`` is a valid prefix, more text is needed.
  - ``Invalid(expected)``: ``text[pos:]`` can never become this unit.

``final`` is set once the source has reported end of input. Only literal
matches change behaviour under it: a literal cut short by the end of text can
no longer complete, so it is ``Invalid``. Everything else that runs off the end
stays ``INCOMPLETE`` and the reader reports the stream as truncated.
"""
from typing import Any, Callable, NamedTuple, Optional, Union

from tapstream.core import (
    YAML_CLOSE,
    YAML_OPEN,
    Anything,
    BailOut,
    Comment,
    DirectiveKind,
    Empty,
    Pragma,
    TestDirective,
    TestPlan,
)


class Parsed(NamedTuple):
    value: Any
    end: int


class Invalid(NamedTuple):
    expected: str


class _Incomplete:
    __slots__ = ()

    def __repr__(self) -> str:
        return "INCOMPLETE"


INCOMPLETE = _Incomplete()

Result = Union[Parsed, Invalid, _Incomplete]
Rule = Callable[[str, int, bool], Result]


# ---------------- primitives ----------------

def tag(literal: str) -> Rule:
    size = len(literal)

    def rule(text: str, pos: int, final: bool = False) -> Result:
        chunk = text[pos:pos + size]
        if chunk == literal:
            return Parsed(literal, pos + size)
        if len(chunk) < size and literal.startswith(chunk) and not final:
            return INCOMPLETE
        return Invalid(repr(literal))

    return rule


def tag_no_case(literal: str) -> Rule:
    size = len(literal)
    folded = literal.lower()

    def rule(text: str, pos: int, final: bool = False) -> Result:
        chunk = text[pos:pos + size]
        if chunk.lower() == folded:
            return Parsed(chunk, pos + size)
        if len(chunk) < size and folded.startswith(chunk.lower()) and not final:
            return INCOMPLETE
        return Invalid(repr(literal))

    return rule


def take_while(predicate: Callable[[str], bool], name: str, minimum: int = 0) -> Rule:
    """Longest run of characters satisfying ``predicate``.

    Reaching the end of the text is ``INCOMPLETE``: the run may go on.
    """

    def rule(text: str, pos: int, final: bool = False) -> Result:
        end = pos
        size = len(text)
        while end < size and predicate(text[end]):
            end += 1
        if end == size:
            return INCOMPLETE
        if end - pos < minimum:
            return Invalid(name)
        return Parsed(text[pos:end], end)

    return rule


def take_until(terminator: str, minimum: int = 0) -> Rule:
    """Everything up to (not including) ``terminator``."""

    def rule(text: str, pos: int, final: bool = False) -> Result:
        end = text.find(terminator, pos)
        if end == -1:
            return INCOMPLETE
        if end - pos < minimum:
            return Invalid(f"text before {terminator!r}")
        return Parsed(text[pos:end], end)

    return rule


# ---------------- combinators ----------------

def optional(rule: Rule) -> Rule:
    def wrapped(text: str, pos: int, final: bool = False) -> Result:
        result = rule(text, pos, final)
        if isinstance(result, Invalid):
            return Parsed(None, pos)
        return result

    return wrapped


def first_of(*rules: Rule) -> Rule:
    """Alternation. Moves on only when an alternative is ``Invalid``."""

    def wrapped(text: str, pos: int, final: bool = False) -> Result:
        expected = []
        for rule in rules:
            result = rule(text, pos, final)
            if not isinstance(result, Invalid):
                return result
            expected.append(result.expected)
        return Invalid(" or ".join(expected))

    return wrapped


def sequence(*rules: Rule) -> Rule:
    def wrapped(text: str, pos: int, final: bool = False) -> Result:
        values = []
        end = pos
        for rule in rules:
            result = rule(text, end, final)
            if not isinstance(result, Parsed):
                return result
            values.append(result.value)
            end = result.end
        return Parsed(tuple(values), end)

    return wrapped


def map_result(rule: Rule, fn: Callable[[Any], Any]) -> Rule:
    def wrapped(text: str, pos: int, final: bool = False) -> Result:
        result = rule(text, pos, final)
        if isinstance(result, Parsed):
            return Parsed(fn(result.value), result.end)
        return result

    return wrapped


def _clean(text: str) -> Optional[str]:
    text = text.strip()
    return text or None


def _is_digit(c: str) -> bool:
    return "0" <= c <= "9"


def _is_pragma_key(c: str) -> bool:
    return c.isascii() and (c.isalnum() or c in "-_")


newline = tag("\n")
spaces = take_while(lambda c: c == " ", "spaces")
digits = take_while(_is_digit, "digits", minimum=1)
rest_of_line = take_until("\n")


# ---------------- test point fields ----------------

status = first_of(
    map_result(tag("ok"), lambda _: True),
    map_result(tag("not ok"), lambda _: False),
)


def test_number(text: str, pos: int, final: bool = False) -> Result:
    result = sequence(tag(" "), digits)(text, pos, final)
    if not isinstance(result, Parsed):
        return result
    if text[result.end] not in " \n":
        return Invalid("test number")
    return Parsed(int(result.value[1]), result.end)


_description_prefix = sequence(optional(tag(" -")), tag(" "))


def description(text: str, pos: int, final: bool = False) -> Result:
    """Free text after an optional ``" -"`` and one space.

    Stops at the first ``" #"`` or at the newline, whichever comes first, and
    is undecided until the newline has arrived. The space in front of the text
    may itself open ``" #"``: the description is then empty and the directive
    starts right there.
    """
    prefix = _description_prefix(text, pos, final)
    if not isinstance(prefix, Parsed):
        return prefix
    space = prefix.end - 1
    line_end = text.find("\n", space)
    if line_end == -1:
        return INCOMPLETE
    end = text.find(" #", space, line_end)
    if end == -1:
        end = line_end
    if end == space:
        return Parsed(None, space)
    return Parsed(_clean(text[space + 1:end]), end)


_directive_keyword = first_of(
    map_result(tag_no_case("todo"), lambda _: DirectiveKind.TODO),
    map_result(tag_no_case("skip"), lambda _: DirectiveKind.SKIP),
)
_directive_noise = take_while(lambda c: not c.isspace(), "directive suffix")


def _build_directive(values: tuple) -> TestDirective:
    _, _, kind, _noise, _, reason = values
    return TestDirective(kind=kind, reason=_clean(reason))


directive = map_result(
    sequence(tag(" #"), spaces, _directive_keyword, _directive_noise, spaces, rest_of_line),
    _build_directive,
)


def yaml_block(text: str, pos: int, final: bool = False) -> Result:
    """Verbatim text between ``"  ---\\n"`` and a ``"  ...\\n"`` line.

    Once the opener has matched, a missing closer stays ``INCOMPLETE`` even
    at end of input.
    """
    opened = tag(YAML_OPEN)(text, pos, final)
    if not isinstance(opened, Parsed):
        return opened
    body = opened.end
    if text.startswith(YAML_CLOSE, body):
        return Parsed("", body + len(YAML_CLOSE))
    close = text.find("\n" + YAML_CLOSE, body)
    if close == -1:
        return INCOMPLETE
    return Parsed(text[body:close + 1], close + 1 + len(YAML_CLOSE))


# ---------------- stream level lines ----------------

def _build_plan(values: tuple) -> TestPlan:
    _, count, reason = values
    return TestPlan(count=int(count), reason=reason)


plan = map_result(
    sequence(
        tag("1.."),
        digits,
        first_of(
            map_result(sequence(tag(" # "), rest_of_line, newline), lambda v: _clean(v[1])),
            map_result(newline, lambda _: None),
        ),
    ),
    _build_plan,
)

bail_out = map_result(
    sequence(tag("Bail out!"), rest_of_line, newline),
    lambda v: BailOut(reason=_clean(v[1])),
)

pragma = map_result(
    sequence(
        tag("pragma "),
        first_of(tag("+"), tag("-")),
        take_while(_is_pragma_key, "pragma key", minimum=1),
        newline,
    ),
    lambda v: Pragma(name=v[2], enabled=v[1] == "+"),
)

comment = map_result(
    sequence(spaces, tag("#"), rest_of_line, newline),
    lambda v: Comment(text=_clean(v[2])),
)

empty = map_result(
    sequence(take_while(lambda c: c in " \t\r", "whitespace"), newline),
    lambda _: Empty(),
)

anything = map_result(
    sequence(take_until("\n", minimum=1), newline),
    lambda v: Anything(text=v[0]),
)
