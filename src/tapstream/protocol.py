from typing import List

from tapstream.core import VERSION_HEADER, TestPoint
from tapstream.grammar import (
    Parsed,
    Result,
    anything,
    bail_out,
    comment,
    description,
    directive,
    empty,
    first_of,
    map_result,
    newline,
    optional,
    plan,
    pragma,
    sequence,
    status,
    tag,
    test_number,
    yaml_block,
)


def _build_test_point(values: tuple) -> TestPoint:
    ok, number, text, found_directive, _newline, yaml = values
    return TestPoint(
        status=ok,
        test_number=number,
        description=text,
        directive=found_directive,
        yaml=yaml,
    )


# Field order is fixed: a description after a directive is not a description.
# The trailing optional YAML block holds a point back until the next line (or
# end of input) shows whether "  ---" follows.
_test_point = map_result(
    sequence(
        status,
        optional(test_number),
        optional(description),
        optional(directive),
        newline,
        optional(yaml_block),
    ),
    _build_test_point,
)

_line = first_of(_test_point, plan, bail_out, pragma, comment, empty, anything)

_version = tag(VERSION_HEADER)


def parse_version(text: str, pos: int = 0, final: bool = False) -> Result:
    return _version(text, pos, final)


def parse_test_point(text: str, pos: int = 0, final: bool = False) -> Result:
    """Assemble one test point, including a YAML block directly after it."""
    return _test_point(text, pos, final)


def parse_test_points(text: str, pos: int = 0, final: bool = False) -> Result:
    """
    Greedily assemble consecutive test points.

    Returns ``Parsed(points, end)`` with every point the text allows, stopping at
    the first unit that is not a complete test point. If not even one point can
    be assembled the first unit's own result (``INCOMPLETE`` or ``Invalid``) is
    returned.
    """
    points: List[TestPoint] = []
    end = pos
    while True:
        result = _test_point(text, end, final)
        if not isinstance(result, Parsed):
            break
        points.append(result.value)
        end = result.end
    if not points:
        return result
    return Parsed(points, end)


def parse_line(text: str, pos: int = 0, final: bool = False) -> Result:
    """
    Parse one stream level unit.

    Alternatives are tried in order: test point, plan, bail out, pragma,
    comment, empty line and finally any other line. An alternative that is
    still ``INCOMPLETE`` stops the search, since it may yet match.
    """
    return _line(text, pos, final)
