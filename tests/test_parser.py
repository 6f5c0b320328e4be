import pytest
from typing import List

from tapstream.core import (
    VERSION_HEADER,
    Anything,
    BailOut,
    Comment,
    DirectiveKind,
    Empty,
    Pragma,
    TestDirective,
    TestPlan,
    TestPoint,
)
from tapstream.stream import (
    BufferLimitExceeded,
    MalformedHeader,
    TapError,
    TapStreamParser,
    TapSyntaxError,
    TruncatedStream,
)


SAMPLE = (
    "1..4\n"
    "# Subsystem: café ☕\n"
    "ok 1 - connects\n"
    "not ok 2 - reads a frame # TODO firmware 1.2\n"
    "  ---\n"
    "  message: 'checksum mismatch'\n"
    "  severity: fail\n"
    "  ...\n"
    "pragma +strict\n"
    "\n"
    "ok 3 # skip no hardware\n"
    "Bail out! power lost\n"
    "ok 4 - ünïcode déscription\n"
).encode("utf-8")

SAMPLE_RECORDS = [
    TestPlan(count=4),
    Comment(text="Subsystem: café ☕"),
    TestPoint(status=True, test_number=1, description="connects"),
    TestPoint(
        status=False,
        test_number=2,
        description="reads a frame",
        directive=TestDirective(kind=DirectiveKind.TODO, reason="firmware 1.2"),
        yaml="  message: 'checksum mismatch'\n  severity: fail\n",
    ),
    Pragma(name="strict", enabled=True),
    Empty(),
    TestPoint(status=True, test_number=3, directive=TestDirective(kind=DirectiveKind.SKIP, reason="no hardware")),
    BailOut(reason="power lost"),
    TestPoint(status=True, test_number=4, description="ünïcode déscription"),
]


def drain(parser: TapStreamParser) -> List:
    out = []
    while True:
        record = parser.next_record()
        if record is None:
            return out
        out.append(record)


def parse_chunks(chunks: List[bytes]) -> List:
    parser = TapStreamParser()
    out = []
    for chunk in chunks:
        parser.feed(chunk)
        out.extend(drain(parser))
    parser.close()
    out.extend(drain(parser))
    assert parser.finished
    return out


def test_whole_stream():
    assert parse_chunks([SAMPLE]) == SAMPLE_RECORDS


def test_every_two_way_split_gives_the_same_records():
    for offset in range(len(SAMPLE) + 1):
        assert parse_chunks([SAMPLE[:offset], SAMPLE[offset:]]) == SAMPLE_RECORDS, offset


def test_byte_at_a_time():
    assert parse_chunks([bytes([b]) for b in SAMPLE]) == SAMPLE_RECORDS


def test_split_inside_multibyte_character():
    data = "ok 1 - café\n".encode("utf-8")
    cut = data.index("é".encode("utf-8")) + 1
    parser = TapStreamParser()
    parser.feed(data[:cut])
    assert parser.next_record() is None
    parser.feed(data[cut:])
    parser.close()
    assert parser.next_record() == TestPoint(status=True, test_number=1, description="café")


def test_last_line_waits_for_possible_yaml_block():
    parser = TapStreamParser()
    parser.feed(b"ok\n")
    assert parser.next_record() is None
    assert parser.wants() == 1

    parser.close()
    assert parser.next_record() == TestPoint(status=True)
    assert parser.next_record() is None
    assert parser.finished


def test_yaml_block_split_across_feeds():
    parser = TapStreamParser()
    parser.feed(b"not ok 1\n  --")
    assert parser.next_record() is None
    parser.feed(b"-\n  got: 1\n  ..")
    assert parser.next_record() is None
    parser.feed(b".\nok 2\n")
    assert parser.next_record() == TestPoint(status=False, test_number=1, yaml="  got: 1\n")


def test_greedy_assembly_before_more_input():
    parser = TapStreamParser()
    parser.feed(b"ok 1\nnot ok 2\n# done\n")

    assert parser.wants() == 0
    assert parser.next_record() == TestPoint(status=True, test_number=1)
    # both remaining records are already assembled
    assert parser.wants() == 0
    assert parser.next_record() == TestPoint(status=False, test_number=2)
    assert parser.next_record() == Comment(text="done")
    assert parser.next_record() is None
    assert parser.wants() == 1


def test_bail_out_does_not_stop_parsing():
    assert parse_chunks([b"Bail out!\nok 1\n"]) == [
        BailOut(),
        TestPoint(status=True, test_number=1),
    ]


def test_unrecognised_lines_advance_the_stream():
    assert parse_chunks([b"TAP Version 14\nok - done # later\nok 2\n"]) == [
        Anything(text="TAP Version 14"),
        Anything(text="ok - done # later"),
        TestPoint(status=True, test_number=2),
    ]


def test_truncated_line_is_the_only_item():
    parser = TapStreamParser()
    parser.feed(b"ok 3 - desc")
    assert parser.next_record() is None
    parser.close()
    with pytest.raises(TruncatedStream):
        parser.next_record()
    # the error is terminal
    with pytest.raises(TruncatedStream):
        parser.next_record()
    assert not parser.finished


def test_records_before_truncation_are_returned_first():
    parser = TapStreamParser()
    parser.feed(b"ok 1\nok 2")
    parser.close()
    assert parser.next_record() == TestPoint(status=True, test_number=1)
    with pytest.raises(TruncatedStream):
        parser.next_record()


def test_unclosed_yaml_block_is_truncated():
    parser = TapStreamParser()
    parser.feed(b"not ok 1\n  ---\n  got: 1\n")
    parser.close()
    with pytest.raises(TruncatedStream):
        parser.next_record()


def test_end_of_input_inside_multibyte_character():
    parser = TapStreamParser()
    parser.feed("ok 1 - é\n".encode("utf-8")[:-2])
    parser.close()
    with pytest.raises(TruncatedStream):
        parser.next_record()


def test_invalid_utf8_is_a_syntax_error_after_earlier_records():
    parser = TapStreamParser()
    parser.feed(b"ok 1\n\xff\xfe\n")
    assert parser.next_record() == TestPoint(status=True, test_number=1)
    with pytest.raises(TapSyntaxError):
        parser.next_record()


def test_buffer_limit():
    parser = TapStreamParser(max_buffer_size=16)
    parser.feed(b"ok 1 - a description that never ends")
    with pytest.raises(BufferLimitExceeded):
        parser.next_record()


def test_buffer_limit_applies_to_undecided_text_only():
    parser = TapStreamParser(max_buffer_size=16)
    parser.feed(b"ok 1 - first\nok 2 - second\nok 3 - third\n")
    assert [r.test_number for r in drain(parser)] == [1, 2]


def test_feed_after_close():
    parser = TapStreamParser()
    parser.close()
    with pytest.raises(TapError):
        parser.feed(b"ok\n")


def test_read_header_incrementally():
    parser = TapStreamParser()
    parser.feed(b"TAP Ver")
    assert parser.read_header() is None
    parser.feed(b"sion 14\nok 1\n")
    assert parser.read_header() == VERSION_HEADER
    parser.close()
    assert parser.next_record() == TestPoint(status=True, test_number=1)


@pytest.mark.parametrize("data", [b"TAP Version 13\n", b"TAP version 14\n", b"ok 1\n"])
def test_malformed_header(data: bytes):
    parser = TapStreamParser()
    parser.feed(data)
    with pytest.raises(MalformedHeader):
        parser.read_header()


@pytest.mark.parametrize("data", [b"", b"TAP Version 1"])
def test_header_cut_short(data: bytes):
    parser = TapStreamParser()
    parser.feed(data)
    parser.close()
    with pytest.raises(MalformedHeader):
        parser.read_header()


def test_header_and_records_before_bad_byte_in_one_chunk():
    parser = TapStreamParser()
    parser.feed(b"TAP Version 14\nok 1\n\xff\n")
    assert parser.read_header() == VERSION_HEADER
    assert parser.next_record() == TestPoint(status=True, test_number=1)
    with pytest.raises(TapSyntaxError):
        parser.next_record()


def test_bad_byte_inside_header_is_malformed():
    parser = TapStreamParser()
    parser.feed(b"TAP Ver\xffsion 14\n")
    with pytest.raises(MalformedHeader):
        parser.read_header()


def test_buffer_limit_error_is_terminal():
    parser = TapStreamParser(max_buffer_size=4)
    parser.feed(b"ok 1\n")
    with pytest.raises(BufferLimitExceeded):
        parser.next_record()
    # the undecided test point is never handed out afterwards
    with pytest.raises(BufferLimitExceeded):
        parser.next_record()
    with pytest.raises(BufferLimitExceeded):
        parser.next_record()


def test_open_yaml_block_is_not_reparsed_until_a_newline_arrives(monkeypatch):
    from tapstream import stream

    calls = []
    parse_line = stream.parse_line

    def counting_parse_line(*args):
        calls.append(args)
        return parse_line(*args)

    monkeypatch.setattr(stream, "parse_line", counting_parse_line)

    parser = TapStreamParser()
    parser.feed(b"not ok 1\n  ---\n  message: ")
    assert parser.next_record() is None
    seen = len(calls)
    for byte in b"a long message without a line break":
        parser.feed(bytes([byte]))
        assert parser.next_record() is None
    assert len(calls) == seen

    parser.feed(b"\n  ...\n")
    parser.close()
    assert parser.next_record() == TestPoint(
        status=False, test_number=1, yaml="  message: a long message without a line break\n"
    )
