import io
import itertools

import pytest

from runtime.store.state_log import iter_lines_reversed, parse_record


class CountingBytesIO(io.BytesIO):
    def __init__(self, data):
        super().__init__(data)
        self.bytes_read = 0

    def read(self, size=-1):
        chunk = super().read(size)
        self.bytes_read += len(chunk)
        return chunk


@pytest.mark.parametrize("chunk_size", [1, 2, 3, 5, 4096])
class TestIterLinesReversed:
    def test_lines_come_newest_first(self, chunk_size):
        handle = io.BytesIO(b"a\nbb\n\nccc\n")
        assert list(iter_lines_reversed(handle, chunk_size)) == [b"", b"ccc", b"", b"bb", b"a"]

    def test_first_line_without_newline_is_yielded(self, chunk_size):
        handle = io.BytesIO(b"first\nsecond")
        assert list(iter_lines_reversed(handle, chunk_size)) == [b"second", b"first"]

    def test_empty_file_yields_single_empty_line(self, chunk_size):
        assert list(iter_lines_reversed(io.BytesIO(b""), chunk_size)) == [b""]

    def test_multibyte_characters_survive_chunk_boundaries(self, chunk_size):
        data = '{"name":"ÉTÉ"}\n{"name":"日本"}\n'.encode("utf-8")
        lines = [line for line in iter_lines_reversed(io.BytesIO(data), chunk_size) if line]
        assert [parse_record(line) for line in lines] == [{"name": "日本"}, {"name": "ÉTÉ"}]


def test_reading_stops_near_the_tail():
    lines = [b'{"n":%d}' % i for i in range(10_000)]
    handle = CountingBytesIO(b"\n".join(lines) + b"\n")

    newest = list(itertools.islice(iter_lines_reversed(handle, 64), 3))

    assert newest == [b"", lines[-1], lines[-2]]
    assert handle.bytes_read <= 128
    assert handle.bytes_read < len(handle.getvalue()) // 100


class TestParseRecord:
    def test_object(self):
        assert parse_record(b' {"led1": "ON"} \r') == {"led1": "ON"}

    @pytest.mark.parametrize(
        "line",
        [b'{"led1":"O', b"[1, 2]", b'"ON"', b"null", b"   ", b"\xff\xfe{}"],
    )
    def test_rejects_non_objects_and_garbage(self, line):
        assert parse_record(line) is None
