"""bounds-checked cursor over gcov binary buffers"""

import struct
from typing import Optional

from .errors import MalformedRecord, TruncatedInput, UnsupportedVersion

_WORD_SIZE = 4


class BinaryReader:
    """
    Sequential reader over a fixed byte buffer.

    All integers are read in the byte order chosen at construction time,
    which for gcov files is discovered by probing the magic number. Reads
    never return partial data: when fewer bytes remain than requested a
    TruncatedInput error is raised and the position is left unchanged.
    """

    def __init__(
        self,
        data: bytes,
        little_endian: bool = True,
        start: int = 0,
        end: Optional[int] = None,
    ):
        self._data = data
        self._pos = start
        self._end = len(data) if end is None else end
        self.little_endian = little_endian
        self._u32 = struct.Struct("<I" if little_endian else ">I")
        self._i32 = struct.Struct("<i" if little_endian else ">i")

    @classmethod
    def probe(cls, data: bytes, magic: bytes) -> "BinaryReader":
        """
        Creates a reader whose byte order matches the file's magic number.

        The magic is a 32-bit word written in the producer's native order:
        spelled forward the file is big-endian, reversed it is little-endian.
        The returned reader is positioned after the magic.
        """
        if len(data) < _WORD_SIZE:
            raise TruncatedInput(
                f"need {_WORD_SIZE} bytes for the magic number, got {len(data)}"
            )
        head = bytes(data[:_WORD_SIZE])
        if head == magic:
            little_endian = False
        elif head == magic[::-1]:
            little_endian = True
        else:
            raise UnsupportedVersion(
                f"bad magic {head!r}, expected {magic!r} in either byte order"
            )
        return cls(data, little_endian=little_endian, start=_WORD_SIZE)

    @property
    def position(self) -> int:
        return self._pos

    def remaining(self) -> int:
        return self._end - self._pos

    def at_end(self) -> bool:
        return self._pos >= self._end

    def _take(self, size: int) -> int:
        """Reserves size bytes and returns their start offset."""
        if size < 0:
            raise MalformedRecord(f"negative read size {size}")
        if size > self.remaining():
            raise TruncatedInput(
                f"need {size} bytes at offset {self._pos}, "
                f"only {self.remaining()} remain"
            )
        start = self._pos
        self._pos += size
        return start

    def read_bytes(self, size: int) -> bytes:
        start = self._take(size)
        return bytes(self._data[start : start + size])

    def read_u32(self) -> int:
        start = self._take(_WORD_SIZE)
        return self._u32.unpack_from(self._data, start)[0]

    def read_i32(self) -> int:
        start = self._take(_WORD_SIZE)
        return self._i32.unpack_from(self._data, start)[0]

    def read_u64(self) -> int:
        """Reads a 64-bit counter stored as two words, low word first."""
        if self.remaining() < 2 * _WORD_SIZE:
            raise TruncatedInput(
                f"need 8 bytes at offset {self._pos}, only {self.remaining()} remain"
            )
        low = self.read_u32()
        high = self.read_u32()
        return low | (high << 32)

    def read_string(self, byte_length: bool = False) -> str:
        """
        Reads a length-prefixed string.

        In the word dialect (GCC < 13) the length counts 32-bit words and the
        text is NUL padded up to that many words. In the byte dialect the
        length counts bytes including the terminating NUL, without padding.
        A zero length is the empty string.
        """
        length = self.read_u32()
        if length == 0:
            return ""
        size = length if byte_length else length * _WORD_SIZE
        if size > self.remaining():
            # give back the length word so the failed read leaves no trace
            self._pos -= _WORD_SIZE
            raise TruncatedInput(
                f"string of {size} bytes at offset {self._pos + _WORD_SIZE} "
                f"exceeds the {self.remaining() - _WORD_SIZE} remaining bytes"
            )
        raw = self.read_bytes(size)
        try:
            return raw.split(b"\0", 1)[0].decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedRecord(f"string is not valid utf-8: {e}") from e

    def skip(self, size: int) -> None:
        self._take(size)

    def sub_reader(self, size: int) -> "BinaryReader":
        """Returns a reader bounded to the next size bytes and moves past them."""
        start = self._take(size)
        return BinaryReader(
            self._data, little_endian=self.little_endian, start=start, end=start + size
        )
