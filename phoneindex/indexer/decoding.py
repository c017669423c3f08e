"""Incremental line reading and source encoding resolution.

All supported codecs are ASCII-compatible, so lines are split on raw b"\\n"
and each line is decoded on its own.
"""

import codecs
from collections.abc import Iterator

import chardet

from phoneindex.indexer.exceptions import UnsupportedEncodingError
from phoneindex.indexer.sources import ReadableStream

ENCODING_ALIASES: dict[str, str] = {
    "utf8": "utf-8",
    "windows1251": "cp1251",
    "koi8r": "koi8_r",
    "iso88595": "iso8859_5",
}
CYRILLIC_CODECS = ("cp1251", "koi8_r", "iso8859_5")

_CHARDET_CODECS = {
    "utf-8": "utf-8",
    "ascii": "utf-8",
    "windows-1251": "cp1251",
    "koi8-r": "koi8_r",
    "iso-8859-5": "iso8859_5",
}
_CHARDET_MIN_CONFIDENCE = 0.6
_RUSSIAN_LOWERCASE = frozenset(chr(code) for code in range(0x0430, 0x0450)) | {"\u0451"}


class LineReader:
    """Reads a byte stream in fixed-size chunks and yields raw lines.

    ``bytes_consumed`` counts the bytes of every line yielded so far,
    newline included. Lines may span any number of chunks.
    """

    def __init__(self, stream: ReadableStream, chunk_size: int) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._stream = stream
        self._chunk_size = chunk_size
        self._peeked: list[bytes] = []
        self._peeked_size = 0
        self._eof = False
        self.bytes_consumed = 0

    def peek(self, size: int) -> bytes:
        """Return up to ``size`` leading bytes without consuming them."""
        while self._peeked_size < size and not self._eof:
            chunk = self._stream.read(self._chunk_size)
            if not chunk:
                self._eof = True
                break
            self._peeked.append(chunk)
            self._peeked_size += len(chunk)
        return b"".join(self._peeked)[:size]

    def __iter__(self) -> Iterator[bytes]:
        pending: list[bytes] = []
        for chunk in self._chunks():
            parts = chunk.split(b"\n")
            if len(parts) == 1:
                pending.append(chunk)
                continue
            if pending:
                pending.append(parts[0])
                parts[0] = b"".join(pending)
            pending = [parts.pop()]
            for line in parts:
                self.bytes_consumed += len(line) + 1
                yield _strip_cr(line)
        tail = b"".join(pending)
        if tail:
            self.bytes_consumed += len(tail)
            yield _strip_cr(tail)

    def _chunks(self) -> Iterator[bytes]:
        while self._peeked:
            chunk = self._peeked.pop(0)
            self._peeked_size -= len(chunk)
            yield chunk
        while not self._eof:
            chunk = self._stream.read(self._chunk_size)
            if not chunk:
                self._eof = True
                return
            yield chunk


def _strip_cr(line: bytes) -> bytes:
    return line[:-1] if line.endswith(b"\r") else line


def resolve_encoding(selector: str, sample: bytes) -> str:
    """Map an encoding selector to a Python codec name.

    Raises:
        UnsupportedEncodingError: for unknown selectors.
    """
    key = selector.strip().lower().replace("-", "").replace("_", "")
    if key in ("", "auto"):
        return detect_encoding(sample)
    codec = ENCODING_ALIASES.get(key)
    if codec is None:
        raise UnsupportedEncodingError(
            f"Unsupported encoding '{selector}'. "
            f"Choose from: {['auto', *ENCODING_ALIASES]}"
        )
    return codec


def detect_encoding(sample: bytes) -> str:
    """Sniff the codec of a leading sample.

    Order: UTF-8 BOM, valid UTF-8, chardet (when it names a supported codec
    confidently), then the lowercase-share heuristic over Cyrillic codecs.
    """
    if sample.startswith(codecs.BOM_UTF8):
        return "utf-8-sig"
    if _is_utf8(sample):
        return "utf-8"
    guess = chardet.detect(sample)
    name = str(guess.get("encoding") or "").lower()
    confidence = float(guess.get("confidence") or 0.0)
    codec = _CHARDET_CODECS.get(name)
    if codec in CYRILLIC_CODECS and confidence >= _CHARDET_MIN_CONFIDENCE:
        return codec
    return guess_cyrillic_codec(sample)


def guess_cyrillic_codec(sample: bytes) -> str:
    """Pick the Cyrillic codec under which the sample reads as mostly lowercase.

    Running text is dominated by lowercase Russian letters; decoding with the
    wrong single-byte table lands them in uppercase or non-Russian ranges.
    """
    best_codec = CYRILLIC_CODECS[0]
    best_share = -1.0
    for codec in CYRILLIC_CODECS:
        text = sample.decode(codec, errors="ignore")
        letters = [ch for ch in text if "\u0400" <= ch <= "\u04ff" and ch.isalpha()]
        if not letters:
            continue
        share = sum(1 for ch in letters if ch in _RUSSIAN_LOWERCASE) / len(letters)
        if share > best_share:
            best_codec, best_share = codec, share
    return best_codec


def _is_utf8(sample: bytes) -> bool:
    decoder = codecs.getincrementaldecoder("utf-8")()
    try:
        decoder.decode(sample, final=False)
    except UnicodeDecodeError:
        return False
    return True
