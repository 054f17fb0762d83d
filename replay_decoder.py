"""
Input decoding for Blood Bowl 3 replays.
Accepts either literal replay XML or a .bbr container (base64 text wrapping a
zlib, raw deflate or gzip compressed XML document).
"""

import base64
import binascii
import re
import struct
import zlib
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

FORMAT_XML = 'xml'
FORMAT_BBR = 'bbr'

XML_MARKERS = ('<?xml', '<Replay', '<MatchReplay', '<')

# UTF-8 never needs more than 4 bytes per character
MAX_BYTES_PER_CHAR = 4


class ReplayValidationError(ValueError):
    """Replay input was rejected (empty, unreadable or too large)."""


@dataclass(frozen=True)
class DecodedReplay:
    xml: str
    format: str


def has_xml_marker(text: str) -> bool:
    return text.startswith(XML_MARKERS)


# gzip member header flags (RFC 1952)
GZIP_MAGIC = b'\x1f\x8b'
FHCRC = 0x02
FEXTRA = 0x04
FNAME = 0x08
FCOMMENT = 0x10


def _skip_zero_terminated(data: bytes, pos: int) -> int:
    end = data.find(b'\x00', pos)
    if end < 0:
        raise ValueError("Truncated gzip header")
    return end + 1


def gzip_header_len(data: bytes) -> int:
    """Offset of the raw deflate stream inside a gzip member."""
    if len(data) < 10 or data[:2] != GZIP_MAGIC or data[2] != zlib.DEFLATED:
        raise ValueError("Not a gzip deflate stream")

    flags = data[3]
    pos = 10
    if flags & FEXTRA:
        if pos + 2 > len(data):
            raise ValueError("Truncated gzip header")
        (extra_len,) = struct.unpack_from('<H', data, pos)
        pos += 2 + extra_len
    if flags & FNAME:
        pos = _skip_zero_terminated(data, pos)
    if flags & FCOMMENT:
        pos = _skip_zero_terminated(data, pos)
    if flags & FHCRC:
        pos += 2

    if pos > len(data):
        raise ValueError("Truncated gzip header")
    return pos


def _too_large_error(max_decoded_chars: int) -> ReplayValidationError:
    return ReplayValidationError(
        f"Decoded replay is too large. Max decoded size is {max_decoded_chars:,} characters."
    )


def _inflate(data: bytes, wbits: int, max_output: Optional[int]) -> bytes:
    """Inflate a complete deflate stream, stopping once max_output bytes are produced.

    A stream that ends before its final block raises zlib.error.
    """
    decompressor = zlib.decompressobj(wbits)
    if max_output is None:
        out = decompressor.decompress(data)
    else:
        out = decompressor.decompress(data, max_output + 1)
        if len(out) > max_output or decompressor.unconsumed_tail:
            raise OverflowError(max_output)

    out += decompressor.flush()
    if not decompressor.eof:
        raise zlib.error("Incomplete compressed stream")
    return out


def _inflate_deflate(data: bytes, max_output: Optional[int]) -> bytes:
    return _inflate(data, zlib.MAX_WBITS, max_output)


def _inflate_raw_deflate(data: bytes, max_output: Optional[int]) -> bytes:
    return _inflate(data, -zlib.MAX_WBITS, max_output)


def _inflate_gzip(data: bytes, max_output: Optional[int]) -> bytes:
    # gzip header + raw deflate stream; trailer bytes are left unused
    offset = gzip_header_len(data)
    return _inflate(data[offset:], -zlib.MAX_WBITS, max_output)


# Fixed priority order; the first strategy producing replay XML wins
DECOMPRESSION_STRATEGIES: List[Tuple[str, Callable[[bytes, Optional[int]], bytes]]] = [
    ('deflate', _inflate_deflate),
    ('raw_deflate', _inflate_raw_deflate),
    ('gzip', _inflate_gzip),
]


def decode_base64_text(text: str) -> bytes:
    """Decode base64 text, ignoring whitespace and restoring missing padding."""
    compact = re.sub(r'\s+', '', text)
    compact += '=' * (-len(compact) % 4)
    return base64.b64decode(compact)


def _decode_compressed_base64(text: str, max_decoded_chars: Optional[int]) -> Optional[str]:
    try:
        binary = decode_base64_text(text)
    except (binascii.Error, ValueError):
        return None

    if not binary:
        return None

    max_output = max_decoded_chars * MAX_BYTES_PER_CHAR if max_decoded_chars else None

    for _name, inflate in DECOMPRESSION_STRATEGIES:
        try:
            decoded = inflate(binary, max_output).decode('utf-8-sig')
        except OverflowError:
            raise _too_large_error(max_decoded_chars)
        except (zlib.error, ValueError):
            # UnicodeDecodeError is a ValueError; try the next strategy
            continue
        decoded = decoded.strip()
        if has_xml_marker(decoded):
            return decoded

    return None


def decode_replay_input(text: str, max_decoded_chars: Optional[int] = None) -> DecodedReplay:
    """Classify replay input and return canonical XML plus its format tag.

    Raises ReplayValidationError for empty or unreadable input, and when the
    decoded XML is longer than max_decoded_chars.
    """
    raw = (text or '').strip()

    if not raw:
        raise ReplayValidationError("Replay input is empty.")

    if has_xml_marker(raw):
        decoded = DecodedReplay(xml=raw, format=FORMAT_XML)
    else:
        xml = _decode_compressed_base64(raw, max_decoded_chars)
        if xml is None:
            raise ReplayValidationError("Replay input is not valid XML or supported replay content.")
        decoded = DecodedReplay(xml=xml, format=FORMAT_BBR)

    if max_decoded_chars is not None and len(decoded.xml) > max_decoded_chars:
        raise _too_large_error(max_decoded_chars)

    return decoded
