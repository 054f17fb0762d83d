"""Tests for replay input decoding."""

import base64
import gzip
import io
import zlib

import pytest

from replay_decoder import (
    FORMAT_BBR,
    FORMAT_XML,
    ReplayValidationError,
    decode_base64_text,
    decode_replay_input,
    gzip_header_len,
    has_xml_marker,
)
from replay_builders import bbr_gzip, bbr_raw_deflate, bbr_zlib, replay_xml

SAMPLE_XML = replay_xml('<EventEndTurn><Reason>1</Reason></EventEndTurn>')


class TestLiteralXml:
    """Tests for input that is already XML."""

    def test_trimmed_input_returned(self):
        """Test literal XML is returned trimmed with the xml format tag."""
        decoded = decode_replay_input(f"\n  {SAMPLE_XML}  \n")
        assert decoded.xml == SAMPLE_XML
        assert decoded.format == FORMAT_XML

    def test_replay_root_without_declaration(self):
        """Test a bare <Replay> document is accepted."""
        decoded = decode_replay_input('<Replay></Replay>')
        assert decoded.format == FORMAT_XML

    def test_decoding_is_repeatable(self):
        """Test the same input decodes to the same result every time."""
        text = bbr_zlib(SAMPLE_XML)
        assert decode_replay_input(text) == decode_replay_input(text)

    def test_has_xml_marker(self):
        """Test marker detection."""
        assert has_xml_marker('<?xml version="1.0"?>')
        assert has_xml_marker('<MatchReplay/>')
        assert not has_xml_marker('eJzLSM3JyQcABiwCFQ==')


class TestCompressedInput:
    """Tests for base64 .bbr containers."""

    def test_zlib(self):
        """Test zlib-wrapped deflate content."""
        decoded = decode_replay_input(bbr_zlib(SAMPLE_XML))
        assert decoded.format == FORMAT_BBR
        assert decoded.xml == SAMPLE_XML

    def test_raw_deflate(self):
        """Test headerless deflate content."""
        decoded = decode_replay_input(bbr_raw_deflate(SAMPLE_XML))
        assert decoded.format == FORMAT_BBR
        assert decoded.xml.startswith('<?xml')

    def test_gzip(self):
        """Test gzip content."""
        decoded = decode_replay_input(bbr_gzip(SAMPLE_XML))
        assert decoded.format == FORMAT_BBR
        assert decoded.xml == SAMPLE_XML

    def test_base64_with_line_breaks_and_missing_padding(self):
        """Test wrapped base64 with its padding stripped still decodes."""
        text = bbr_zlib(SAMPLE_XML).rstrip('=')
        wrapped = '\n'.join(text[i:i + 40] for i in range(0, len(text), 40))
        assert decode_replay_input(wrapped).xml == SAMPLE_XML

    def test_decode_base64_text_restores_padding(self):
        """Test padding is restored before decoding."""
        assert decode_base64_text('aGk') == b'hi'

    def test_gzip_header_len_plain(self):
        """Test minimal gzip header length."""
        data = base64.b64decode(bbr_gzip('<Replay/>'))
        assert gzip_header_len(data) == 10

    def test_gzip_header_len_rejects_non_gzip(self):
        """Test non-gzip data is rejected."""
        with pytest.raises(ValueError):
            gzip_header_len(b'not gzip data')

    def test_gzip_header_len_skips_file_name(self):
        """Test an embedded file name is part of the header."""
        buffer = io.BytesIO()
        with gzip.GzipFile(filename='match.xml', mode='wb', fileobj=buffer, mtime=0) as f:
            f.write(b'<Replay/>')
        data = buffer.getvalue()
        assert gzip_header_len(data) == 10 + len('match.xml') + 1
        assert decode_replay_input(base64.b64encode(data).decode()).xml == '<Replay/>'


class TestValidation:
    """Tests for rejected input."""

    def test_empty_input(self):
        """Test empty and whitespace-only input."""
        with pytest.raises(ReplayValidationError, match='empty'):
            decode_replay_input('')
        with pytest.raises(ReplayValidationError, match='empty'):
            decode_replay_input('   \n\t')

    def test_not_base64(self):
        """Test text that is neither XML nor base64."""
        with pytest.raises(ReplayValidationError, match='not valid XML'):
            decode_replay_input('this is not a replay!')

    def test_base64_of_non_xml(self):
        """Test compressed content that is not XML."""
        text = base64.b64encode(zlib.compress(b'hello world')).decode()
        with pytest.raises(ReplayValidationError, match='not valid XML'):
            decode_replay_input(text)

    def test_literal_xml_over_cap(self):
        """Test literal XML longer than the cap is rejected."""
        with pytest.raises(ReplayValidationError, match='too large'):
            decode_replay_input(SAMPLE_XML, max_decoded_chars=10)

    def test_compressed_xml_over_cap(self):
        """Test valid compressed content longer than the cap is rejected."""
        big = replay_xml('<Filler>' + 'x' * 5000 + '</Filler>')
        with pytest.raises(ReplayValidationError, match='too large'):
            decode_replay_input(bbr_zlib(big), max_decoded_chars=100)

    def test_compressed_xml_within_cap(self):
        """Test content exactly at the cap is accepted."""
        decoded = decode_replay_input(bbr_zlib(SAMPLE_XML), max_decoded_chars=len(SAMPLE_XML))
        assert decoded.xml == SAMPLE_XML

    @pytest.mark.parametrize('compress', [
        zlib.compress,
        gzip.compress,
        lambda data: base64.b64decode(bbr_raw_deflate(data.decode())),
    ])
    def test_truncated_stream(self, compress):
        """Test a compressed stream cut in half is rejected, not partially decoded."""
        big = replay_xml(*(f'<Note id="{i}">{i * 7919}</Note>' for i in range(500)))
        data = compress(big.encode('utf-8'))
        text = base64.b64encode(data[:len(data) // 2]).decode()
        with pytest.raises(ReplayValidationError, match='not valid XML'):
            decode_replay_input(text)

    def test_validation_error_is_value_error(self):
        """Test callers catching ValueError also see validation failures."""
        assert issubclass(ReplayValidationError, ValueError)
