"""Tests for compressed payload detection and decoding."""

import base64
import gzip

import pytest

from bcmeta.core import errors
from bcmeta.protocol.decoder import (
    compress_payload,
    decode_message,
    decompress_payload,
    find_compressed,
)


class TestDecompression:
    """Round trip and failure modes of the compressed blob."""

    @pytest.mark.parametrize("value", [
        [{"handlerType": "DN.SessionInitHandler", "parameters": [{"ServerSessionId": "s"}]}],
        {"nested": {"list": [1, 2.5, None, True, "ü"]}},
        [],
    ])
    def test_round_trip(self, value):
        """Compressed JSON decodes to an equal structure."""
        assert decompress_payload(compress_payload(value)) == value

    def test_invalid_base64_is_protocol_error(self):
        with pytest.raises(errors.DecompressionError) as exc_info:
            decompress_payload("not base64 !!!")
        assert isinstance(exc_info.value, errors.ProtocolError)

    def test_not_gzip_is_protocol_error(self):
        blob = base64.b64encode(b"plain bytes, no gzip header").decode()
        with pytest.raises(errors.DecompressionError):
            decompress_payload(blob)

    def test_gzip_of_non_json_is_protocol_error(self):
        blob = base64.b64encode(gzip.compress(b"{not json")).decode()
        with pytest.raises(errors.DecompressionError):
            decompress_payload(blob)


class TestMessageDetection:
    """The blob lives under different names depending on message position."""

    def test_first_response_top_level(self):
        message = {"jsonrpc": "2.0", "id": "x", "compressedResult": "abc"}
        assert find_compressed(message) == ("compressedResult", "abc")

    def test_result_object(self):
        message = {"jsonrpc": "2.0", "id": "x", "result": {"compressedResult": "abc"}}
        assert find_compressed(message) == ("compressedResult", "abc")

    def test_later_response_in_message_params(self):
        message = {"method": "Message", "params": [{"sequenceNumber": 3, "compressedData": "xyz"}]}
        assert find_compressed(message) == ("compressedData", "xyz")

    def test_uncompressed_returns_none(self):
        assert find_compressed({"method": "Message", "params": [{"sequenceNumber": 3}]}) is None
        assert find_compressed(["not", "a", "dict"]) is None

    def test_decode_message_inflates(self):
        handlers = [{"handlerType": "DN.EmptyPageStackHandler", "parameters": []}]
        message = {"method": "Message", "params": [{"compressedData": compress_payload(handlers)}]}
        assert decode_message(message) == handlers

    def test_decode_message_passes_plain_result_through(self):
        assert decode_message({"jsonrpc": "2.0", "result": [1, 2]}) == [1, 2]
        assert decode_message({"other": 1}) == {"other": 1}

    def test_decompression_failure_not_masked(self):
        """A corrupt blob surfaces as a decompression error, not a later parse error."""
        with pytest.raises(errors.DecompressionError):
            decode_message({"compressedResult": "%%%"})
