"""
Unit tests for HTTP request parsing.
"""

import pytest

from takeaway.http.request import (
    HTTPRequest,
    RequestParser,
    HTTPParseError,
    parse_request,
)


class TestRequestParser:
    """Tests for RequestParser class."""

    def test_parse_simple_get(self, sample_get_request: bytes):
        """Test parsing a simple GET request."""
        parser = RequestParser()
        request = parser.parse(sample_get_request, ("127.0.0.1", 12345))

        assert request.method == "GET"
        assert request.path == "/merchant/m-1/dishes"
        assert request.version == "HTTP/1.1"
        assert request.client_address == ("127.0.0.1", 12345)
        assert request.body == b""

    def test_parse_headers(self, sample_get_request: bytes):
        """Header names are lowercased."""
        request = parse_request(sample_get_request)

        assert request.headers["host"] == "localhost:8080"
        assert request.get_header("User-Agent") == "pytest"
        assert request.headers["accept"] == "application/json"

    def test_parse_query_params(self, sample_get_request: bytes):
        request = parse_request(sample_get_request)

        assert request.get_query("onSale") == "1"
        assert request.get_query("page") == "2"
        assert request.get_query("missing") is None
        assert request.get_query("missing", "default") == "default"

    def test_parse_post_with_utf8_body(self, sample_post_request: bytes):
        """A JSON body with Chinese text survives parsing."""
        request = parse_request(sample_post_request)

        assert request.method == "POST"
        assert request.path == "/merchant/add_item"
        assert request.content_type == "application/json"
        assert request.json == {"name": "麻婆豆腐", "price": 18.5}

    def test_parse_encoded_query(self):
        raw = b"GET /menu?q=hot%20pot HTTP/1.1\r\nHost: test\r\n\r\n"
        request = parse_request(raw)

        assert request.path == "/menu"
        assert request.get_query("q") == "hot pot"

    def test_unknown_method_is_501(self):
        raw = b"BREW /pot HTTP/1.1\r\nHost: test\r\n\r\n"

        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(raw)

        assert exc_info.value.status_code == 501

    def test_parse_invalid_request_line(self):
        raw = b"GET\r\nHost: test\r\n\r\n"

        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(raw)

        assert exc_info.value.status_code == 400

    def test_parse_missing_header_terminator(self):
        raw = b"GET / HTTP/1.1\r\nHost: test\r\n"

        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(raw)

        assert "Incomplete" in exc_info.value.message

    def test_invalid_header_line(self):
        raw = b"GET / HTTP/1.1\r\nno colon here\r\n\r\n"
        with pytest.raises(HTTPParseError):
            parse_request(raw)

    def test_parse_request_too_large(self):
        parser = RequestParser(max_request_size=100)
        raw = b"GET / HTTP/1.1\r\n" + b"X-Pad: " + b"a" * 200 + b"\r\n\r\n"

        with pytest.raises(HTTPParseError) as exc_info:
            parser.parse(raw)

        assert exc_info.value.status_code == 413

    def test_http_version_parsing(self):
        request = parse_request(b"GET / HTTP/1.0\r\n\r\n")
        assert request.version == "HTTP/1.0"

        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"GET / HTTP/2.0\r\n\r\n")
        assert exc_info.value.status_code == 505

    def test_body_cut_to_content_length(self):
        raw = b"POST /comment/add HTTP/1.1\r\nContent-Length: 5\r\n\r\nhello world"
        request = parse_request(raw)

        assert request.body == b"hello"
        assert request.content_length == 5

    def test_short_body_rejected(self):
        raw = b"POST /comment/add HTTP/1.1\r\nContent-Length: 50\r\n\r\nshort"
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(raw)
        assert "Incomplete body" in exc_info.value.message

    @pytest.mark.parametrize("value", ["abc", "-1"])
    def test_invalid_content_length(self, value):
        raw = f"POST / HTTP/1.1\r\nContent-Length: {value}\r\n\r\n".encode("latin-1")
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(raw)
        assert exc_info.value.status_code == 400

    def test_repeated_headers_joined(self):
        raw = b"GET / HTTP/1.1\r\nAccept: a\r\nAccept: b\r\n\r\n"
        assert parse_request(raw).headers["accept"] == "a, b"


class TestHTTPRequest:
    """Tests for HTTPRequest dataclass."""

    def test_get_header_default(self):
        request = HTTPRequest(method="GET", path="/")
        assert request.get_header("X-Missing") == ""
        assert request.get_header("X-Missing", "none") == "none"

    def test_content_type_strips_parameters(self):
        request = HTTPRequest(
            method="POST", path="/",
            headers={"content-type": "Application/JSON; charset=utf-8"},
        )
        assert request.content_type == "application/json"

    def test_empty_body_json_is_none(self):
        assert HTTPRequest(method="POST", path="/").json is None

    def test_invalid_json_raises_400(self):
        request = HTTPRequest(method="POST", path="/", body=b"{nope")
        with pytest.raises(HTTPParseError) as exc_info:
            request.json
        assert exc_info.value.status_code == 400

    def test_json_parsed_once(self):
        request = HTTPRequest(method="POST", path="/", body=b'{"a": 1}')
        first = request.json
        assert request.json is first
