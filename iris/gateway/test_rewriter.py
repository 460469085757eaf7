import httpx
import pytest

from iris.gateway.resolver import resolve_target, static_target
from iris.gateway.rewriter import (
    add_forwarded_headers,
    filter_request_headers,
    merge_directive_headers,
    rewrite_request,
    sanitize_query,
)
from iris.schemas.proxy import ClientInfo, RequestOptions


class TestSanitizeQuery:
    def test_control_keys_removed_others_kept(self):
        assert sanitize_query("a=1&__request[header][X][0]=v&b=2") == "a=1&b=2"

    def test_percent_encoded_control_keys_removed(self):
        query = "__request%5Bheader%5D%5BX%5D%5B0%5D=v&a=1"
        assert sanitize_query(query) == "a=1"

    def test_flat_control_key_removed(self):
        assert sanitize_query("__request=1&__request_debug=1&keep=1") == "keep=1"

    def test_order_and_encoding_preserved(self):
        query = "z=%2F&__request[protocol]=http&a=b+c&a=d"
        assert sanitize_query(query) == "z=%2F&a=b+c&a=d"

    def test_only_control_keys(self):
        assert sanitize_query("__request[protocol]=http") == ""

    def test_empty(self):
        assert sanitize_query("") == ""

    def test_blank_values_kept(self):
        assert sanitize_query("flag&x=") == "flag&x="


class TestHeaderMerge:
    def test_append_not_replace(self):
        headers = httpx.Headers({"X": "foo"})
        merge_directive_headers(headers, {"X": ["bar=1"]})
        assert headers["X"] == "foo; bar=1"

    def test_values_joined_with_semicolon(self):
        headers = httpx.Headers()
        merge_directive_headers(headers, {"Cookie": ["a=1", "b=2"]})
        assert headers["Cookie"] == "a=1; b=2"

    def test_existing_lookup_is_case_insensitive(self):
        headers = httpx.Headers({"cookie": "sid=1"})
        merge_directive_headers(headers, {"Cookie": ["theme=dark"]})
        assert headers.get_list("cookie") == ["sid=1; theme=dark"]


def test_filter_request_headers_drops_hop_by_hop_and_host():
    headers = filter_request_headers(
        [
            ("host", "proxy.local"),
            ("connection", "keep-alive"),
            ("transfer-encoding", "chunked"),
            ("accept", "*/*"),
            ("x-multi", "1"),
            ("x-multi", "2"),
        ]
    )
    assert "host" not in headers
    assert "connection" not in headers
    assert "transfer-encoding" not in headers
    assert headers["accept"] == "*/*"
    assert headers.get_list("x-multi") == ["1", "2"]


class TestForwardedHeaders:
    def test_injected(self):
        headers = httpx.Headers()
        add_forwarded_headers(
            headers, ClientInfo(ip="10.0.0.1", scheme="http", host="proxy.local:3000", port=3000)
        )
        assert headers["X-Forwarded-For"] == "10.0.0.1"
        assert headers["X-Forwarded-Proto"] == "http"
        assert headers["X-Forwarded-Port"] == "3000"
        assert headers["X-Forwarded-Host"] == "proxy.local:3000"
        assert headers["X-Real-IP"] == "10.0.0.1"

    def test_appended_to_existing_chain(self):
        headers = httpx.Headers({"X-Forwarded-For": "1.1.1.1", "X-Forwarded-Host": "edge.example"})
        add_forwarded_headers(headers, ClientInfo(ip="10.0.0.1", scheme="https", host="proxy.local"))
        assert headers["X-Forwarded-For"] == "1.1.1.1, 10.0.0.1"
        assert headers["X-Forwarded-Host"] == "edge.example"
        assert "X-Forwarded-Port" not in headers


class TestRewriteRequest:
    def test_end_to_end_rewrite(self):
        target = resolve_target("/example.com/foo")
        options = RequestOptions(headers={"Authorization": ["Bearer x"]})

        rewritten = rewrite_request(
            method="GET",
            path="/example.com/foo",
            query_string="bar=1&__request[header][Authorization][0]=Bearer+x",
            headers=[("host", "proxy.local"), ("accept", "*/*")],
            options=options,
            target=target,
        )

        assert rewritten.url == "https://example.com/foo?bar=1"
        assert rewritten.path_and_query == "/foo?bar=1"
        assert rewritten.headers["Authorization"] == "Bearer x"
        assert "host" not in rewritten.headers
        assert "X-Forwarded-For" not in rewritten.headers

    def test_root_of_target(self):
        target = resolve_target("/example.com")
        rewritten = rewrite_request("GET", "/example.com", "", [], RequestOptions(), target)
        assert rewritten.path == ""
        assert rewritten.url == "https://example.com/"

    def test_question_mark_omitted_without_query(self):
        target = resolve_target("/example.com/a")
        rewritten = rewrite_request(
            "GET", "/example.com/a", "__request[protocol]=http", [], RequestOptions(), target
        )
        assert rewritten.url == "https://example.com/a"

    def test_static_target_prefixes_base_path(self):
        target = static_target("http://backend:8080/api")
        rewritten = rewrite_request("POST", "/users", "x=1", [], RequestOptions(), target)
        assert rewritten.url == "http://backend:8080/api/users?x=1"

    def test_forwarded_headers_before_directives(self):
        target = resolve_target("/example.com")
        options = RequestOptions(headers={"X-Forwarded-For": ["spoof"]})
        rewritten = rewrite_request(
            "GET",
            "/example.com",
            "",
            [],
            options,
            target,
            client=ClientInfo(ip="10.0.0.1", scheme="http"),
        )
        assert rewritten.headers["X-Forwarded-For"] == "10.0.0.1; spoof"

    @pytest.mark.parametrize("method", ["GET", "DELETE", "PATCH"])
    def test_method_kept(self, method):
        target = resolve_target("/example.com")
        rewritten = rewrite_request(method, "/example.com/x", "", [], RequestOptions(), target)
        assert rewritten.method == method
