"""
控制参数解析测试

未携带控制参数时返回空结果；结构错误一律以 400 拒绝
"""

import pytest

from iris.core.exceptions import MalformedDirectiveError
from iris.gateway.directives import parse_request_options, split_control_key


class TestSplitControlKey:
    def test_bracket_path(self):
        assert split_control_key("__request[header][X-Token][0]") == ["header", "X-Token", "0"]

    def test_empty_bracket(self):
        assert split_control_key("__request[header][X][]") == ["header", "X", ""]

    def test_unclosed_bracket_rejected(self):
        with pytest.raises(MalformedDirectiveError):
            split_control_key("__request[header")

    def test_trailing_garbage_rejected(self):
        with pytest.raises(MalformedDirectiveError):
            split_control_key("__request[header]x")


class TestParseRequestOptions:
    def test_absent_control_param_is_empty(self):
        options = parse_request_options([("bar", "1"), ("baz", "")])
        assert options.headers == {}
        assert options.protocol is None
        assert options.empty

    def test_single_header_value(self):
        options = parse_request_options([("__request[header][Authorization][0]", "Bearer x")])
        assert options.headers == {"Authorization": ["Bearer x"]}

    def test_sub_keys_are_discarded(self):
        options = parse_request_options(
            [
                ("__request[header][Cookie][session]", "session=abc"),
                ("__request[header][Cookie][theme]", "theme=dark"),
            ]
        )
        assert options.headers == {"Cookie": ["session=abc", "theme=dark"]}

    def test_numeric_sub_keys_ordered_numerically(self):
        options = parse_request_options(
            [
                ("__request[header][X][10]", "c"),
                ("__request[header][X][name]", "d"),
                ("__request[header][X][2]", "b"),
                ("__request[header][X][0]", "a"),
            ]
        )
        assert options.headers == {"X": ["a", "b", "c", "d"]}

    def test_repeated_sub_key_keeps_query_order(self):
        options = parse_request_options(
            [
                ("__request[header][X][]", "first"),
                ("__request[header][X][]", "second"),
            ]
        )
        assert options.headers["X"] == ["first", "second"]

    def test_multiple_headers(self):
        options = parse_request_options(
            [
                ("__request[header][A][0]", "1"),
                ("other", "x"),
                ("__request[header][B][0]", "2"),
            ]
        )
        assert options.headers == {"A": ["1"], "B": ["2"]}

    def test_header_names_are_case_sensitive_keys(self):
        options = parse_request_options(
            [
                ("__request[header][X-Token][0]", "a"),
                ("__request[header][x-token][0]", "b"),
            ]
        )
        assert options.headers == {"X-Token": ["a"], "x-token": ["b"]}

    def test_protocol_override(self):
        options = parse_request_options([("__request[protocol]", "HTTP")])
        assert options.protocol == "http"
        assert options.headers == {}

    @pytest.mark.parametrize("protocol", ["", "  "])
    def test_empty_protocol_means_default(self, protocol):
        options = parse_request_options([("__request[protocol]", protocol)])
        assert options.protocol is None

    def test_unknown_section_ignored(self):
        options = parse_request_options([("__request[timeout]", "5")])
        assert options.empty

    def test_custom_control_param(self):
        options = parse_request_options(
            [("__request[header][A][0]", "ignored"), ("_ctl[header][A][0]", "used")],
            control_param="_ctl",
        )
        assert options.headers == {"A": ["used"]}


class TestMalformedControlParam:
    @pytest.mark.parametrize(
        "key",
        [
            "__request",
            "__request[header]",
            "__request[header][X]",
            "__request[header][][0]",
            "__request[header][X][0][deep]",
            "__request[protocol][0]",
            "__request[header",
        ],
    )
    def test_rejected(self, key):
        with pytest.raises(MalformedDirectiveError) as exc_info:
            parse_request_options([(key, "value")])
        assert exc_info.value.status_code == 400

    def test_repeated_protocol_rejected(self):
        with pytest.raises(MalformedDirectiveError):
            parse_request_options([("__request[protocol]", "http"), ("__request[protocol]", "https")])

    @pytest.mark.parametrize("protocol", ["ht tp", "1http", "http://"])
    def test_invalid_protocol_rejected(self, protocol):
        with pytest.raises(MalformedDirectiveError):
            parse_request_options([("__request[protocol]", protocol)])
