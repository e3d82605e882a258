"""Tests for request utility functions."""

from unittest.mock import MagicMock, patch

from nevis.core.request_utils import _is_valid_ip, get_bearer_token, get_client_ip


class TestIsValidIP:
    """Tests for _is_valid_ip function."""

    def test_valid_addresses(self):
        assert _is_valid_ip("192.168.1.1") is True
        assert _is_valid_ip("0.0.0.0") is True
        assert _is_valid_ip("::1") is True
        assert _is_valid_ip("2001:db8::1") is True
        assert _is_valid_ip("::ffff:192.168.1.1") is True

    def test_invalid_addresses(self):
        assert _is_valid_ip("") is False
        assert _is_valid_ip("not-an-ip") is False
        assert _is_valid_ip("256.1.1.1") is False
        assert _is_valid_ip("192.168.1.1:8080") is False
        assert _is_valid_ip("192.168.1.1/24") is False
        assert _is_valid_ip(" 192.168.1.1") is False  # Leading space


def _mock_request(headers=None, client_host=None):
    """Create a mock FastAPI request."""
    request = MagicMock()
    headers = headers or {}
    request.headers.get = lambda key, default=None: headers.get(key, default)

    if client_host:
        request.client = MagicMock()
        request.client.host = client_host
    else:
        request.client = None
    return request


class TestGetClientIP:
    """Tests for get_client_ip function."""

    def test_x_real_ip_from_localhost(self):
        request = _mock_request({"X-Real-IP": "5.6.7.8"}, client_host="127.0.0.1")
        assert get_client_ip(request) == "5.6.7.8"

    def test_x_real_ip_not_trusted_from_external(self):
        """X-Real-IP from an arbitrary peer is ignored to prevent spoofing."""
        request = _mock_request({"X-Real-IP": "5.6.7.8"}, client_host="9.10.11.12")
        assert get_client_ip(request) == "9.10.11.12"

    def test_x_real_ip_from_configured_proxy(self):
        request = _mock_request({"X-Real-IP": "5.6.7.8"}, client_host="10.0.0.2")
        assert get_client_ip(request, trusted_proxies={"10.0.0.2"}) == "5.6.7.8"

    def test_x_forwarded_for_ignored(self):
        request = _mock_request({"X-Forwarded-For": "1.2.3.4, 5.6.7.8"}, client_host="127.0.0.1")
        assert get_client_ip(request) == "127.0.0.1"

    def test_whitespace_trimmed(self):
        request = _mock_request({"X-Real-IP": "  2001:db8::1  "}, client_host="::1")
        assert get_client_ip(request) == "2001:db8::1"

    def test_empty_header_falls_back_to_peer(self):
        request = _mock_request({"X-Real-IP": ""}, client_host="127.0.0.1")
        assert get_client_ip(request) == "127.0.0.1"

    def test_no_ip_available(self):
        assert get_client_ip(_mock_request()) is None

    def test_invalid_x_real_ip_logs_warning(self):
        request = _mock_request({"X-Real-IP": "invalid-ip"}, client_host="127.0.0.1")

        with patch("nevis.core.request_utils.logger") as mock_logger:
            assert get_client_ip(request) == "127.0.0.1"
            mock_logger.warning.assert_called()
            assert "Invalid X-Real-IP" in str(mock_logger.warning.call_args)


class TestGetBearerToken:
    def test_extracts_token(self):
        request = _mock_request({"Authorization": "Bearer abc.def.ghi"})
        assert get_bearer_token(request) == "abc.def.ghi"

    def test_missing_header(self):
        assert get_bearer_token(_mock_request()) is None

    def test_other_scheme(self):
        assert get_bearer_token(_mock_request({"Authorization": "Basic dXNlcg=="})) is None

    def test_empty_token(self):
        assert get_bearer_token(_mock_request({"Authorization": "Bearer   "})) is None
