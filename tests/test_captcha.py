"""Tests for reCAPTCHA verification: every unclear answer is a rejection."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from formgate.errors import CaptchaMissing, CaptchaUnavailable
from formgate.services.captcha_service import verify_captcha


class TestVerifyCaptcha:
    """verify_captcha against a patched siteverify endpoint."""

    def test_missing_token_never_calls_provider(self, request_ctx):
        with patch("formgate.services.captcha_service.requests.post") as mock_post:
            with pytest.raises(CaptchaMissing):
                verify_captcha("")
            mock_post.assert_not_called()

    def test_success(self, request_ctx, captcha_ok):
        assert verify_captcha("tok", "203.0.113.7") is True

        _, kwargs = captcha_ok.call_args
        assert kwargs["data"] == {
            "secret": "recaptcha-secret-test",
            "response": "tok",
            "remoteip": "203.0.113.7",
        }
        assert kwargs["timeout"] > 0

    def test_provider_says_no(self, request_ctx, captcha_rejected):
        assert verify_captcha("tok") is False

    @patch("formgate.services.captcha_service.requests.post")
    def test_network_error_is_unavailable(self, mock_post, request_ctx):
        mock_post.side_effect = requests.ConnectionError("unreachable")
        with pytest.raises(CaptchaUnavailable):
            verify_captcha("tok")

    @patch("formgate.services.captcha_service.requests.post")
    def test_timeout_is_unavailable(self, mock_post, request_ctx):
        mock_post.side_effect = requests.Timeout("slow")
        with pytest.raises(CaptchaUnavailable):
            verify_captcha("tok")

    @patch("formgate.services.captcha_service.requests.post")
    def test_http_error_is_unavailable(self, mock_post, request_ctx):
        resp = MagicMock()
        resp.raise_for_status.side_effect = requests.HTTPError("503")
        mock_post.return_value = resp
        with pytest.raises(CaptchaUnavailable):
            verify_captcha("tok")

    @patch("formgate.services.captcha_service.requests.post")
    def test_invalid_json_is_unavailable(self, mock_post, request_ctx):
        mock_post.return_value.json.side_effect = ValueError("no json")
        with pytest.raises(CaptchaUnavailable):
            verify_captcha("tok")

    @patch("formgate.services.captcha_service.requests.post")
    def test_non_object_body_is_unavailable(self, mock_post, request_ctx):
        mock_post.return_value.json.return_value = ["success"]
        with pytest.raises(CaptchaUnavailable):
            verify_captcha("tok")
