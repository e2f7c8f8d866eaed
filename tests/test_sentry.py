"""Tests for Sentry event filtering and init."""

from unittest.mock import patch

from app.core.exceptions import LlmProviderError, MissingVariableError, UnexpectedError
from app.core.sentry import drop_client_errors, init_sentry


def _hint(exc: Exception) -> dict:
    return {"exc_info": (type(exc), exc, None)}


class TestDropClientErrors:
    def test_client_errors_dropped(self):
        assert drop_client_errors({"id": 1}, _hint(MissingVariableError("role"))) is None

    def test_server_errors_kept(self):
        event = {"id": 2}
        assert drop_client_errors(event, _hint(LlmProviderError("upstream down", provider="openai"))) is event
        assert drop_client_errors(event, _hint(UnexpectedError("boom"))) is event

    def test_events_without_exception_kept(self):
        event = {"message": "hello"}
        assert drop_client_errors(event, {}) is event
        assert drop_client_errors(event, _hint(RuntimeError("x"))) is event


class TestInitSentry:
    def test_noop_without_dsn(self):
        with patch("app.core.sentry.settings") as mock_settings, patch("sentry_sdk.init") as mock_init:
            mock_settings.sentry_dsn = ""
            init_sentry()
        mock_init.assert_not_called()

    def test_init_with_dsn(self):
        with patch("app.core.sentry.settings") as mock_settings, patch("sentry_sdk.init") as mock_init:
            mock_settings.sentry_dsn = "https://key@sentry.example/1"
            mock_settings.app_env = "production"
            init_sentry()
        kwargs = mock_init.call_args.kwargs
        assert kwargs["traces_sample_rate"] == 0.1
        assert kwargs["before_send"] is drop_client_errors
