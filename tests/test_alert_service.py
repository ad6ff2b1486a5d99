from unittest.mock import MagicMock, Mock, patch

import pytest

from omnigate.services.alert_service import alert_error, send_alert


@pytest.fixture
def configured():
    with patch("omnigate.services.alert_service.ALERT_BOT_TOKEN", "alert-token"), patch(
        "omnigate.services.alert_service.ALERT_CHAT_ID", "-100200"
    ):
        yield


@pytest.fixture
def telegram_client():
    with patch("omnigate.services.alert_service.httpx.Client") as mock_client_class:
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_response = Mock()
        mock_response.status_code = 200
        mock_client.post.return_value = mock_response
        yield mock_client


class TestSendAlert:
    @patch("omnigate.services.alert_service.ALERT_BOT_TOKEN", None)
    @patch("omnigate.services.alert_service.ALERT_CHAT_ID", None)
    def test_returns_false_when_not_configured(self):
        assert send_alert("ERROR", "Forward delivery failed") is False

    def test_posts_to_alert_bot(self, configured, telegram_client):
        result = send_alert("ERROR", "Forward delivery failed")

        assert result is True
        url = telegram_client.post.call_args[0][0]
        assert url == "https://api.telegram.org/botalert-token/sendMessage"
        json_data = telegram_client.post.call_args[1]["json"]
        assert json_data["chat_id"] == "-100200"
        assert "*ERROR* (omnigate)" in json_data["text"]
        assert "❌" in json_data["text"]

    def test_includes_context_block(self, configured, telegram_client):
        send_alert("ERROR", "Forward delivery failed", {"outbox_id": "abc", "attempts": 5})

        text = telegram_client.post.call_args[1]["json"]["text"]
        assert "outbox_id: abc" in text
        assert "attempts: 5" in text

    def test_unknown_level_uses_generic_emoji(self, configured, telegram_client):
        send_alert("NOTICE", "Something")

        assert "📢" in telegram_client.post.call_args[1]["json"]["text"]

    def test_returns_false_on_non_200(self, configured, telegram_client):
        telegram_client.post.return_value.status_code = 400

        assert send_alert("ERROR", "Forward delivery failed") is False

    @patch("omnigate.services.alert_service.ALERT_BOT_TOKEN", "alert-token")
    @patch("omnigate.services.alert_service.ALERT_CHAT_ID", "-100200")
    @patch("omnigate.services.alert_service.httpx.Client")
    def test_returns_false_on_exception(self, mock_client_class):
        mock_client_class.return_value.__enter__.side_effect = Exception("Network error")

        assert send_alert("CRITICAL", "Database down") is False


class TestAlertShortcuts:
    @patch("omnigate.services.alert_service.send_alert", return_value=True)
    def test_alert_error(self, mock_send):
        assert alert_error("Forward failed", {"k": "v"}) is True
        mock_send.assert_called_once_with("ERROR", "Forward failed", {"k": "v"})
