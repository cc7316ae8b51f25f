"""
Unit tests for the webhook, AI and WhatsApp collaborators.

HTTP sessions are mocked; no network access.
"""

import pytest
from unittest.mock import Mock
from requests.exceptions import Timeout
from services.integrations.ai import OpenRouterClient, parse_json_reply
from services.integrations.webhook import RequestsWebhookClient, parse_retry_after
from services.integrations.whatsapp import WhatsAppDispatcher
from shared.exceptions import CollaboratorError
from shared.node_configs import AIConfig
from shared.types import Contact


def http_response(status_code=200, json_data=None, headers=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.reason = "Status"
    response.headers = headers or {}
    response.text = text
    response.json.return_value = json_data
    return response


def test_webhook_sends_json_body():
    session = Mock()
    session.request.return_value = http_response(json_data={"ok": True}, headers={"content-type": "application/json"})

    result = RequestsWebhookClient(session).call("POST", "https://hooks.example.com/x", {"X-Key": "1"}, {"id": "c1"})

    assert result == {"ok": True}
    session.request.assert_called_once_with(
        "POST", "https://hooks.example.com/x", headers={"X-Key": "1"}, timeout=30, json={"id": "c1"}
    )


def test_webhook_sends_text_body_as_data():
    session = Mock()
    session.request.return_value = http_response(text="accepted", headers={"content-type": "text/plain"})

    result = RequestsWebhookClient(session).call("PUT", "https://hooks.example.com/x", {}, "id=c1", timeout=5)

    assert result == "accepted"
    assert session.request.call_args.kwargs["data"] == "id=c1"
    assert session.request.call_args.kwargs["timeout"] == 5


def test_webhook_server_error_is_retryable_with_retry_after():
    session = Mock()
    session.request.return_value = http_response(503, headers={"Retry-After": "30"})

    with pytest.raises(CollaboratorError) as exc_info:
        RequestsWebhookClient(session).call("POST", "https://hooks.example.com/x", {})

    assert exc_info.value.is_retryable
    assert exc_info.value.task_error.http_status_code == 503
    assert exc_info.value.task_error.retry_after_seconds == 30


def test_webhook_client_error_is_not_retryable():
    session = Mock()
    session.request.return_value = http_response(404)

    with pytest.raises(CollaboratorError) as exc_info:
        RequestsWebhookClient(session).call("GET", "https://hooks.example.com/x", {})

    assert not exc_info.value.is_retryable


def test_webhook_timeout_is_retryable():
    session = Mock()
    session.request.side_effect = Timeout("read timed out")

    with pytest.raises(CollaboratorError) as exc_info:
        RequestsWebhookClient(session).call("POST", "https://hooks.example.com/x", {})

    assert exc_info.value.is_retryable
    assert exc_info.value.task_error.error_type == "NETWORK_ERROR"


def test_parse_retry_after():
    assert parse_retry_after("120") == 120
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None
    assert parse_retry_after(None) is None


def test_ai_without_key_returns_mock_result():
    """No API key configured means no HTTP call and a mock result"""
    session = Mock()
    client = OpenRouterClient(api_key="", session=session)

    result = client.run("categorize", AIConfig(action="categorize", categories=["billing", "other"]), "Where is my invoice?")

    assert result["category"] == "billing"
    session.post.assert_not_called()


def test_ai_categorize_parses_fenced_json_and_coerces_category():
    session = Mock()
    session.post.return_value = http_response(json_data={
        "choices": [{"message": {"content": '```json\n{"category": "billing", "confidence": 0.9}\n```'}}]
    })
    client = OpenRouterClient(api_key="key", base_url="https://ai.example.com/v1/", session=session)

    result = client.run("categorize", AIConfig(action="categorize"), "Where is my invoice?")

    assert result == {"category": "other", "confidence": 0.9}
    assert session.post.call_args.args[0] == "https://ai.example.com/v1/chat/completions"
    assert session.post.call_args.kwargs["json"]["model"] == "openai/gpt-3.5-turbo"


def test_ai_rate_limit_is_retryable():
    session = Mock()
    session.post.return_value = http_response(429, headers={"Retry-After": "10"}, text="slow down")
    client = OpenRouterClient(api_key="key", session=session)

    with pytest.raises(CollaboratorError) as exc_info:
        client.run("sentiment_analysis", AIConfig(), "I love it")

    assert exc_info.value.is_retryable
    assert exc_info.value.task_error.retry_after_seconds == 10


def test_parse_json_reply():
    assert parse_json_reply('{"a": 1}') == {"a": 1}
    assert parse_json_reply("not json") is None
    assert parse_json_reply("[1, 2]") is None


def whatsapp(session):
    return WhatsAppDispatcher(access_token="token", phone_number_id="555", api_version="v18.0", session=session)


def test_whatsapp_text_payload():
    session = Mock()
    session.post.return_value = http_response(json_data={"messages": [{"id": "wamid.1"}]})
    contact = Contact(id="c1", phone="+351900000001")

    result = whatsapp(session).send_text(contact, "Hello Ana")

    assert result == {"message_id": "wamid.1"}
    assert session.post.call_args.args[0] == "https://graph.facebook.com/v18.0/555/messages"
    assert session.post.call_args.kwargs["json"] == {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": "+351900000001",
        "type": "text",
        "text": {"preview_url": False, "body": "Hello Ana"},
    }


def test_whatsapp_template_parameters_are_ordered():
    session = Mock()
    session.post.return_value = http_response(json_data={"messages": [{"id": "wamid.2"}]})

    whatsapp(session).send_template(Contact(id="c1", phone="+1"), "promo", "pt", {"2": "20%", "1": "Ana"})

    template = session.post.call_args.kwargs["json"]["template"]
    assert template["language"] == {"code": "pt"}
    assert [p["text"] for p in template["components"][0]["parameters"]] == ["Ana", "20%"]


def test_whatsapp_requires_phone():
    session = Mock()

    with pytest.raises(CollaboratorError) as exc_info:
        whatsapp(session).send_text(Contact(id="c1"), "Hello")

    assert not exc_info.value.is_retryable
    session.post.assert_not_called()
