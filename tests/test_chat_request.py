from botrelay.conversations.schemas import ChatReply, ChatRequest, ReplyContent


def test_flat_payload():
    request = ChatRequest.from_payload(
        {
            "botId": "b1",
            "message": "hello",
            "conversationId": "c1",
            "userInfo": {"name": "Ann", "email": "ann@example.test"},
        },
        ip="203.0.113.1",
        user_agent="UA",
    )

    assert (request.bot_id, request.message, request.conversation_id) == ("b1", "hello", "c1")
    assert request.user_info.name == "Ann"
    assert request.user_info.ip == "203.0.113.1"
    assert request.user_info.user_agent == "UA"


def test_widget_payload():
    request = ChatRequest.from_payload(
        {
            "type": "text",
            "content": {"text": "hey"},
            "_botId": "b2",
            "_conversationId": "c2",
            "_userInfo": {"ip": "198.51.100.4", "userAgent": "Widget"},
        },
        ip="203.0.113.1",
        user_agent="UA",
    )

    assert (request.bot_id, request.message, request.conversation_id) == ("b2", "hey", "c2")
    assert request.user_info.ip == "198.51.100.4"
    assert request.user_info.user_agent == "Widget"


def test_missing_values_and_unknown_fingerprint():
    request = ChatRequest.from_payload(["not", "a", "dict"])

    assert request.bot_id is None
    assert request.message is None
    assert request.user_info.ip == "unknown"
    assert request.user_info.user_agent == "unknown"


def test_non_string_message_is_dropped():
    assert ChatRequest.from_payload({"botId": "b", "message": 12}).message is None


def test_reply_wire_format_uses_aliases():
    wire = ChatReply(content=ReplyContent(text="hi"), conversation_id="c1").to_wire()

    assert set(wire) == {"content", "_id", "sender", "type", "createdAt", "voiceSettings", "userInfo"}
    assert wire["sender"] == "bot"
    assert wire["type"] == "text"
    assert wire["voiceSettings"] is None


def test_widget_ip_placeholder_falls_back_to_request_address():
    request = ChatRequest.from_payload(
        {"botId": "b", "message": "hi", "userInfo": {"ip": "client-ip", "userAgent": "Widget"}},
        ip="203.0.113.7",
        user_agent="UA",
    )

    assert request.user_info.ip == "203.0.113.7"
    assert request.user_info.user_agent == "Widget"


def test_non_string_user_fields_are_dropped():
    request = ChatRequest.from_payload(
        {"botId": "b", "message": "hi", "userInfo": {"name": 5, "email": ["x"], "ip": 1, "userAgent": {}}},
        ip="203.0.113.8",
        user_agent="UA",
    )

    assert request.user_info.name is None
    assert request.user_info.email is None
    assert request.user_info.ip == "203.0.113.8"
    assert request.user_info.user_agent == "UA"
