from shared.chat.events import (
    CLIENT_VERSION_ATTRIBUTE,
    EventKind,
    create_chat_event,
)
from shared.chat.formatter import censor_text, format_message, should_relay_event


def test_join_and_leave():
    assert format_message(create_chat_event("join", "#ff0000Alice")) == "👋 **Alice joined the game**"
    assert format_message(create_chat_event("leave", "Alice")) == "🚪 **Alice left the game**"


def test_death():
    event = create_chat_event("death", "Carl", text="died of §#ff0000lava")
    assert format_message(event) == "💀 **Carl died of lava**"
    assert format_message(create_chat_event("death", "Carl")) == "💀 **Carl died**"


def test_version_mismatch():
    event = create_chat_event(
        "version-mismatch",
        "Bob",
        text="1.2.3",
        attributes={CLIENT_VERSION_ATTRIBUTE: "1.2.3"},
    )
    assert format_message(event) == "⚠️ **Bob uses incompatible client version 1.2.3**"


def test_chat_is_censored():
    event = create_chat_event("chat", "Player123", text="This badword is safe")
    assert format_message(event, ["badword"]) == "**Player123**: This ||beep|| is safe"


def test_censor_is_whole_word_and_case_insensitive():
    assert censor_text("BAD bad badge", ["bad"]) == "||beep|| ||beep|| badge"
    assert censor_text("text", []) == "text"


def test_should_relay_event():
    assert should_relay_event(EventKind.CHAT, [EventKind.CHAT, EventKind.JOIN])
    assert not should_relay_event(EventKind.DEATH, [EventKind.CHAT])
