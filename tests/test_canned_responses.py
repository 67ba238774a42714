import pytest

from avatarcore.orchestration.canned_responses import match_canned_response


@pytest.mark.parametrize(
    "text,intent",
    [
        ("Hello there", "greeting"),
        ("hello and thanks", "greeting"),
        ("GOODBYE!", "goodbye"),
        ("thank you so much", "thanks"),
        ("can you help me", "help"),
    ],
)
def test_canned_intents(text, intent):
    assert match_canned_response(text)[0] == intent


@pytest.mark.parametrize("text", ["", "   ", "What is the weather like today?"])
def test_no_canned_reply(text):
    assert match_canned_response(text) is None
