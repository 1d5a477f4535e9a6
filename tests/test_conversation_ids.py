from __future__ import annotations

import pytest

from core.conversation_ids import is_pseudo, kind_of, phone_of, to_conversation_id
from core.models import ConversationKind


def test_kind_of_classifies_by_suffix() -> None:
    assert kind_of("4915112345678@s.whatsapp.net") is ConversationKind.DIRECT
    assert kind_of("120363041234567890@g.us") is ConversationKind.GROUP
    assert kind_of("status@broadcast") is ConversationKind.STATUS
    assert kind_of("call@broadcast") is ConversationKind.CALL_LOG
    assert is_pseudo("status@broadcast")
    assert not is_pseudo("120363041234567890@g.us")


def test_phone_of_strips_server_and_device() -> None:
    assert phone_of("4915112345678@s.whatsapp.net") == "4915112345678"
    assert phone_of("4915112345678:12@s.whatsapp.net") == "4915112345678"


def test_to_conversation_id_normalizes_typed_numbers() -> None:
    assert to_conversation_id("+49 151 1234-5678") == "4915112345678@s.whatsapp.net"
    assert to_conversation_id("120363041234567890@g.us") == "120363041234567890@g.us"
    with pytest.raises(ValueError):
        to_conversation_id("not a number")
