from types import SimpleNamespace
from uuid import uuid4

from voxtro.schemas.conditions import ConditionSet
from voxtro.services.inference_service import (
    fallback_contact_scan,
    find_forced_action,
    resolve_inference,
    should_force,
)

CONFIRMED = [
    {"role": "user", "content": "My name is John Smith"},
    {"role": "assistant", "content": "Thanks John, what's your phone number?"},
    {"role": "user", "content": "5551234567"},
    {"role": "assistant", "content": "Just to confirm: John Smith, 5551234567?"},
    {"role": "user", "content": "yes"},
]


def _action(name="submit_lead", inference=None):
    configuration = {} if inference is None else {"inference": inference}
    return SimpleNamespace(id=uuid4(), name=name, configuration=configuration)


class TestResolveInference:
    def test_preset_name(self):
        assert isinstance(resolve_inference("contact_confirmation"), ConditionSet)

    def test_unknown_preset(self):
        assert resolve_inference("read_minds") is None

    def test_empty(self):
        assert resolve_inference(None) is None
        assert resolve_inference("") is None

    def test_malformed_rules(self):
        assert resolve_inference({"groups": [{"logic": "AND", "rules": []}]}) is None


class TestContactConfirmation:
    def test_fires_after_name_phone_and_yes(self):
        assert should_force(_action(inference="contact_confirmation"), CONFIRMED) is True

    def test_needs_affirmative_last_user_message(self):
        messages = CONFIRMED[:-1] + [{"role": "user", "content": "wait, let me check"}]
        assert should_force(_action(inference="contact_confirmation"), messages) is False

    def test_needs_phone_or_email(self):
        messages = [
            {"role": "user", "content": "My name is John Smith"},
            {"role": "assistant", "content": "Shall I submit?"},
            {"role": "user", "content": "yes"},
        ]
        assert should_force(_action(inference="contact_confirmation"), messages) is False

    def test_email_instead_of_phone(self):
        messages = [
            {"role": "user", "content": "this is Ann Lee, ann@example.com"},
            {"role": "assistant", "content": "Shall I submit?"},
            {"role": "user", "content": "Sure"},
        ]
        assert should_force(_action(inference="contact_confirmation"), messages) is True

    def test_bare_name_reply_to_name_question(self):
        messages = [
            {"role": "user", "content": "I'd like to book"},
            {"role": "assistant", "content": "What's your full name?"},
            {"role": "user", "content": "John Smith"},
            {"role": "assistant", "content": "Best phone?"},
            {"role": "user", "content": "5551234567"},
            {"role": "assistant", "content": "Confirm?"},
            {"role": "user", "content": "yes"},
        ]
        assert should_force(_action(inference="contact_confirmation"), messages) is True

    def test_labelled_name_in_one_message(self):
        messages = [
            {"role": "user", "content": "Name: John Smith, phone 5551234567"},
            {"role": "assistant", "content": "Shall I book it?"},
            {"role": "user", "content": "yes"},
        ]
        assert should_force(_action(inference="contact_confirmation"), messages) is True


class TestCustomInference:
    def test_flat_rule_list(self):
        action = _action(
            inference={
                "logic": "AND",
                "rules": [{"type": "message_content", "sender": "last_user", "operator": "contains", "value": "book it"}],
            }
        )
        assert should_force(action, [{"role": "user", "content": "OK, book it please"}]) is True
        assert should_force(action, [{"role": "user", "content": "not yet"}]) is False

    def test_no_inference_never_forces(self):
        assert should_force(_action(), CONFIRMED) is False

    def test_first_matching_action_wins(self):
        plain = _action("plain")
        first = _action("first", inference="contact_confirmation")
        second = _action("second", inference="contact_confirmation")

        assert find_forced_action([plain, first, second], CONFIRMED) is first
        assert find_forced_action([plain], CONFIRMED) is None

    def test_skipped_action_falls_through_to_next_match(self):
        done = _action("done", inference="contact_confirmation")
        pending = _action("pending", inference="contact_confirmation")

        found = find_forced_action([done, pending], CONFIRMED, skip=lambda action: action is done)

        assert found is pending
        assert find_forced_action([done], CONFIRMED, skip=lambda action: True) is None


class TestFallbackContactScan:
    def test_name_and_phone(self):
        found = fallback_contact_scan("My name is John Smith\n(555) 123-4567\nyes")
        assert found == {"name": "John Smith", "phone_number": "5551234567"}

    def test_nothing_found(self):
        assert fallback_contact_scan("hello there") == {}
