"""Tests for the ranked action-choice menu."""

from conftest import button, text_input

from ui_scout.action_selector import ActionChoice, ActionSelector
from ui_scout.knowledge import ActionType, Element, ElementType, ScreenType, SemanticIntent


def by_target(choices):
    return {c.target_element: c for c in choices if c.target_element}


class TestMenuShape:
    def test_done_is_always_last(self):
        choices = ActionSelector().build([button("a"), button("b")], set())
        assert choices[-1].action == ActionType.DONE
        assert choices[-1].number == len(choices)
        assert [c.number for c in choices] == list(range(1, len(choices) + 1))

    def test_empty_elements_still_offer_done(self):
        choices = ActionSelector().build([], set())
        assert [c.action for c in choices] == [ActionType.DONE]

    def test_ranked_by_element_priority(self):
        elements = [button("low", priority=10), button("high", priority=90), button("mid", priority=50)]
        choices = ActionSelector().build(elements, set())
        assert [c.target_element for c in choices[:3]] == ["high", "mid", "low"]

    def test_max_choices_caps_element_choices(self):
        elements = [button(f"b{i}") for i in range(5)]
        choices = ActionSelector(max_choices=2).build(elements, set())
        assert [c.action for c in choices] == [ActionType.TAP, ActionType.TAP, ActionType.DONE]

    def test_unnamed_elements_are_not_offered(self):
        unnamed = Element(type=ElementType.BUTTON, interactive=True, priority=80)
        choices = ActionSelector().build([button("named", priority=90), unnamed], set())
        assert [c.target_element for c in choices if c.action == ActionType.TAP] == ["named"]
        assert choices[-1].action == ActionType.DONE

    def test_non_interactive_elements_are_not_offered(self):
        text = Element(type=ElementType.TEXT, id="title", label="Welcome")
        choices = ActionSelector().build([text], set())
        assert [c.action for c in choices] == [ActionType.DONE]


class TestHistory:
    def test_visited_taps_are_skipped(self):
        choices = ActionSelector().build([button("seen"), button("fresh")], {"seen"})
        assert "seen" not in by_target(choices)
        assert "fresh" in by_target(choices)

    def test_visited_inputs_stay_and_are_marked(self):
        choices = ActionSelector().build([text_input("email")], {"email"})
        choice = by_target(choices)["email"]
        assert choice.action == ActionType.TYPE
        assert choice.description.endswith("[visited]")

    def test_attempted_targets_are_skipped(self):
        choices = ActionSelector().build([button("a"), button("b")], set(), attempted=["a"])
        assert list(by_target(choices)) == ["b"]


class TestFormHeuristics:
    def login_elements(self, email=None, password=None):
        return [
            text_input("email", value=email),
            text_input("password", value=password),
            button("loginButton", label="Log in", priority=150, intent=SemanticIntent.SUBMIT),
        ]

    def test_incomplete_form_prefers_inputs_over_submit(self):
        choices = by_target(ActionSelector().build(self.login_elements(), set(), ScreenType.LOGIN))
        assert choices["email"].priority == 125
        assert choices["password"].priority == 125
        assert choices["loginButton"].priority == 37
        assert choices["email"].priority > choices["loginButton"].priority

    def test_complete_form_prefers_submit(self):
        elements = self.login_elements(email="a@b.c", password="secret")
        choices = by_target(ActionSelector().build(elements, set(), ScreenType.LOGIN))
        assert choices["loginButton"].priority == 195
        assert choices["email"].priority == 25
        assert choices["loginButton"].priority > choices["password"].priority

    def test_submit_untouched_outside_forms(self):
        elements = self.login_elements()
        choices = by_target(ActionSelector().build(elements, set(), ScreenType.CONTENT))
        assert choices["loginButton"].priority == 150

    def test_type_choice_carries_generated_text(self):
        choice = by_target(ActionSelector().build(self.login_elements(), set(), ScreenType.LOGIN))["email"]
        assert choice.text_to_type == "test@example.com"
        assert choice.description == 'Type "test@example.com" into email'

    def test_missing_priority_uses_default(self):
        element = Element(type=ElementType.BUTTON, id="plain", interactive=True)
        assert by_target(ActionSelector().build([element], set()))["plain"].priority == 50


class TestSwipe:
    def swipe(self, choices):
        return [c for c in choices if c.action == ActionType.SWIPE]

    def test_no_swipe_on_short_screens(self):
        assert self.swipe(ActionSelector().build([button("a")], set())) == []

    def test_list_screen_with_fresh_targets(self):
        choices = ActionSelector().build([button("a"), button("b")], set(), ScreenType.LIST)
        assert self.swipe(choices)[0].priority == 80
        assert choices[-2].action == ActionType.SWIPE

    def test_swipe_boosted_when_little_is_left(self):
        choices = ActionSelector().build([button("a"), button("b")], {"a"}, ScreenType.LIST)
        assert self.swipe(choices)[0].priority == 130

    def test_long_screen_gets_low_priority_swipe(self):
        elements = [button(f"b{i}") for i in range(11)]
        assert self.swipe(ActionSelector().build(elements, set()))[0].priority == 40

    def test_scrollable_element_offers_swipe(self):
        elements = [button("a"), button("b"), Element(type=ElementType.SCROLLABLE, id="page")]
        assert ActionSelector.should_offer_swipe(elements, None)


class TestPromptFormat:
    def test_high_priority_marker(self):
        choice = ActionChoice(number=1, action=ActionType.TAP, description="Tap Save", priority=150, intent="submit")
        assert choice.format_for_prompt() == "1. ⭐️ Tap Save [submit, priority: 150]"

    def test_low_priority_marker(self):
        choice = ActionChoice(number=4, action=ActionType.DONE, description="Done exploring this screen", priority=5)
        assert choice.format_for_prompt() == "4. ⚠️  Done exploring this screen [priority: 5]"

    def test_no_marker_in_between(self):
        choice = ActionChoice(number=2, action=ActionType.TAP, description="Tap Help", priority=60)
        assert choice.format_for_prompt() == "2. Tap Help [priority: 60]"
