"""Tests for AICrawler: stuck-loop guard, oracle retries and hierarchy truncation."""

import json

import pytest
from conftest import FakeOracle, button, label, snapshot, text_input

from ui_scout.config import ExplorationConfig
from ui_scout.crawler import AICrawler, sanitize_prompt, truncate_hierarchy
from ui_scout.decision import AlternativeAction, Decision, SuccessProbability
from ui_scout.errors import (
    CapacityExceededError,
    ContentPolicyBlockedError,
    InvalidDecisionError,
    OracleError,
    OracleUnavailableError,
    PersistenceError,
)
from ui_scout.exploration_path import ExplorationPath, ExplorationStep
from ui_scout.knowledge import ActionType
from ui_scout.observer import ExplorationObserver


def choice(number, **extra):
    return {"choice": number, "reasoning": f"pick {number}", "confidence": 70, **extra}


def tap_decision(target):
    return Decision(action=ActionType.TAP, reasoning="tap it", success_probability=SuccessProbability(0.9), target_element=target)


def four_buttons(fp="screen-one"):
    return snapshot(fp, [button("a"), button("b"), button("c"), button("d")])


class TestStuckGuard:
    @pytest.mark.asyncio
    async def test_three_attempts_then_forced_done(self, no_sleep):
        stuck = []
        oracle = FakeOracle([choice(1), choice(1), choice(1)])
        crawler = AICrawler(oracle, observer=ExplorationObserver(on_stuck=lambda n, fp: stuck.append((n, fp))), sleep=no_sleep)
        screen = four_buttons()

        targets = [(await crawler.decide(screen)).target_element for _ in range(3)]
        assert targets == ["a", "b", "c"]
        assert crawler.actions_on_current_screen == ["a", "b", "c"]

        decision = await crawler.decide(screen)
        assert decision.is_done
        assert decision.confidence == 80
        assert oracle.calls == 3
        assert crawler.actions_on_current_screen == []
        assert stuck == [(3, "screen-one")]

    @pytest.mark.asyncio
    async def test_new_screen_resets_attempts(self, no_sleep):
        oracle = FakeOracle([choice(1), choice(1), choice(1)])
        crawler = AICrawler(oracle, sleep=no_sleep)

        await crawler.decide(four_buttons("one"))
        await crawler.decide(four_buttons("one"))
        assert len(crawler.actions_on_current_screen) == 2

        decision = await crawler.decide(four_buttons("two"))
        assert decision.target_element == "a"
        assert crawler.actions_on_current_screen == ["a"]

    @pytest.mark.asyncio
    async def test_each_decide_counts_one_visit(self, no_sleep):
        crawler = AICrawler(FakeOracle([choice(1), choice(1)]), sleep=no_sleep)
        screen = four_buttons()
        await crawler.decide(screen)
        await crawler.decide(screen)
        assert crawler.visit_count("screen-one") == 2

    @pytest.mark.asyncio
    async def test_recorded_arrival_is_not_counted_again(self, no_sleep):
        crawler = AICrawler(FakeOracle([choice(1)]), sleep=no_sleep)
        arrived = four_buttons("two")
        crawler.record_arrival(arrived)
        await crawler.decide(arrived)
        assert crawler.visit_count("two") == 1


class TestSession:
    def test_resume_continues_saved_ledger(self, tmp_path, no_sleep):
        saved = tmp_path / "session.json"
        first = AICrawler(FakeOracle(), sleep=no_sleep)
        first.start_exploration("explore", persist_path=str(saved)).add_step(
            ExplorationStep.from_decision(tap_decision("a"), four_buttons())
        )

        crawler = AICrawler(FakeOracle(), sleep=no_sleep)
        path = crawler.resume_exploration(str(saved))

        assert path.session_id == first.exploration_path.session_id
        assert [s.target_element for s in path.steps] == ["a"]
        path.add_step(ExplorationStep.from_decision(tap_decision("b"), four_buttons()))
        assert len(ExplorationPath.load(str(saved)).steps) == 2

    @pytest.mark.asyncio
    async def test_resume_clears_screen_state(self, tmp_path, no_sleep):
        saved = tmp_path / "session.json"
        crawler = AICrawler(FakeOracle([choice(1)]), sleep=no_sleep)
        crawler.start_exploration("explore", persist_path=str(saved)).save(str(saved))
        await crawler.decide(four_buttons())
        assert crawler.actions_on_current_screen == ["a"]

        crawler.resume_exploration(str(saved))

        assert crawler.current_fingerprint is None
        assert crawler.actions_on_current_screen == []
        assert crawler.did_screen_change(four_buttons())

    def test_resume_missing_file_raises(self, tmp_path):
        with pytest.raises(PersistenceError):
            AICrawler(FakeOracle()).resume_exploration(str(tmp_path / "missing.json"))

    @pytest.mark.asyncio
    async def test_did_screen_change(self, no_sleep):
        crawler = AICrawler(FakeOracle([choice(1)]), sleep=no_sleep)
        assert crawler.did_screen_change(four_buttons())
        await crawler.decide(four_buttons())
        assert not crawler.did_screen_change(four_buttons())
        assert crawler.did_screen_change(four_buttons("two"))

    @pytest.mark.asyncio
    async def test_reset_action_counter(self, no_sleep):
        crawler = AICrawler(FakeOracle([choice(1)]), sleep=no_sleep)
        await crawler.decide(four_buttons())
        crawler.reset_action_counter()
        assert crawler.actions_on_current_screen == []
        assert crawler.current_fingerprint == "screen-one"

    def test_depth_counts_known_screens(self):
        crawler = AICrawler(FakeOracle())
        for fp in ("one", "two", "one", "three"):
            crawler.record_screen_visit(four_buttons(fp))
        depths = {fp: crawler.navigation_graph.get_node(fp).depth for fp in ("one", "two", "three")}
        assert depths == {"one": 0, "two": 1, "three": 2}
        assert crawler.navigation_graph.get_node("three").parent_fingerprint == "one"


class TestShortCircuits:
    @pytest.mark.asyncio
    async def test_empty_screen_is_done_without_oracle(self):
        oracle = FakeOracle()
        decision = await AICrawler(oracle).decide(snapshot("empty", []))
        assert decision.is_done
        assert decision.confidence == 100
        assert oracle.calls == 0

    @pytest.mark.asyncio
    async def test_nothing_actionable_is_done_without_oracle(self):
        oracle = FakeOracle()
        decision = await AICrawler(oracle).decide(snapshot("static", [label("Terms and conditions")]))
        assert decision.is_done
        assert oracle.calls == 0

    @pytest.mark.asyncio
    async def test_record_step_appends_to_ledger(self, no_sleep):
        crawler = AICrawler(FakeOracle([choice(2)]), sleep=no_sleep)
        crawler.start_exploration("explore")
        await crawler.decide(four_buttons(), record_step=True)
        assert crawler.exploration_path.steps[-1].target_element == "b"


class TestChoiceConversion:
    @pytest.mark.asyncio
    async def test_alternatives_map_to_choices(self, no_sleep):
        oracle = FakeOracle([choice(1, alternativeChoices=[2, 1, 99, 5], expectedOutcome="settingsView")])
        decision = await AICrawler(oracle, sleep=no_sleep).decide(four_buttons())
        assert decision.action == ActionType.TAP
        assert decision.target_element == "a"
        assert decision.expected_outcome == "settingsView"
        assert decision.confidence == 70
        assert decision.alternative_actions == [
            AlternativeAction(ActionType.TAP, "b"),
            AlternativeAction(ActionType.DONE),
        ]

    @pytest.mark.asyncio
    async def test_type_choice_keeps_generated_text(self, no_sleep):
        oracle = FakeOracle([choice(1)])
        decision = await AICrawler(oracle, sleep=no_sleep).decide(snapshot("form", [text_input("phoneNumber")]))
        assert decision.action == ActionType.TYPE
        assert decision.text_to_type == "555-123-4567"

    @pytest.mark.asyncio
    async def test_prompt_carries_goal_and_navigation_map(self, no_sleep):
        oracle = FakeOracle([choice(1), choice(1)])
        crawler = AICrawler(oracle, sleep=no_sleep)
        path = crawler.start_exploration("Find settings")

        await crawler.decide(four_buttons())
        assert "Goal: Find settings" in oracle.prompts[0]
        assert "EXPLORATION PATH" not in oracle.prompts[0]

        path.add_step(ExplorationStep.from_decision(tap_decision("a"), four_buttons()))
        await crawler.decide(four_buttons())
        assert "📍 EXPLORATION PATH:" in oracle.prompts[1]
        assert "Previous action: tap a" in oracle.prompts[1]
        assert "Already visited: a" in oracle.prompts[1]


class TestOracleRetries:
    @pytest.mark.asyncio
    async def test_out_of_range_choice_is_retried_with_backoff(self, no_sleep):
        oracle = FakeOracle([choice(9), choice(2)])
        decision = await AICrawler(oracle, sleep=no_sleep).decide(four_buttons())
        assert decision.target_element == "b"
        assert oracle.calls == 2
        assert no_sleep.delays == [0.5]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self, no_sleep):
        config = ExplorationConfig(oracle_retries=3, backoff_base=0.5)
        oracle = FakeOracle([choice(0), OracleError("timeout"), choice(42)])
        with pytest.raises(InvalidDecisionError):
            await AICrawler(oracle, config=config, sleep=no_sleep).decide(four_buttons())
        assert oracle.calls == 3
        assert no_sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_unavailable_is_not_retried(self, no_sleep):
        oracle = FakeOracle([OracleUnavailableError("no key")])
        with pytest.raises(OracleUnavailableError):
            await AICrawler(oracle, sleep=no_sleep).decide(four_buttons())
        assert oracle.calls == 1
        assert no_sleep.delays == []

    @pytest.mark.asyncio
    async def test_capacity_falls_back_to_done(self, no_sleep):
        oracle = FakeOracle([CapacityExceededError("too long")])
        decision = await AICrawler(oracle, sleep=no_sleep).decide(four_buttons())
        assert decision.is_done
        assert decision.confidence == 0
        assert oracle.calls == 1

    @pytest.mark.asyncio
    async def test_persistent_policy_refusal_degrades_to_done(self, no_sleep):
        oracle = FakeOracle([ContentPolicyBlockedError("no"), ContentPolicyBlockedError("still no")])
        decision = await AICrawler(oracle, sleep=no_sleep).decide(four_buttons())
        assert decision.is_done
        assert oracle.calls == 2

    @pytest.mark.asyncio
    async def test_choice_mode_never_sanitizes(self, no_sleep):
        screen = snapshot("login", [text_input("password")])
        oracle = FakeOracle([OracleError("flaky"), choice(1)])
        await AICrawler(oracle, sleep=no_sleep).decide(screen)
        assert "password" in oracle.prompts[1]


class TestFindFeature:
    def login_screen(self):
        return snapshot("login", [text_input("password"), button("loginButton", label="Login")])

    @pytest.mark.asyncio
    async def test_empty_screen(self):
        oracle = FakeOracle()
        decision = await AICrawler(oracle).find_feature(snapshot("empty", []), "settings")
        assert decision.is_done
        assert decision.confidence == 0
        assert oracle.calls == 0

    @pytest.mark.asyncio
    async def test_returns_validated_decision(self, no_sleep):
        oracle = FakeOracle(
            [
                {
                    "action": "tap",
                    "targetElement": "loginButton",
                    "reasoning": "sign in first",
                    "successProbability": {"value": 0.8, "reasoning": "visible"},
                    "alternativeActions": ["swipe"],
                }
            ]
        )
        decision = await AICrawler(oracle, sleep=no_sleep).find_feature(self.login_screen(), "Settings")
        assert decision.target_element == "loginButton"
        assert 'Find the element leading to "Settings"' in oracle.prompts[0]

    @pytest.mark.asyncio
    async def test_first_failure_retries_with_sanitized_prompt(self, no_sleep):
        oracle = FakeOracle(
            [
                ContentPolicyBlockedError("blocked"),
                {"action": "swipe", "reasoning": "look further", "successProbability": 0.5, "alternativeActions": []},
            ]
        )
        decision = await AICrawler(oracle, sleep=no_sleep).find_feature(self.login_screen(), "Profile")
        assert decision.action == ActionType.SWIPE
        assert "password" in oracle.prompts[0]
        assert "password" not in oracle.prompts[1]
        assert "auth field" in oracle.prompts[1]
        assert no_sleep.delays == []

    @pytest.mark.asyncio
    async def test_missing_target_is_invalid(self, no_sleep):
        bad = {"action": "tap", "reasoning": "x", "successProbability": 0.5, "alternativeActions": []}
        oracle = FakeOracle([bad, bad, bad])
        with pytest.raises(InvalidDecisionError):
            await AICrawler(oracle, sleep=no_sleep).find_feature(self.login_screen(), "Profile")
        assert oracle.calls == 3

    @pytest.mark.asyncio
    async def test_capacity_falls_back_to_swipe(self, no_sleep):
        oracle = FakeOracle([CapacityExceededError("too big")])
        decision = await AICrawler(oracle, sleep=no_sleep).find_feature(self.login_screen(), "Profile")
        assert decision.action == ActionType.SWIPE
        assert decision.success_probability.value == 0.5


class TestConvertAlternative:
    def test_type_alternative_gets_generated_text(self):
        screen = snapshot("form", [text_input("emailField")])
        decision = AICrawler(FakeOracle()).convert_alternative(AlternativeAction(ActionType.TYPE, "emailField"), screen)
        assert decision.action == ActionType.TYPE
        assert decision.text_to_type == "test@example.com"
        assert decision.success_probability.value == 0.5

    def test_tap_alternative(self):
        decision = AICrawler(FakeOracle()).convert_alternative(AlternativeAction(ActionType.TAP, "menu"), four_buttons())
        assert decision.target_element == "menu"
        assert decision.text_to_type is None
        assert "tap_menu" in decision.reasoning


class TestSanitize:
    def test_replacements(self):
        assert sanitize_prompt("Login with password and Credentials") == "Sign in with auth field and Access info"

    def test_any_case_is_replaced_keeping_its_case(self):
        assert sanitize_prompt("PASSWORD LogIn loginButton") == "AUTH FIELD Sign in sign inButton"


class TestTruncateHierarchy:
    def test_small_payload_unchanged(self):
        payload = json.dumps({"elements": [{"type": "button", "id": "ok"}]})
        assert truncate_hierarchy(payload, 3000) == payload

    def test_keeps_highest_priority_minimal_elements(self):
        elements = [
            {"type": "button", "interactive": True, "id": f"b{i}", "label": f"Button {i}", "priority": i, "extra": "x" * 200}
            for i in range(40)
        ]
        payload = json.dumps({"elements": elements, "screenType": "list"})

        truncated = json.loads(truncate_hierarchy(payload, 500))

        kept = truncated["elements"]
        assert len(kept) == 13
        assert [e["priority"] for e in kept[:2]] == [39, 38]
        assert all("extra" not in e for e in kept)
        assert truncated["screenType"] == "list"

    def test_retries_with_fewer_elements_when_estimate_overflows(self):
        elements = [{"type": "button", "id": f"b{i}", "label": "L" * 300, "priority": i} for i in range(40)]
        truncated = json.loads(truncate_hierarchy(json.dumps({"elements": elements}), 1000))
        assert len(truncated["elements"]) == 10

    def test_non_json_payload_is_cut_as_text(self):
        result = truncate_hierarchy("x" * 5000, 100)
        assert result.startswith("x" * 350)
        assert "x" * 351 not in result
        assert result.endswith("(content truncated to fit token limit)")
