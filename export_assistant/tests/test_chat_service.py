import asyncio

import pytest

from export_assistant.core.exceptions import MessageValidationError
from export_assistant.schemas.analytics import EventKind
from export_assistant.schemas.conversation import IntentType, MessageAuthor
from export_assistant.schemas.response import QuickAction
from export_assistant.services.chat_service import ChatService
from export_assistant.services.response_generator import ERROR_TEXT


class BrokenGenerator:
    async def generate(self, intent, context, raw_text):
        raise RuntimeError("templates unavailable")


def _events(analytics, user_id, kind):
    return [e for e in analytics.events.get(user_id, ()) if e.kind == kind]


class TestProcessMessage:

    async def test_full_flow(self, chat_service, analytics, personalization, context_service):
        result = await chat_service.process_message("u1", "find buyers in Germany")

        response = result["response"]
        assert result["message"].intent.name == IntentType.FIND_BUYERS
        assert "search-germany" in [a.id for a in response.quick_actions]
        assert response.navigation_hint.params == {"country": "Germany"}

        context = await context_service.get_context("u1", result["conversation_id"])
        assert [m.author for m in context.history] == [MessageAuthor.USER, MessageAuthor.ASSISTANT]
        assert context.history[1].id == response.id
        assert "intent_find_buyers" in context.current_session.actions_performed

        assert analytics.message_count("u1") == 1
        assert len(_events(analytics, "u1", EventKind.RESPONSE_GENERATED)) == 1
        assert personalization.get_pattern("u1").stat_for(IntentType.FIND_BUYERS).frequency == 1
        assert response.id in chat_service.interactions

    async def test_conversation_id_is_kept(self, chat_service):
        first = await chat_service.process_message("u1", "hello there")
        second = await chat_service.process_message("u1", "find buyers")
        assert second["conversation_id"] == first["conversation_id"]

    async def test_current_page_recorded(self, chat_service, context_service):
        result = await chat_service.process_message("u1", "market data", current_page="market-research")
        context = await context_service.get_context("u1", result["conversation_id"])
        assert context.current_session.current_page == "market-research"
        assert context.current_session.pages_visited[-1] == "market-research"

    @pytest.mark.parametrize("text", ["", "   ", "<script>alert(1)</script>", "a" * 5001])
    async def test_invalid_input_rejected(self, chat_service, analytics, text):
        with pytest.raises(MessageValidationError):
            await chat_service.process_message("u1", text)
        assert analytics.message_count("u1") == 0

    async def test_markup_stripped_before_classification(self, chat_service):
        result = await chat_service.process_message("u1", "<b>find buyers</b>")
        assert result["message"].text == "find buyers"

    async def test_feedback_prompt_on_third_message(self, chat_service):
        prompts = []
        for text in ("find buyers", "market data", "compliance rules"):
            result = await chat_service.process_message("u1", text, conversation_id="c1")
            prompts.append(result["feedback"]["should_collect"])
        assert prompts == [False, False, True]

    async def test_generator_failure_yields_error_reply(self, context_service, classifier, personalization,
                                                        analytics, config):
        service = ChatService(context_service, classifier, BrokenGenerator(), personalization, analytics, config)
        result = await service.process_message("u1", "find buyers")
        assert result["response"].text == ERROR_TEXT
        assert result["response"].quick_actions[0].id == "retry-message"

    async def test_messages_for_one_user_keep_arrival_order(self, chat_service):
        texts = [f"find buyers number {i}" for i in range(5)]
        await asyncio.gather(*(chat_service.process_message("u1", t, conversation_id="c1") for t in texts))

        history = await chat_service.history("u1", "c1")
        assert [m.text for m in history if m.author == MessageAuthor.USER] == texts
        assert len(history) == 10


class TestFeedback:

    async def test_matched_feedback_teaches_without_recounting(self, chat_service, analytics, personalization):
        result = await chat_service.process_message("u1", "find buyers")
        outcome = await chat_service.submit_feedback("u1", result["response"].id, 2, False, "wrong country")

        assert outcome["matched"] is True
        assert outcome["intent"] == IntentType.FIND_BUYERS
        stat = personalization.get_pattern("u1").stat_for(IntentType.FIND_BUYERS)
        assert stat.frequency == 1
        assert stat.success_rate == 0.5
        assert analytics.response_accuracy("u1").intent_accuracy == {"FIND_BUYERS": 0.0}

    async def test_unmatched_feedback_still_counts(self, chat_service, analytics):
        outcome = await chat_service.submit_feedback("u1", "no-such-reply", 5, True)

        assert outcome["matched"] is False
        metrics = analytics.response_accuracy("u1")
        assert metrics.helpful_responses == 1
        assert metrics.intent_accuracy == {}

    async def test_feedback_on_someone_elses_reply_is_unmatched(self, chat_service):
        result = await chat_service.process_message("u1", "find buyers")
        outcome = await chat_service.submit_feedback("u2", result["response"].id, 5, True)
        assert outcome["matched"] is False

    async def test_rating_out_of_range(self, chat_service):
        with pytest.raises(ValueError):
            await chat_service.submit_feedback("u1", "m", 9, True)


class TestQuickActions:

    async def test_navigate_moves_session(self, chat_service, context_service, analytics):
        action = QuickAction(id="compliance-guide", label="Compliance Guide", action="navigate",
                             parameters={"page": "compliance"})
        response = await chat_service.handle_quick_action("u1", action, "c1")

        assert response.navigation_hint.page == "compliance"
        assert "compliance section" in response.text
        context = await context_service.get_context("u1", "c1")
        assert context.current_session.current_page == "compliance"

        [navigation] = _events(analytics, "u1", EventKind.NAVIGATION)
        assert navigation.payload["from_page"] == "dashboard"
        assert navigation.payload["trigger"] == "assistant"
        assert len(_events(analytics, "u1", EventKind.ACTION_CLICKED)) == 1

    async def test_search_offers_refinement(self, chat_service):
        action = QuickAction(id="search-germany", label="Explore Germany", action="search",
                             parameters={"country": "Germany"})
        response = await chat_service.handle_quick_action("u1", action)

        assert response.text.startswith("I'll help you search for Germany.")
        assert response.quick_actions[0].id == "refine-search"
        assert response.quick_actions[0].parameters == {"country": "Germany", "refined": True}

    async def test_create_and_analyze(self, chat_service):
        create = QuickAction(id="q", label="Use Template", action="create", parameters={"type": "quotation-template"})
        analyze = QuickAction(id="a", label="Trade Statistics", action="analyze", parameters={})
        assert "create a new quotation-template" in (await chat_service.handle_quick_action("u1", create)).text
        assert "analyze the market data" in (await chat_service.handle_quick_action("u1", analyze)).text

    async def test_unsupported_action(self, chat_service):
        action = QuickAction(id="x", label="Export CSV", action="export")
        response = await chat_service.handle_quick_action("u1", action)
        assert response.text == 'I\'ll help you with "Export CSV". This feature is being implemented.'


class TestSupportingOperations:

    async def test_history_sorted(self, chat_service):
        await chat_service.process_message("u1", "find buyers", conversation_id="c1")
        await chat_service.process_message("u1", "market data", conversation_id="c1")
        history = await chat_service.history("u1", "c1")
        assert len(history) == 4
        assert [m.timestamp for m in history] == sorted(m.timestamp for m in history)

    async def test_suggest_intents(self, chat_service):
        result = await chat_service.suggest_intents("u1", "buyer market price")
        # A profile with no target markets tips the tie towards market research
        assert [s.name for s in result["suggestions"]] == [
            IntentType.MARKET_RESEARCH, IntentType.FIND_BUYERS, IntentType.QUOTATION_HELP,
        ]
        assert result["complexity"]["complexity"] in {"simple", "moderate", "complex"}

    async def test_track_task(self, chat_service, analytics):
        result = await chat_service.track_task("u1", "quotation", True, 42.0)
        assert result["task_id"]
        metrics = analytics.task_completion("u1")
        assert metrics.completed_tasks == 1
        assert metrics.average_time_to_complete == 42.0
