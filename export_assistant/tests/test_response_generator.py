import random

import pytest

from export_assistant.schemas.conversation import Entity, EntityType, Intent, IntentType
from export_assistant.schemas.response import DataVisualization
from export_assistant.services.response_generator import (
    ERROR_TEXT, FALLBACK_TEXTS, ResponseGenerator, load_response_templates,
)


def _entity(entity_type: EntityType, value: str, start: int = 0) -> Entity:
    return Entity(type=entity_type, value=value, confidence=0.9, start=start, end=start + len(value))


def _intent(name: IntentType, *entities: Entity) -> Intent:
    return Intent(name=name, confidence=0.9, entities=list(entities))


class StubDataService:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = 0

    async def build_visualization(self, intent, context):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def templates():
    return load_response_templates()


class TestGenerate:

    async def test_beginner_gets_most_explanatory_text(self, generator, context, templates):
        response = await generator.generate(_intent(IntentType.FIND_BUYERS), context, "find buyers")
        assert response.text == templates[IntentType.FIND_BUYERS].texts[0]

    async def test_advanced_gets_most_direct_text(self, generator, make_context, templates):
        context = make_context(experience_level="advanced")
        response = await generator.generate(_intent(IntentType.QUOTATION_HELP), context, "quote")
        assert response.text == templates[IntentType.QUOTATION_HELP].texts[-1]

    async def test_intermediate_selection_uses_injected_rng(self, make_context, templates):
        context = make_context(experience_level="intermediate")
        generator = ResponseGenerator(rng=random.Random(3))
        expected = random.Random(3).choice(templates[IntentType.COMPLIANCE_HELP].texts)
        response = await generator.generate(_intent(IntentType.COMPLIANCE_HELP), context, "compliance")
        assert response.text == expected

    async def test_entity_actions_navigation_and_clarifying_question(self, generator, context):
        intent = _intent(IntentType.FIND_BUYERS, _entity(EntityType.COUNTRY, "Germany"))
        response = await generator.generate(intent, context, "find buyers in Germany")

        assert [a.id for a in response.quick_actions] == [
            "open-buyer-discovery", "filter-by-country", "search-germany",
        ]
        assert response.quick_actions[-1].label == "Explore Germany"
        assert response.navigation_hint.page == "buyer-discovery"
        assert response.navigation_hint.params == {"country": "Germany"}
        assert response.follow_up_questions[-1] == "What products are you working with?"
        assert len(response.follow_up_questions) == 3

    async def test_follow_ups_capped_at_three(self, generator, context):
        response = await generator.generate(_intent(IntentType.MARKET_RESEARCH), context, "market research")
        assert response.follow_up_questions == [
            "Are you looking for import/export data?",
            "Do you need competitor analysis?",
            "Which countries are you targeting?",
        ]

    async def test_quick_actions_capped_at_four(self, generator, context):
        intent = _intent(
            IntentType.FIND_BUYERS,
            _entity(EntityType.COUNTRY, "Germany", 0),
            _entity(EntityType.COUNTRY, "Japan", 10),
            _entity(EntityType.PRODUCT, "textiles", 20),
        )
        response = await generator.generate(intent, context, "buyers")
        assert len(response.quick_actions) == 4

    async def test_same_country_twice_gives_one_action(self, generator, context):
        intent = _intent(
            IntentType.FIND_BUYERS,
            _entity(EntityType.COUNTRY, "United States", 0),
            _entity(EntityType.COUNTRY, "United States", 20),
        )
        response = await generator.generate(intent, context, "buyers in USA or America")
        ids = [a.id for a in response.quick_actions]
        assert ids == ["open-buyer-discovery", "filter-by-country", "search-united-states"]

    async def test_no_navigation_for_unmapped_intent(self, generator, context):
        response = await generator.generate(_intent(IntentType.ONBOARDING_HELP), context, "help")
        assert response.navigation_hint is None
        assert response.data_visualization is None

    async def test_unknown_intent_falls_back(self, generator, context):
        response = await generator.generate(Intent(name=IntentType.UNKNOWN, confidence=0.0), context, "qwerty")
        assert response.text in FALLBACK_TEXTS
        assert [a.id for a in response.quick_actions] == ["browse-features", "contact-support"]

    async def test_unexpected_error_becomes_technical_difficulty(self, generator):
        response = await generator.generate(_intent(IntentType.FIND_BUYERS), None, "find buyers")
        assert response.text == ERROR_TEXT
        assert response.quick_actions[0].id == "retry-message"


class TestVisualization:

    async def test_attached_for_data_intents(self, context):
        chart = DataVisualization(type="chart", data=[{"country": "Germany"}], title="Market Analysis")
        data_service = StubDataService(result=chart)
        generator = ResponseGenerator(data_service=data_service, rng=random.Random(1))

        response = await generator.generate(_intent(IntentType.MARKET_RESEARCH), context, "market data")
        assert response.data_visualization == chart

    async def test_not_requested_when_intent_needs_no_data(self, context):
        data_service = StubDataService(result=DataVisualization(type="table"))
        generator = ResponseGenerator(data_service=data_service, rng=random.Random(1))

        await generator.generate(_intent(IntentType.COMPLIANCE_HELP), context, "compliance")
        assert data_service.calls == 0

    async def test_provider_failure_omits_visualization(self, context, templates):
        generator = ResponseGenerator(data_service=StubDataService(error=RuntimeError("down")), rng=random.Random(1))
        response = await generator.generate(_intent(IntentType.FIND_BUYERS), context, "find buyers")
        assert response.data_visualization is None
        assert response.text == templates[IntentType.FIND_BUYERS].texts[0]


class TestFormat:

    def test_html_is_escaped(self):
        response = ResponseGenerator.error_response().model_copy(update={"text": "<b>Hi</b> & bye"})
        html = ResponseGenerator.format_response(response, "html")
        assert html.startswith("<p>&lt;b&gt;Hi&lt;/b&gt; &amp; bye</p>")
        assert 'data-action="retry-message"' in html

    def test_markdown_lists_actions_and_questions(self):
        markdown = ResponseGenerator.format_response(ResponseGenerator.error_response(), "markdown")
        assert "**Quick Actions:**\n- Try Again\n- Contact Support" in markdown
        assert "**You might also ask:**" in markdown

    def test_plain_text(self):
        response = ResponseGenerator.error_response()
        assert ResponseGenerator.format_response(response) == response.text
