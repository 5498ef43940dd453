import pytest

from export_assistant.schemas.conversation import Intent, IntentType, Message, MessageAuthor
from export_assistant.services.intent_classifier import IntentClassifier


def _history_message(intent_type: IntentType) -> Message:
    return Message(
        id="m-1",
        user_id="user-1",
        conversation_id="conv-1",
        author=MessageAuthor.USER,
        text="earlier message",
        intent=Intent(name=intent_type, confidence=0.8),
    )


class TestClassify:

    def test_find_buyers(self, classifier, context):
        intent = classifier.classify("find buyers", context)
        assert intent.name == IntentType.FIND_BUYERS
        assert intent.confidence > 0.5

    def test_gibberish_is_unknown(self, classifier, context):
        intent = classifier.classify("qwerty asdfgh", context)
        assert intent.name == IntentType.UNKNOWN
        assert intent.confidence < 0.3

    def test_profile_bonus_needs_lexical_evidence(self, classifier, context):
        # Beginners fit ONBOARDING_HELP, but a profile alone must not lift a message above the floor
        assert context.business_profile.experience_level == "beginner"
        assert classifier.classify("zzz", context).name == IntentType.UNKNOWN

    def test_compliance_outweighs_general_advice(self, classifier, context):
        intent = classifier.classify("What are the export compliance requirements?", context)
        assert intent.name == IntentType.COMPLIANCE_HELP
        assert "export compliance" in intent.parameters["matched_patterns"]
        assert intent.parameters["has_question"] is True

    def test_ties_go_to_catalog_order(self, classifier):
        assert classifier.classify("buyer market", None).name == IntentType.FIND_BUYERS

    def test_entities_attached(self, classifier, context):
        intent = classifier.classify("find buyers in Germany", context)
        assert [e.value for e in intent.entities] == ["Germany"]
        assert intent.parameters["entity_count"] == 1

    def test_first_message_with_single_hit_is_penalized(self, classifier):
        intent = classifier.classify("I need a guide", None)
        assert intent.name == IntentType.ONBOARDING_HELP
        assert intent.confidence == pytest.approx(0.9 * 0.3 * 0.8)

    def test_failure_degrades_to_unknown(self, context):
        class BrokenExtractor:
            def extract(self, text):
                raise RuntimeError("boom")

        intent = IntentClassifier(BrokenExtractor()).classify("find buyers", context)
        assert intent.name == IntentType.UNKNOWN
        assert intent.confidence == 0.0

    @pytest.mark.parametrize("text", [
        "", "?", "find buyers find buyers find buyers customer client importer distributor",
        "export compliance regulation certificate documentation legal requirement permit customs tariff",
        "hello", "Take me to the dashboard", "x" * 500,
    ])
    def test_confidence_bounded_and_intent_in_catalog(self, classifier, context, text):
        intent = classifier.classify(text, context)
        assert 0.0 <= intent.confidence <= 1.0
        assert intent.name in set(IntentType)


class TestScoring:

    def test_continuity_bonus(self, classifier, context):
        base = {s.intent: s.score for s in classifier.score_intents("statistics please", context)}
        context.append_message(_history_message(IntentType.MARKET_RESEARCH))
        boosted = {s.intent: s.score for s in classifier.score_intents("statistics please", context)}

        assert boosted[IntentType.MARKET_RESEARCH] == pytest.approx(base[IntentType.MARKET_RESEARCH] + 0.1)
        assert boosted[IntentType.FIND_BUYERS] == base[IntentType.FIND_BUYERS]

    def test_profile_bonus_with_evidence(self, classifier, context):
        scores = {s.intent: s.score for s in classifier.score_intents("I need a guide", context)}
        assert scores[IntentType.ONBOARDING_HELP] == pytest.approx(0.9 * 0.3 + 0.15)

    def test_find_buyers_profile_fit_requires_products(self, classifier, make_context):
        without = make_context()
        with_products = make_context(products=["textiles"])
        plain = classifier.score_intents("buyer", without)[0]
        fitted = classifier.score_intents("buyer", with_products)[0]
        assert fitted.score == pytest.approx(plain.score + 0.15)

    def test_scores_sorted_descending(self, classifier, context):
        scores = [s.score for s in classifier.score_intents("market price buyer", context)]
        assert scores == sorted(scores, reverse=True)


class TestAlternatives:

    def test_up_to_three_above_floor(self, classifier):
        suggestions = classifier.suggest_alternatives("buyer market price", None)
        assert [s.name for s in suggestions] == [
            IntentType.FIND_BUYERS, IntentType.MARKET_RESEARCH, IntentType.QUOTATION_HELP,
        ]

    def test_nothing_for_gibberish(self, classifier):
        assert classifier.suggest_alternatives("qwerty", None) == []

    def test_complexity(self, classifier):
        result = classifier.analyze_complexity("What about the tariff and duty?")
        assert result["complexity"] == "moderate"
        assert result["factors"] == ["technical_terms"]
        assert classifier.analyze_complexity("hi")["complexity"] == "simple"
