import pytest

from export_assistant.schemas.conversation import EntityType


class TestEntityExtractor:

    def test_countries_and_amount(self, extractor):
        entities = extractor.extract("Export to USA and Germany for $50,000")

        countries = [e.value for e in entities if e.type == EntityType.COUNTRY]
        amounts = [e for e in entities if e.type == EntityType.AMOUNT]
        assert countries == ["United States", "Germany"]
        assert len(amounts) == 1
        assert "50,000" in amounts[0].value

    def test_full_country_name_scores_higher_than_abbreviation(self, extractor):
        usa, germany = [e for e in extractor.extract("USA or Germany") if e.type == EntityType.COUNTRY]
        assert usa.confidence == 0.7
        assert germany.confidence == 0.9

    def test_amount_with_symbol_scores_higher(self, extractor):
        symbol = extractor.extract("budget of $1,200")[0]
        code = extractor.extract("budget of 1,200 USD")[0]
        assert symbol.type == code.type == EntityType.AMOUNT
        assert symbol.confidence == 0.95
        assert code.confidence == 0.8

    def test_amount_swallows_trailing_currency_code(self, extractor):
        entities = extractor.extract("about 2,500 USD")
        assert [e.type for e in entities] == [EntityType.AMOUNT]
        assert entities[0].value == "2,500 USD"

    def test_lowercase_us_is_not_a_country(self, extractor):
        entities = extractor.extract("please contact us today")
        assert all(e.type != EntityType.COUNTRY for e in entities)
        assert [e.type for e in entities] == [EntityType.DATE]

    def test_uppercase_abbreviation_is_a_country(self, extractor):
        entities = extractor.extract("Shipping to the US next week")
        assert entities[0].type == EntityType.COUNTRY
        assert entities[0].value == "United States"

    def test_labelled_tariff_code(self, extractor):
        entities = extractor.extract("HS code 8471.30.01 for computers")

        tariff = entities[0]
        assert tariff.type == EntityType.TARIFF_CODE
        assert tariff.value == "84713001"
        assert tariff.confidence == 0.95
        assert tariff.start == 0
        assert entities[1].type == EntityType.PRODUCT
        assert entities[1].value == "electronics"

    def test_bare_digit_run_tariff_code_scores_low(self, extractor):
        entities = extractor.extract("item 123456")
        assert entities[0].type == EntityType.TARIFF_CODE
        assert entities[0].confidence == 0.6

    def test_slash_date(self, extractor):
        entities = extractor.extract("ship by 12/05/2025")
        assert entities[0].type == EntityType.DATE
        assert entities[0].value == "12/05/2025"
        assert entities[0].confidence == 0.9

    @pytest.mark.parametrize("text", ["", None, 42])
    def test_no_input_yields_nothing(self, extractor, text):
        assert extractor.extract(text) == []

    @pytest.mark.parametrize("text", [
        "Export to USA and Germany for $50,000",
        "We sell steel and plastic tools to United Kingdom buyers, quote 12,000 EUR by 2025-01-31",
        "HS code 8471.30 textiles to India, Japan, china and UAE tomorrow",
        "100 dollars 200 euros 300 yen",
    ])
    def test_spans_sorted_and_disjoint(self, extractor, text):
        entities = extractor.extract(text)
        starts = [e.start for e in entities]
        assert starts == sorted(starts)
        for left, right in zip(entities, entities[1:]):
            assert left.end <= right.start

    def test_same_start_prefers_longer_span(self, extractor):
        entities = extractor.extract("United States of America")
        assert len(entities) == 1
        assert entities[0].end == len("United States of America")
