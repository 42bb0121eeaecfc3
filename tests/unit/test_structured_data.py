"""Unit tests for recipe_importer.structured_data module.

Tests JSON-LD, microdata and selector extraction plus the field helpers.
"""

import json

import pytest

from recipe_importer.structured_data import (
    METHOD_JSON_LD,
    METHOD_MICRODATA,
    METHOD_OPEN_GRAPH,
    extract_structured_recipe,
    flatten_instructions,
    node_types,
    parse_iso_duration,
    parse_keywords,
    parse_servings,
    score_recipe_node,
)


def page_with_json_ld(data) -> str:
    return (
        "<html><head><title>Page</title>"
        f'<script type="application/ld+json">{json.dumps(data)}</script>'
        "</head><body></body></html>"
    )


class TestFieldHelpers:
    """Tests for duration, servings, keyword and type helpers."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("PT1H30M", 90),
            ("PT45M", 45),
            ("P0DT2H", 120),
            ("PT90S", 2),
            ("30", 30),
            (15, 15),
            ("P2D", None),
            ("soon", None),
            (None, None),
        ],
    )
    def test_parse_iso_duration(self, value, expected) -> None:
        """ISO durations become minutes; out-of-range values are dropped."""
        assert parse_iso_duration(value) == expected

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("4", 4),
            ("Serves 6", 6),
            (["Makes a lot", "8 servings"], 8),
            (2, 2),
            ("500 cookies", None),
            ("some", None),
        ],
    )
    def test_parse_servings(self, value, expected) -> None:
        """Serving counts are read from recipeYield forms."""
        assert parse_servings(value) == expected

    def test_parse_keywords(self) -> None:
        """Comma-separated keywords become a lowercase set."""
        assert parse_keywords("Dinner, Easy ,vegan") == {"dinner", "easy", "vegan"}
        assert parse_keywords(["Soup"]) == {"soup"}
        assert parse_keywords(None) == set()

    def test_node_types_strips_prefix(self) -> None:
        """Vocabulary prefixes are removed from @type values."""
        assert node_types({"@type": ["schema:Recipe", "http://schema.org/Thing"]}) == {
            "Recipe",
            "Thing",
        }


class TestFlattenInstructions:
    """Tests for flatten_instructions."""

    def test_plain_string_split_on_newlines(self) -> None:
        """A string is split into one step per line."""
        assert flatten_instructions("Boil water.\n\nAdd pasta.") == ["Boil water.", "Add pasta."]

    def test_how_to_sections(self) -> None:
        """Steps nested in HowToSection items are flattened in order."""
        value = [
            {
                "@type": "HowToSection",
                "name": "Sauce",
                "itemListElement": [
                    {"@type": "HowToStep", "text": "Melt the butter."},
                    {"@type": "HowToStep", "text": "Whisk in flour."},
                ],
            },
            {"@type": "HowToStep", "text": "Pour over <b>pasta</b>."},
        ]
        assert flatten_instructions(value) == [
            "Melt the butter.",
            "Whisk in flour.",
            "Pour over pasta .",
        ]

    def test_short_steps_dropped(self) -> None:
        """Steps under three characters are ignored."""
        assert flatten_instructions(["ok", "Stir well."]) == ["Stir well."]


class TestScoreRecipeNode:
    """Tests for score_recipe_node."""

    def test_complete_node_scores_higher(self, json_ld_recipe) -> None:
        """A fuller node outranks a stub."""
        stub = {"@type": "Recipe", "name": "Pancakes"}
        # name 2 + 4 ingredients + 3 steps + prep, cook, yield
        assert score_recipe_node(json_ld_recipe) == 12
        assert score_recipe_node(stub) == 2


class TestJsonLd:
    """Tests for the JSON-LD path."""

    def test_complete_recipe(self, recipe_page_html: str) -> None:
        """A JSON-LD Recipe maps verbatim with method confidence 0.9."""
        result = extract_structured_recipe(recipe_page_html)

        assert result.method == METHOD_JSON_LD
        assert result.is_complete
        assert result.confidence == 0.9
        recipe = result.recipe
        assert recipe.title == "Classic Pancakes"
        assert [i.name for i in recipe.ingredients] == ["flour", "sugar", "milk", "egg"]
        assert recipe.ingredients[0].quantity == 1.5
        assert recipe.ingredients[0].unit == "cup"
        assert len(recipe.instructions) == 3
        assert recipe.prep_time == 10
        assert recipe.cook_time == 15
        assert recipe.servings == 4
        assert recipe.confidence == 0.9

    def test_graph_nesting(self, json_ld_recipe) -> None:
        """Recipe nodes inside @graph are found."""
        data = {
            "@context": "https://schema.org",
            "@graph": [{"@type": "WebPage", "name": "Home"}, json_ld_recipe],
        }
        result = extract_structured_recipe(page_with_json_ld(data))
        assert result.is_complete
        assert result.candidates == 1

    def test_best_candidate_chosen(self, json_ld_recipe) -> None:
        """The most complete of several Recipe nodes wins."""
        stub = {"@type": "Recipe", "name": "Teaser", "recipeIngredient": ["1 egg"]}
        result = extract_structured_recipe(page_with_json_ld([stub, json_ld_recipe]))
        assert result.candidates == 2
        assert result.recipe.title == "Classic Pancakes"

    def test_malformed_block_skipped(self, json_ld_recipe) -> None:
        """Invalid JSON in one block does not hide a valid one."""
        html = (
            '<html><head><script type="application/ld+json">{not json</script>'
            f'<script type="application/ld+json">{json.dumps(json_ld_recipe)}</script>'
            "</head></html>"
        )
        assert extract_structured_recipe(html).is_complete

    def test_partial_recipe_kept_as_evidence(self) -> None:
        """Without steps, the node is returned as partial evidence text."""
        data = {
            "@type": "Recipe",
            "name": "Mystery Cake",
            "recipeIngredient": ["2 cups flour", "1 cup sugar"],
        }
        result = extract_structured_recipe(page_with_json_ld(data))

        assert result.method == METHOD_JSON_LD
        assert not result.is_complete
        assert result.recipe is None
        assert "Ingredients:" in result.evidence_text
        assert "- 2 cups flour" in result.evidence_text

    def test_placeholder_name_uses_page_title(self, json_ld_recipe) -> None:
        """A placeholder name falls back to the page title."""
        json_ld_recipe["name"] = "Untitled"
        html = page_with_json_ld(json_ld_recipe).replace("<title>Page</title>", "<title>Crepes</title>")
        assert extract_structured_recipe(html).recipe.title == "Crepes"


class TestMicrodata:
    """Tests for the microdata path."""

    def test_microdata_recipe(self) -> None:
        """itemprop values inside a Recipe scope are mapped."""
        html = (
            '<html><body><div itemscope itemtype="https://schema.org/Recipe">'
            '<h1 itemprop="name">Lemonade</h1>'
            '<meta itemprop="prepTime" content="PT5M">'
            '<span itemprop="recipeIngredient">4 lemons</span>'
            '<span itemprop="recipeIngredient">1 cup sugar</span>'
            '<ol itemprop="recipeInstructions"><li>Squeeze the lemons.</li>'
            "<li>Stir in sugar and water.</li></ol>"
            "</div></body></html>"
        )
        result = extract_structured_recipe(html)

        assert result.method == METHOD_MICRODATA
        assert result.recipe.title == "Lemonade"
        assert result.recipe.prep_time == 5
        assert result.recipe.instructions == ["Squeeze the lemons.", "Stir in sugar and water."]


class TestSelectors:
    """Tests for the Open Graph and heading path."""

    def test_heading_sections(self, plain_page_html: str) -> None:
        """Lists after Ingredients and Method headings are extracted."""
        result = extract_structured_recipe(plain_page_html)

        assert result.method == METHOD_OPEN_GRAPH
        assert result.confidence == 0.8
        assert result.recipe.title == "Grandma's Soup"
        assert [i.name for i in result.recipe.ingredients] == ["tomatoes", "olive oil", "salt"]
        assert len(result.recipe.instructions) == 2

    def test_class_selectors_and_og_title(self) -> None:
        """Common class names and og:title are used."""
        html = (
            '<html><head><meta property="og:title" content="Quick Salad"></head><body>'
            '<ul class="ingredients"><li>1 cucumber</li><li>2 tomatoes</li></ul>'
            '<ol class="instructions"><li>Slice everything.</li><li>Toss together.</li></ol>'
            "</body></html>"
        )
        result = extract_structured_recipe(html)
        assert result.recipe.title == "Quick Salad"
        assert len(result.recipe.ingredients) == 2

    def test_nothing_found(self) -> None:
        """A page without any recipe markup yields no method."""
        result = extract_structured_recipe("<html><body><p>Hello</p></body></html>")
        assert result.method is None
        assert not result.is_complete
        assert result.evidence_text == ""
        assert result.confidence == 0.0
