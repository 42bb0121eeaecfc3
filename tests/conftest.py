"""Pytest configuration and fixtures for recipe_importer tests.

Shared fixtures: environment isolation, scripted model and fetcher fakes,
sample recipes and pages, and a factory builder wiring the fakes together.
"""

import json
import sys
from pathlib import Path
from typing import Any

import pytest

# Add src directory to Python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove all RECIPE_IMPORTER_* environment variables."""
    import os

    for key in list(os.environ.keys()):
        if key.startswith("RECIPE_IMPORTER_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def mock_env(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Provide a helper to set RECIPE_IMPORTER_* environment variables.

    Example:
        def test_env_loading(mock_env):
            mock_env["MODEL"] = "gpt-4o"
            # RECIPE_IMPORTER_MODEL is now set
    """

    class EnvSetter(dict[str, str]):
        def __setitem__(self, key: str, value: str) -> None:
            super().__setitem__(key, value)
            monkeypatch.setenv(f"RECIPE_IMPORTER_{key}", value)

    return EnvSetter()


@pytest.fixture
def default_config():
    """Create a default ImportConfig instance."""
    from recipe_importer.config import ImportConfig

    return ImportConfig()


# ============================================================================
# Collaborator Fakes
# ============================================================================


class ScriptedChat:
    """Chat service that replays canned responses in order.

    Entries may be strings, dicts (JSON-encoded on the way out) or exceptions
    (raised). Every call's messages are kept in ``calls``.
    """

    def __init__(self, responses: list[Any] | None = None) -> None:
        self.responses = list(responses or [])
        self.calls: list[list[dict[str, str]]] = []

    async def complete(self, messages: list[dict[str, str]]) -> str:
        self.calls.append(messages)
        if not self.responses:
            raise AssertionError("ScriptedChat ran out of responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response


class StaticFetcher:
    """HTML fetcher serving pages from a dict; unknown URLs raise ExtractionError."""

    def __init__(self, pages: dict[str, str] | None = None) -> None:
        self.pages = dict(pages or {})
        self.calls: list[tuple[str, str]] = []

    async def fetch(self, url: str, user_agent: str) -> str:
        from recipe_importer.exceptions import ExtractionError

        self.calls.append((url, user_agent))
        if url not in self.pages:
            raise ExtractionError("HTTP 404 fetching page", url=url, status_code=404)
        return self.pages[url]


async def no_sleep(delay: float) -> None:
    """Sleep replacement so retry tests run instantly."""
    return None


@pytest.fixture
def scripted_chat():
    """Factory for ScriptedChat instances."""
    return ScriptedChat


@pytest.fixture
def static_fetcher():
    """Factory for StaticFetcher instances."""
    return StaticFetcher


# ============================================================================
# Recipe Fixtures
# ============================================================================


@pytest.fixture
def sample_recipe_data() -> dict[str, Any]:
    """A valid model response for a simple recipe."""
    return {
        "title": "Tomato Soup",
        "ingredients": [
            {"name": "tomatoes", "quantity": 4, "unit": None},
            {"name": "olive oil", "quantity": 2, "unit": "tbsp"},
            {"name": "salt", "quantity": 1, "unit": "tsp"},
        ],
        "instructions": [
            "Chop the tomatoes and warm the olive oil.",
            "Simmer tomatoes for 20 minutes and season with salt.",
        ],
        "prepTime": 10,
        "cookTime": 20,
        "servings": 4,
        "confidence": 0.9,
    }


@pytest.fixture
def sample_recipe(sample_recipe_data):
    """The sample recipe as a CanonicalRecipe."""
    from recipe_importer.ai_parser import normalize_recipe_data

    return normalize_recipe_data(sample_recipe_data, confidence=0.9)


@pytest.fixture
def sample_recipe_text() -> str:
    """Pasted recipe text matching ``sample_recipe_data``."""
    return (
        "Tomato Soup\n\n"
        "Ingredients:\n"
        "- 4 tomatoes\n"
        "- 2 tablespoons olive oil\n"
        "- 1 tsp salt\n\n"
        "Instructions:\n"
        "1. Chop the tomatoes and warm the olive oil.\n"
        "2. Simmer tomatoes for 20 minutes and season with salt.\n"
    )


# ============================================================================
# HTML Fixtures
# ============================================================================


JSON_LD_RECIPE = {
    "@context": "https://schema.org",
    "@type": "Recipe",
    "name": "Classic Pancakes",
    "recipeIngredient": ["1 ½ cups flour", "2 tbsp sugar", "1 cup milk", "1 egg"],
    "recipeInstructions": [
        {"@type": "HowToStep", "text": "Whisk the flour and sugar together."},
        {"@type": "HowToStep", "text": "Add milk and egg, then stir until smooth."},
        {"@type": "HowToStep", "text": "Cook on a hot griddle until golden."},
    ],
    "prepTime": "PT10M",
    "cookTime": "PT15M",
    "recipeYield": "4 servings",
}


@pytest.fixture
def json_ld_recipe() -> dict[str, Any]:
    """A schema.org Recipe node."""
    return json.loads(json.dumps(JSON_LD_RECIPE))


@pytest.fixture
def recipe_page_html(json_ld_recipe) -> str:
    """A page embedding ``json_ld_recipe`` in a JSON-LD script block."""
    return (
        "<html><head><title>Pancakes | Example Kitchen</title>"
        '<script type="application/ld+json">'
        + json.dumps(json_ld_recipe)
        + "</script></head><body><h1>Classic Pancakes</h1></body></html>"
    )


@pytest.fixture
def plain_page_html() -> str:
    """A page with recipe prose but no structured data."""
    return (
        "<html><head><title>Grandma's Soup</title></head><body>"
        "<nav>Home | Recipes | About</nav>"
        "<article><h1>Grandma's Soup</h1>"
        "<p>This soup has been in our family for years and is perfect on a cold day.</p>"
        "<h2>Ingredients</h2><ul><li>4 tomatoes</li><li>2 tbsp olive oil</li>"
        "<li>1 tsp salt</li></ul>"
        "<h2>Method</h2><p>Chop the tomatoes and warm the olive oil.</p>"
        "<p>Simmer tomatoes for 20 minutes and season with salt.</p>"
        "</article><footer>Copyright</footer></body></html>"
    )


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest.fixture
def make_factory():
    """Build a ServiceFactory with fake collaborators and no real network clients."""
    from recipe_importer.config import ImportConfig
    from recipe_importer.services import ServiceFactory

    def build(chat=None, fetcher=None, ocr=None, stt=None, media=None, **config: Any):
        config.setdefault("parse_retry_delay", 0.0)
        config.setdefault("use_reader_services", False)
        return ServiceFactory(
            config=ImportConfig(**config),
            chat_override=chat or ScriptedChat(),
            fetcher_override=fetcher or StaticFetcher(),
            ocr_override=ocr,
            stt_override=stt,
            media_override=media,
        )

    return build
