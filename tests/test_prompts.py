"""Tests for prompt construction and budget parsing."""

import pytest

from trip_assistant.services.prompts import (
    build_classification_prompt,
    build_recommendation_prompt,
    extract_budget,
)


@pytest.mark.parametrize("text,expected", [
    ("我想去东京旅游，预算30000日元", 30000),
    ("5000块能玩什么", 5000),
    ("预算大概是 8000 左右", 8000),
    ("东京夜景巡航推荐", None),
    ("", None),
])
def test_extract_budget(text, expected):
    """First matching budget pattern wins."""
    assert extract_budget(text) == expected


def test_classification_prompt_is_deterministic():
    """The classifier instruction embeds the query verbatim."""
    prompt = build_classification_prompt("东京晴空塔门票")

    assert prompt == build_classification_prompt("东京晴空塔门票")
    assert "东京晴空塔门票" in prompt
    assert 'only answer "yes" or "no"' in prompt


def test_recommendation_prompt_lists_every_product(catalog):
    """Every catalog id is enumerated in the grounding section."""
    products = catalog.get_all_products()
    prompt = build_recommendation_prompt(products, 30000, "三日游")

    for product in products:
        assert f"Product ID: {product.id}" in prompt
    assert f"Our company provides the following {len(products)} Tokyo tourism products" in prompt
    assert "User Budget: ¥30000" in prompt
    assert "User Request: 三日游" in prompt


def test_recommendation_prompt_keeps_streaming_contract(catalog):
    """Marker grammar, one-per-line, atomicity and no-reasoning rules are present."""
    prompt = build_recommendation_prompt(catalog.get_all_products(), None, "plan")

    assert "User Budget: Not specified" in prompt
    assert "Each [PRODUCT:ProductID] must be on its own line" in prompt
    assert "There must be blank lines before and after product IDs" in prompt
    assert "Product tags cannot be split and must be output completely" in prompt
    assert "without showing any thinking process" in prompt


def test_recommendation_prompt_tolerates_braces(catalog):
    """User text with format braces is inserted literally."""
    prompt = build_recommendation_prompt(catalog.get_all_products(), None, "{weird} query")

    assert 'user request "{weird} query"' in prompt


def test_recommendation_prompt_keeps_zero_budget(catalog):
    """A parsed budget of zero is still a budget."""
    assert extract_budget("预算0元") == 0

    prompt = build_recommendation_prompt(catalog.get_all_products(), 0, "free things")
    assert "User Budget: ¥0" in prompt
