import json

import pytest

from rekomendr.recommender import (
    BadModelOutput,
    Recommender,
    RecommenderUnavailable,
    build_user_prompt,
    parse_items,
    slugify,
)

from conftest import FIVE_ITEMS, FakeOpenAI


def test_recommend_returns_five_slugged_items():
    fake = FakeOpenAI()
    items = Recommender(client=fake, model="gpt-4o-mini").recommend("moody heist films", hints=["night"], category="movies")
    assert [it.id for it in items] == ["heat", "thief", "collateral", "drive", "sicario"]

    call = fake.chat.completions.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert call["response_format"] == {"type": "json_object"}
    assert call["messages"][0]["role"] == "system"
    assert "moody heist films" in call["messages"][1]["content"]
    assert "CATEGORY (optional): movies" in call["messages"][1]["content"]


def test_parse_items_rejects_short_answers():
    short = {"items": FIVE_ITEMS["items"][:4]}
    with pytest.raises(BadModelOutput):
        parse_items(json.dumps(short))


def test_parse_items_drops_incomplete_items():
    items = list(FIVE_ITEMS["items"])
    items[2] = {"id": "x", "title": "", "summary": "no title"}
    with pytest.raises(BadModelOutput):
        parse_items(json.dumps({"items": items}))


def test_parse_items_bad_json():
    with pytest.raises(BadModelOutput):
        parse_items("Sure! Here are some picks:")
    with pytest.raises(BadModelOutput):
        parse_items(json.dumps({"recommendations": []}))


def test_parse_items_caps_at_five():
    extra = {"items": FIVE_ITEMS["items"] + [{"id": "ronin", "title": "Ronin", "summary": "Car chases in Nice."}]}
    assert len(parse_items(json.dumps(extra))) == 5


def test_slugify():
    assert slugify("Mad Max: Fury Road!") == "mad-max-fury-road"
    assert slugify(None) == ""


def test_user_prompt_defaults():
    text = build_user_prompt("cozy books")
    assert "CONTEXT HINTS (optional):\nn/a" in text
    assert "REFINERS (optional): n/a" in text


def test_missing_key_is_unavailable():
    with pytest.raises(RecommenderUnavailable):
        Recommender(api_key=None).recommend("anything")


def test_client_error_is_unavailable():
    class Exploding:
        class chat:
            class completions:
                @staticmethod
                def create(**kwargs):
                    raise ConnectionError("boom")

    with pytest.raises(RecommenderUnavailable):
        Recommender(client=Exploding()).recommend("anything")
