# recommender.py
#
# Prompt in, five recommendation cards out.
# One chat completion in JSON mode; anything that is not exactly five usable
# {id, title, summary} items is rejected rather than padded.
#
from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, List, Optional

from openai import OpenAI
from pydantic import BaseModel


logger = logging.getLogger(__name__)

ITEMS_PER_ANSWER = 5


class RecommenderUnavailable(RuntimeError):
    pass


class BadModelOutput(RuntimeError):
    pass


class RecItem(BaseModel):
    id: str
    title: str
    summary: str


def build_system_prompt() -> str:
    return (
        "You are Rekomendr, a concise tastemaker. Return five high-confidence recommendations "
        "that feel personal and useful.\n"
        "\n"
        "Style:\n"
        " - One punchy sentence per item (max ~22 words), like a friend with taste.\n"
        " - No spoilers. Prefer vibe, cast, premise, or why it fits the request.\n"
        " - Prefer recent titles when the user hints \"newer\"; otherwise mix timeless and modern.\n"
        " - No repeated titles; no obvious top-10 lists unless the user asks for popular picks.\n"
        " - If the request is vague, infer a coherent theme and commit.\n"
        "\n"
        "Output JSON ONLY, schema:\n"
        "{\"items\": [{\"id\": \"slug\", \"title\": \"Title\", \"summary\": \"...\"}, ...]}\n"
        " - Exactly 5 items.\n"
        " - id: URL-safe slug of the title (lowercase, dashes).\n"
    )


def build_user_prompt(
    prompt: str,
    hints: Optional[List[str]] = None,
    category: Optional[str] = None,
    refiners: Optional[List[str]] = None,
) -> str:
    return "\n\n".join([
        f"USER REQUEST:\n{prompt.strip()}",
        f"CONTEXT HINTS (optional):\n{', '.join(hints) if hints else 'n/a'}",
        f"CATEGORY (optional): {category or 'unknown'}",
        f"REFINERS (optional): {', '.join(refiners) if refiners else 'n/a'}",
        "GOAL:\nReturn 5 items the user is likely to love. Keep each summary crisp and "
        "specific (why this fits). Output STRICT JSON as per the schema.",
    ])


def slugify(value: Any) -> str:
    s = re.sub(r"[^a-z0-9]+", "-", str(value or "").lower())
    return s.strip("-")


def parse_items(raw: Optional[str]) -> List[RecItem]:
    try:
        data = json.loads(raw or "")
    except Exception:
        raise BadModelOutput(f"Model JSON decode failed. body={raw!r}")
    if not isinstance(data, dict) or not isinstance(data.get("items"), list):
        raise BadModelOutput("Model output has no items list.")

    cleaned: List[RecItem] = []
    for it in data["items"][:ITEMS_PER_ANSWER]:
        if not isinstance(it, dict):
            continue
        item = RecItem(
            id=slugify(it.get("id")),
            title=str(it.get("title") or "").strip(),
            summary=str(it.get("summary") or "").strip(),
        )
        if item.id and item.title and item.summary:
            cleaned.append(item)

    if len(cleaned) != ITEMS_PER_ANSWER:
        raise BadModelOutput(f"Expected {ITEMS_PER_ANSWER} usable items, got {len(cleaned)}.")
    return cleaned


class Recommender:
    def __init__(self, api_key: Optional[str] = None, model: str = "gpt-4o-mini", client: Any = None) -> None:
        self.model = model
        self._client = client
        self._api_key = api_key

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise RecommenderUnavailable("Missing OPENAI_API_KEY")
            self._client = OpenAI(api_key=self._api_key)
        return self._client

    def recommend(
        self,
        prompt: str,
        hints: Optional[List[str]] = None,
        category: Optional[str] = None,
        refiners: Optional[List[str]] = None,
    ) -> List[RecItem]:
        client = self.client
        started = time.time()
        try:
            completion = client.chat.completions.create(
                model=self.model,
                temperature=0.6,
                max_tokens=600,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": build_system_prompt()},
                    {"role": "user", "content": build_user_prompt(prompt, hints, category, refiners)},
                ],
            )
        except Exception as e:
            raise RecommenderUnavailable(f"Model error: {e!r}") from e

        latency_ms = int((time.time() - started) * 1000)
        logger.info("recs model=%s latency=%sms", self.model, latency_ms)
        return parse_items(completion.choices[0].message.content)

