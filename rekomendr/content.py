# content.py
#
# Static content: canned nudges and per-vertical seed lists shown to guests.
#
from __future__ import annotations

import random
import re
from typing import Dict, List, Optional


VERTICALS = ("movies", "tv", "wine", "books")

NUDGES: Dict[str, List[str]] = {
    "movies": [
        "Okay, enough rom-coms... how about an adventure?",
        "Too many explosions? Let's try something quieter.",
        "You've seen enough Oscar bait. Want a guilty pleasure pick?",
    ],
    "tv": [
        "Enough crime drama, let's laugh instead.",
        "Binge alert! Maybe something lighter this time?",
        "Reality check: how about some unscripted fun?",
    ],
    "wine": [
        "Cabernet overload? Let's swirl into something new.",
        "You've been in France all night... how about Italy?",
        "Dry spell? Maybe something a little sweeter.",
    ],
    "books": [
        "Plot twist: switch genres?",
        "Enough heavy reading, let's grab something breezy.",
        "Trade mystery for inspiration?",
    ],
}

# (vertical, history pattern, forced nudge index)
_HISTORY_RULES = [
    ("movies", re.compile(r"rom.?com|romantic"), 0),
    ("tv", re.compile(r"crime|detective|cop"), 0),
    ("wine", re.compile(r"cabernet|\bcab\b"), 0),
]


def pick_nudge(vertical: Optional[str], history: Optional[List[str]] = None, rng: Optional[random.Random] = None) -> str:
    v = vertical if vertical in NUDGES else "movies"
    pool = NUDGES[v]
    text = " ".join(history or []).lower()
    for rule_vertical, pattern, idx in _HISTORY_RULES:
        if v == rule_vertical and pattern.search(text):
            return pool[idx]
    return (rng or random).choice(pool)


SEEDS: Dict[str, List[Dict[str, str]]] = {
    "movies": [
        {"id": "casablanca", "title": "Casablanca", "year": "1942",
         "blurb": "Classic romance and intrigue in WWII Morocco, with unforgettable lines and timeless chemistry."},
        {"id": "parasite", "title": "Parasite", "year": "2019",
         "blurb": "Bong Joon-ho's genre-bending film about class tension, sharp wit, and shocking twists."},
        {"id": "madmax-furyroad", "title": "Mad Max: Fury Road", "year": "2015",
         "blurb": "A relentless, visually stunning action spectacle that redefined blockbuster filmmaking."},
        {"id": "spirited-away", "title": "Spirited Away", "year": "2001",
         "blurb": "Hayao Miyazaki's magical coming-of-age story, brimming with heart and imagination."},
        {"id": "zodiac", "title": "Zodiac", "year": "2007",
         "blurb": "David Fincher's chilling, obsessive chronicle of the Zodiac killer investigation."},
    ],
    "tv": [
        {"id": "succession", "title": "Succession", "year": "2018-2023",
         "blurb": "Darkly funny and brutally sharp drama about a dysfunctional media dynasty."},
        {"id": "better-call-saul", "title": "Better Call Saul", "year": "2015-2022",
         "blurb": "A slow-burn prequel to Breaking Bad, mixing legal drama and moral collapse."},
        {"id": "the-wire", "title": "The Wire", "year": "2002-2008",
         "blurb": "Gritty, layered look at Baltimore through cops, dealers, and institutions."},
        {"id": "dark", "title": "Dark", "year": "2017-2020",
         "blurb": "German sci-fi mystery weaving time travel and family secrets into an intricate puzzle."},
        {"id": "the-office", "title": "The Office", "year": "2005-2013",
         "blurb": "Lovably awkward mockumentary sitcom about everyday chaos in a paper company."},
    ],
    "wine": [
        {"id": "cali-cab", "title": "California Cabernet Sauvignon",
         "blurb": "Bold and fruit-forward with ripe blackberry and cassis; smooth oak finish."},
        {"id": "sancerre", "title": "Sancerre Sauvignon Blanc",
         "blurb": "Crisp, mineral-driven white from the Loire Valley, with citrus and flinty notes."},
        {"id": "rioja-crianza", "title": "Rioja Crianza",
         "blurb": "Balanced Spanish red with bright cherry fruit and subtle vanilla from oak aging."},
        {"id": "pinot-noir", "title": "Oregon Pinot Noir",
         "blurb": "Elegant and silky with red berry flavors and earthy undertones; a versatile pairing wine."},
        {"id": "aussie-shiraz", "title": "Barossa Valley Shiraz",
         "blurb": "Big, spicy Australian red bursting with blackberry, pepper, and mocha notes."},
    ],
    "books": [
        {"id": "midnight-library", "title": "The Midnight Library", "year": "2020",
         "blurb": "Matt Haig's moving tale of regrets, possibilities, and choosing to live fully."},
        {"id": "educated", "title": "Educated", "year": "2018",
         "blurb": "Tara Westover's memoir of resilience and self-invention, from survivalist roots to academia."},
        {"id": "dune", "title": "Dune", "year": "1965",
         "blurb": "Frank Herbert's epic of politics, prophecy, and ecology on the desert planet Arrakis."},
        {"id": "circe", "title": "Circe", "year": "2018",
         "blurb": "Madeline Miller's lyrical retelling of Greek myth from the witch Circe's perspective."},
        {"id": "atomic-habits", "title": "Atomic Habits", "year": "2018",
         "blurb": "James Clear's practical framework for building better habits and breaking bad ones."},
    ],
}


def seeds_for(vertical: Optional[str]) -> List[Dict[str, str]]:
    return [dict(s) for s in SEEDS.get((vertical or "").strip().lower(), [])]
