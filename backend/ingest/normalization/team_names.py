"""
Team name normalization for fixture matching.

normalize_team_name() maps a raw team string to a comparable form:
lower-case, diacritics stripped, separators collapsed, club affixes
dropped, then known aliases substituted. The output is only ever compared,
never stored or shown. It is idempotent: normalizing a normalized name
returns it unchanged.
"""
from __future__ import annotations

import re
import unicodedata
from typing import Mapping, Optional

# Letters NFKD does not decompose into base + combining mark
_TRANSLITERATE = str.maketrans({
    "ı": "i",
    "ø": "o",
    "ß": "ss",
    "æ": "ae",
    "œ": "oe",
    "đ": "d",
    "ð": "d",
    "ł": "l",
    "þ": "th",
})

_SEPARATORS = re.compile(r"[\W_]+")

# Legal-form and club-type tokens that carry no identity
CLUB_AFFIXES: frozenset[str] = frozenset({
    "fc", "cf", "sc", "sk", "fk", "ac", "as", "afc", "cd", "ud", "sd", "ss",
    "sv", "bk", "if", "ik", "nk", "hnk", "gnk", "kv", "krc", "rc", "rcd",
    "ca", "cs", "ad", "club", "calcio", "sporting club", "futbol", "kulubu",
    "spor kulubu", "jk", "ofk", "vfb", "vfl", "tsv", "fsv", "bsc",
})

# Abbreviations and rebrands, keyed by their pre-alias normalized form
DEFAULT_ALIASES: dict[str, str] = {
    "psg": "paris saint germain",
    "paris sg": "paris saint germain",
    "man utd": "manchester united",
    "man united": "manchester united",
    "man city": "manchester city",
    "spurs": "tottenham hotspur",
    "tottenham": "tottenham hotspur",
    "wolves": "wolverhampton wanderers",
    "nottm forest": "nottingham forest",
    "inter": "inter milan",
    "internazionale": "inter milan",
    "atletico": "atletico madrid",
    "atl madrid": "atletico madrid",
    "bayern": "bayern munich",
    "bayern munchen": "bayern munich",
    "bvb": "borussia dortmund",
    "dortmund": "borussia dortmund",
    "gladbach": "borussia monchengladbach",
    "leverkusen": "bayer leverkusen",
    "bayer 04 leverkusen": "bayer leverkusen",
    "koln": "1 koln",
    "cologne": "1 koln",
    "sporting cp": "sporting lisbon",
    "sporting": "sporting lisbon",
    "benfica": "sl benfica",
    "gs": "galatasaray",
    "fb": "fenerbahce",
    "bjk": "besiktas",
    "ts": "trabzonspor",
    "ajax amsterdam": "ajax",
    "psv eindhoven": "psv",
    "red star belgrade": "crvena zvezda",
    "zenit st petersburg": "zenit",
}

_COMPOUND_AFFIXES = tuple(sorted((a for a in CLUB_AFFIXES if " " in a), key=len, reverse=True))


def strip_diacritics(text: str) -> str:
    """Remove accents (Atlético -> Atletico, Fenerbahçe -> Fenerbahce)."""
    decomposed = unicodedata.normalize("NFKD", text.translate(_TRANSLITERATE))
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def _strip_affixes(tokens: list[str]) -> list[str]:
    while True:
        padded = f" {' '.join(tokens)} "
        for compound in _COMPOUND_AFFIXES:
            padded = padded.replace(f" {compound} ", " ")
        kept = [t for t in padded.split() if t not in CLUB_AFFIXES]
        if kept == tokens:
            return kept
        tokens = kept


def _base_form(name: str) -> str:
    text = strip_diacritics(name.lower()).lower()
    text = _SEPARATORS.sub(" ", text).strip()
    if not text:
        return ""
    # A name made only of affixes ("FC") keeps its tokens
    return " ".join(_strip_affixes(text.split()) or text.split())


def build_alias_table(extra: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """
    Normalize keys and values and resolve chains, so every value is a
    fixed point of the pipeline and never itself a key.
    """
    raw = dict(DEFAULT_ALIASES)
    if extra:
        raw.update(extra)

    table: dict[str, str] = {}
    for key, value in raw.items():
        k, v = _base_form(key), _base_form(value)
        if k and v and k != v:
            table[k] = v

    resolved: dict[str, str] = {}
    for key, target in table.items():
        seen = {key}
        while target in table and target not in seen:
            seen.add(target)
            target = table[target]
        if target in seen:
            # Alias cycle: every member is dropped
            continue
        resolved[key] = target
    return resolved


_DEFAULT_TABLE = build_alias_table()


def normalize_team_name(name: str, aliases: Optional[Mapping[str, str]] = None) -> str:
    """Canonical comparable form of a team name; pass a table from build_alias_table() to extend aliases."""
    if not name:
        return ""
    base = _base_form(name)
    table = _DEFAULT_TABLE if aliases is None else aliases
    return table.get(base, base)
