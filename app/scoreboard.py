"""Heuristic score extraction from on-screen (OCR) scoreboard text.

Readings look like ``"ARG 0 2 POR"``, ``"ARG 0-2 POR"`` or, with a stray
period digit in front, ``"2 ARG 0 2 POR"``. Matchers are tried in order
from strictest to loosest and the first hit wins.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

DEFAULT_TEAM_TOKENS: Tuple[str, ...] = ("ARG", "ESP", "POR")

_WS = re.compile(r"\s+")
_ANY_NUMBER = re.compile(r"\d+")
_NUM = r"(?<!\d)(\d{1,2})(?!\d)"
_SEPARATED = re.compile(_NUM + r"\s*[- ]\s*" + _NUM)
_STANDALONE = re.compile(_NUM)

Matcher = Callable[[str], Optional[str]]


def normalize_text(text: Optional[str]) -> str:
    return _WS.sub(" ", str(text or "")).strip()


def _team_pattern(tokens: Sequence[str]) -> re.Pattern[str]:
    alt = "|".join(re.escape(t) for t in tokens if t)
    return re.compile(rf"(?:{alt})\D*?{_NUM}\D+?{_NUM}\D*?(?:{alt})", re.IGNORECASE)


def _score(a: str, b: str) -> str:
    return f"{a}-{b}"


def match_separated(text: str) -> Optional[str]:
    m = _SEPARATED.search(text)
    return _score(m.group(1), m.group(2)) if m else None


def match_first_two(text: str) -> Optional[str]:
    nums = _STANDALONE.findall(text)
    if len(nums) < 2:
        return None
    return _score(nums[0], nums[1])


@dataclass
class ScoreboardParser:
    team_tokens: Sequence[str] = DEFAULT_TEAM_TOKENS
    _team_re: re.Pattern[str] = field(init=False, repr=False)
    _team_gate: re.Pattern[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        tokens = tuple(t.strip() for t in self.team_tokens if t and t.strip())
        if not tokens:
            raise ValueError("team_tokens must not be empty")
        self.team_tokens = tokens
        self._team_re = _team_pattern(tokens)
        self._team_gate = re.compile("|".join(re.escape(t) for t in tokens), re.IGNORECASE)

    def match_teams(self, text: str) -> Optional[str]:
        m = self._team_re.search(text)
        return _score(m.group(1), m.group(2)) if m else None

    @property
    def matchers(self) -> List[Tuple[str, Matcher]]:
        return [
            ("teams", self.match_teams),
            ("separated", match_separated),
            ("first_two", match_first_two),
        ]

    def extract_score(self, text: Optional[str]) -> Optional[str]:
        s = normalize_text(text)
        if not s:
            return None
        for _, matcher in self.matchers:
            score = matcher(s)
            if score is not None:
                return score
        return None

    def is_candidate(self, text: Optional[str]) -> bool:
        """Gate for OCR readings: a team token plus at least two numbers."""
        s = str(text or "")
        return bool(self._team_gate.search(s)) and len(_ANY_NUMBER.findall(s)) >= 2


_default = ScoreboardParser()


def extract_score(text: Optional[str]) -> Optional[str]:
    return _default.extract_score(text)


def is_scoreboard_candidate(text: Optional[str]) -> bool:
    return _default.is_candidate(text)
