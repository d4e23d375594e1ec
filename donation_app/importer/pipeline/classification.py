"""
Classify free-text payment descriptions into donation buckets.

Rules are evaluated in a fixed priority order and the first match wins:

1. sponsorship  -- "Monthly Sponsorship Donation for <name>[,<name>...]"
2. general      -- blank text, "$N - General Monthly Donation", invoice numbers,
                   email addresses, bare digits, processor boilerplate
3. campaign     -- "Donation for Campaign <id>"
4. named other  -- anything else, kept as an ad-hoc project title

Classification is pure; callers create the entities.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Literal, Optional, Sequence

SPONSORSHIP_PATTERN = re.compile(r"Monthly Sponsorship Donation for (.+)", re.IGNORECASE)
GENERAL_MONTHLY_PATTERN = re.compile(r"\$\d+ - General Monthly Donation", re.IGNORECASE)
INVOICE_PATTERN = re.compile(r"Invoice [A-Z0-9-]+", re.IGNORECASE)
EMAIL_PATTERN = re.compile(r"\A[\w+\-.]+@[a-z\d\-]+(\.[a-z\d\-]+)*\.[a-z]+\Z", re.IGNORECASE)
DIGITS_PATTERN = re.compile(r"\A\d+\Z")
BOILERPLATE_PATTERNS = (
    re.compile(r"Subscription creation", re.IGNORECASE),
    re.compile(r"Captured via Payment app", re.IGNORECASE),
    re.compile(r"Payment for Stripe App", re.IGNORECASE),
)
CAMPAIGN_PATTERN = re.compile(r"Donation for Campaign (\d+)", re.IGNORECASE)

NAMED_TITLE_MAX_LENGTH = 100

Category = Literal["sponsorship", "general", "campaign", "named_other"]


@dataclass(frozen=True)
class Classification:
    category: Category
    child_names: tuple[str, ...] = ()
    campaign_id: str | None = None
    label: str | None = None
    description: str = ""

    @property
    def is_sponsorship(self) -> bool:
        return self.category == "sponsorship"


@dataclass(frozen=True)
class ClassificationRule:
    """A named rule; ``apply`` returns a classification or ``None`` to fall through."""

    name: str
    apply: Callable[[str], Optional[Classification]] = field(repr=False)


def extract_child_names(text: str) -> tuple[str, ...]:
    """Names after the sponsorship phrase, split on commas, trimmed, blanks dropped."""
    match = SPONSORSHIP_PATTERN.search(text or "")
    if not match:
        return ()
    return tuple(name.strip() for name in match.group(1).split(",") if name.strip())


def _sponsorship_rule(text: str) -> Classification | None:
    names = extract_child_names(text)
    if not names:
        # A matching phrase with only blank names is not a sponsorship.
        return None
    return Classification(category="sponsorship", child_names=names, description=text)


def is_general_donation(text: str | None) -> bool:
    if text is None or not text.strip():
        return True
    if GENERAL_MONTHLY_PATTERN.search(text) or INVOICE_PATTERN.search(text):
        return True
    stripped = text.strip()
    if EMAIL_PATTERN.match(stripped) or DIGITS_PATTERN.match(stripped):
        return True
    return any(pattern.search(text) for pattern in BOILERPLATE_PATTERNS)


def _general_rule(text: str) -> Classification | None:
    if is_general_donation(text):
        return Classification(category="general", description=text)
    return None


def _campaign_rule(text: str) -> Classification | None:
    match = CAMPAIGN_PATTERN.search(text)
    if not match:
        return None
    return Classification(category="campaign", campaign_id=match.group(1), description=text)


def _named_other_rule(text: str) -> Classification:
    return Classification(category="named_other", label=text[:NAMED_TITLE_MAX_LENGTH], description=text)


DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule("sponsorship", _sponsorship_rule),
    ClassificationRule("general", _general_rule),
    ClassificationRule("campaign", _campaign_rule),
    ClassificationRule("named_other", _named_other_rule),
)


def classify(text: str | None, *, rules: Sequence[ClassificationRule] = DEFAULT_RULES) -> Classification:
    """Return the first rule match for ``text``."""
    normalized = text or ""
    for rule in rules:
        result = rule.apply(normalized)
        if result is not None:
            return result
    return _named_other_rule(normalized)
