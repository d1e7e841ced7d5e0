"""
Source validation for grounding URLs.

Deduplicates sources by normalized base URL and classifies each one:

- Official: .edu domain that looks like the target school's
- Blocked: known low-quality aggregator (rankings, forums, news)
- Unverified: everything else

Domain matching is a heuristic. A legitimate school whose domain does not
share a significant word with its name is reported as Unverified; that
only lowers confidence and never rejects the candidate.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..constants import BLOCKED_DOMAINS, GROUNDING_REDIRECT_HOSTS, MAX_VALIDATED_SOURCES
from ..models.extraction import Source, SourceClassification, ValidatedSource
from ..utils.url_helpers import extract_domain, normalize_base_url, resolve_google_redirect

logger = logging.getLogger(__name__)

_SCHOOL_FILLER_RE = re.compile(r"university|college|school|of|the|business", re.IGNORECASE)
_DOMAIN_PREFIX_RE = re.compile(r"www\.|business\.|graduate\.|mba\.", re.IGNORECASE)
_DOMAIN_SUFFIX_RE = re.compile(r"\.(edu|com|org)$", re.IGNORECASE)
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_STOPWORDS = {"university", "college", "school", "the", "of", "and", "business"}

_CLASSIFICATION_ORDER = {
    SourceClassification.OFFICIAL: 0,
    SourceClassification.UNVERIFIED: 1,
    SourceClassification.BLOCKED: 2,
}


def domain_matches_school(domain: Optional[str], school: Optional[str]) -> bool:
    """
    Heuristic check that a domain belongs to the named school.

    Matches when a significant word of the school name (longer than 3
    characters, not a filler word) appears in the domain, or when the
    domain contains the first five letters of the school name with filler
    words removed.

    Examples:
        >>> domain_matches_school("kellogg.northwestern.edu", "Northwestern University")
        True
        >>> domain_matches_school("wharton.upenn.edu", "University of Pennsylvania")
        False
    """
    if not domain or not school:
        return False

    normalized_school = _NON_ALNUM_RE.sub("", _SCHOOL_FILLER_RE.sub("", school.lower()))
    normalized_domain = _NON_ALNUM_RE.sub(
        "", _DOMAIN_PREFIX_RE.sub("", _DOMAIN_SUFFIX_RE.sub("", domain.lower()))
    )

    significant_words = [
        _NON_ALNUM_RE.sub("", word)
        for word in school.lower().split()
        if len(word) > 3 and word not in _STOPWORDS
    ]
    if any(word and word in normalized_domain for word in significant_words):
        return True

    prefix = normalized_school[:5]
    return bool(prefix) and prefix in normalized_domain


def is_blocked_domain(domain: Optional[str]) -> bool:
    if not domain:
        return False
    domain = domain.lower()
    return any(domain == blocked or domain.endswith("." + blocked) for blocked in BLOCKED_DOMAINS)


def is_grounding_redirect(domain: Optional[str]) -> bool:
    return bool(domain) and any(domain == host or domain.endswith("." + host) for host in GROUNDING_REDIRECT_HOSTS)


def effective_domain(source: Source) -> Optional[str]:
    """
    Domain to classify a source by.

    Grounding redirect URLs hide the real site, so the domain (or a
    domain-shaped title) reported by grounding is used instead.
    """
    domain = extract_domain(source.url)
    if domain and not is_grounding_redirect(domain):
        return domain

    for hint in (source.domain, source.title):
        if hint and " " not in hint.strip() and "." in hint:
            hinted = extract_domain(hint.strip())
            if hinted:
                return hinted
    return domain


def classify_source(source: Source, school: str) -> SourceClassification:
    domain = effective_domain(source)
    if is_blocked_domain(domain):
        return SourceClassification.BLOCKED
    if domain and domain.endswith(".edu") and domain_matches_school(domain, school):
        return SourceClassification.OFFICIAL
    return SourceClassification.UNVERIFIED


@dataclass
class SourceReport:
    """Deduplicated, classified sources plus audit notes."""

    sources: list[ValidatedSource] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    duplicates_removed: int = 0

    @property
    def official_count(self) -> int:
        return sum(1 for s in self.sources if s.classification == SourceClassification.OFFICIAL)

    @property
    def has_official(self) -> bool:
        return self.official_count > 0

    @property
    def primary_url(self) -> Optional[str]:
        """First non-blocked source, Official sources ranked first."""
        for source in self.sources:
            if source.classification != SourceClassification.BLOCKED:
                return source.url
        return None


def validate_sources(
    sources: Iterable[Source],
    school: str,
    max_sources: Optional[int] = MAX_VALIDATED_SOURCES,
) -> SourceReport:
    """
    Deduplicate and classify sources for one school.

    Args:
        sources: Sources in grounding order
        school: Target school name
        max_sources: Keep at most this many after ranking (None keeps all)

    Returns:
        SourceReport with Official sources first, then Unverified, then Blocked
    """
    report = SourceReport()
    seen: set[str] = set()
    ranked: list[ValidatedSource] = []

    for source in sources:
        if not source.url:
            continue
        url = resolve_google_redirect(source.url.strip())
        key = normalize_base_url(url)
        if key in seen:
            report.duplicates_removed += 1
            continue
        seen.add(key)

        resolved = Source(url=url, title=source.title, domain=source.domain, raw_content=source.raw_content)
        classification = classify_source(resolved, school)
        domain = effective_domain(resolved)
        ranked.append(
            ValidatedSource(
                url=url,
                title=source.title,
                domain=domain,
                raw_content=source.raw_content,
                classification=classification,
            )
        )

        if classification == SourceClassification.BLOCKED:
            report.notes.append(f"Blocked low-quality source: {domain}")
        elif classification == SourceClassification.UNVERIFIED and domain and domain.endswith(".edu"):
            report.notes.append(f"Domain {domain} may not match target school \"{school}\" - verify manually")

    ranked.sort(key=lambda s: _CLASSIFICATION_ORDER[s.classification])
    report.sources = ranked[:max_sources] if max_sources is not None else ranked

    if report.official_count:
        report.notes.append(f"{report.official_count} of {len(report.sources)} sources are official .edu pages")
    else:
        report.notes.append("No official sources found; confidence lowered one step")

    if report.duplicates_removed:
        logger.debug(f"Removed {report.duplicates_removed} duplicate sources for {school}")

    return report
