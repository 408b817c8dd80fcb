"""JSON-LD structured data validation.

Structured data is serialized server-side and embedded verbatim in a
``<script type="application/ld+json">`` tag. Objects are built from trusted
server data; the checks here are defense in depth, not an HTML sanitizer,
and must not be relied on for attacker-controlled free text.

Checks, in order:
1. Serialization (non-JSON values are rejected)
2. Pattern scan of the serialized string for script injection
3. ``@context`` must be https://schema.org
4. Nested string scan for script markers
5. Structural allow-list of schema.org types and property names
"""

import json
import re
from datetime import date
from typing import Any, Iterator, List, Optional, Tuple

from storefront.app.core.logging import get_logger

logger = get_logger(__name__)

SCHEMA_ORG_CONTEXT = "https://schema.org"

DANGEROUS_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"</script>", re.IGNORECASE), "closing script tag"),
    (re.compile(r"<script", re.IGNORECASE), "opening script tag"),
    (re.compile(r"javascript:", re.IGNORECASE), "javascript URI"),
    (re.compile(r"on\w+\s*=", re.IGNORECASE), "event handler attribute"),
    (re.compile(r"&#x?[0-9a-f]+;", re.IGNORECASE), "HTML entity"),
    (re.compile(r"&#\d+;", re.IGNORECASE), "numeric HTML entity"),
    (re.compile(r"\\x[0-9a-f]{2}", re.IGNORECASE), "hex escape"),
    (re.compile(r"\\u[0-9a-f]{4}", re.IGNORECASE), "unicode escape"),
    (re.compile(r"data:text/html", re.IGNORECASE), "HTML data URI"),
    (re.compile(r"vbscript:", re.IGNORECASE), "vbscript URI"),
    (re.compile(r"expression\s*\(", re.IGNORECASE), "CSS expression"),
    (re.compile(r"@import", re.IGNORECASE), "CSS import"),
]

# Rejected in every string value
SCRIPT_MARKERS = ("<script", "javascript:", "onerror", "onclick")

# Rejected unless the value belongs to a prose field
SCRIPT_WORDS = ("script", "javascript")
PROSE_FIELDS = frozenset({"description", "headline", "articleSection"})

ALLOWED_TYPES = frozenset({
    "AboutPage", "AggregateRating", "Answer", "Article", "Brand",
    "BreadcrumbList", "CollectionPage", "ContactPage", "ContactPoint",
    "EntryPoint", "FAQPage", "ImageObject", "ItemList", "ListItem", "Offer",
    "Organization", "Person", "PostalAddress", "Product", "ProfilePage",
    "Question", "SearchAction", "WebPage", "WebSite",
})

ALLOWED_PROPERTIES = frozenset({
    "@context", "@type", "@id",
    "name", "alternateName", "headline", "description", "articleSection",
    "url", "image", "logo", "sameAs", "inLanguage", "keywords",
    "author", "publisher", "creator", "seller", "brand",
    "datePublished", "dateModified", "foundingDate",
    "mainEntityOfPage", "mainEntity", "about",
    "contactPoint", "contactType", "email", "telephone", "areaServed",
    "availableLanguage", "address", "streetAddress", "addressLocality",
    "addressRegion", "postalCode", "addressCountry",
    "itemListElement", "numberOfItems", "position", "item",
    "offers", "price", "priceCurrency", "availability", "itemCondition",
    "sku", "category", "aggregateRating", "ratingValue", "reviewCount",
    "potentialAction", "target", "urlTemplate", "query-input",
    "acceptedAnswer", "text", "width", "height", "caption", "contentUrl",
})


def _iter_strings(value: Any, key: Optional[str] = None) -> Iterator[Tuple[Optional[str], str]]:
    """Yield (owning property, string) for every string nested in value."""
    if isinstance(value, str):
        yield key, value
    elif isinstance(value, dict):
        for k, v in value.items():
            yield from _iter_strings(v, k)
    elif isinstance(value, list):
        for item in value:
            yield from _iter_strings(item, key)


def _has_script_content(data: dict) -> bool:
    for key, value in _iter_strings(data):
        lowered = value.lower()
        if any(marker in lowered for marker in SCRIPT_MARKERS):
            return True
        if key not in PROSE_FIELDS and any(word in lowered for word in SCRIPT_WORDS):
            return True
    return False


def _structure_violation(value: Any) -> Optional[str]:
    """Return a description of the first non allow-listed element, if any."""
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str) or k not in ALLOWED_PROPERTIES:
                return f"unknown property {k!r}"
            if k == "@type":
                types = v if isinstance(v, list) else [v]
                for t in types:
                    if t not in ALLOWED_TYPES:
                        return f"unknown type {t!r}"
                continue
            problem = _structure_violation(v)
            if problem:
                return problem
    elif isinstance(value, list):
        for item in value:
            problem = _structure_violation(item)
            if problem:
                return problem
    elif value is not None and not isinstance(value, (str, int, float, bool)):
        return f"unsupported value type {type(value).__name__}"
    return None


def validate_and_escape_json_ld(data: Any) -> Optional[str]:
    """Validate structured data and return it as a compact JSON string.

    Args:
        data: Structured data object to validate

    Returns:
        Validated JSON string, or None if any check fails
    """
    try:
        json_string = json.dumps(
            data, ensure_ascii=False, separators=(",", ":"), allow_nan=False
        )
    except (TypeError, ValueError, RecursionError) as e:
        logger.error(f"JSON-LD validation failed: serialization error: {e}")
        return None

    for pattern, label in DANGEROUS_PATTERNS:
        if pattern.search(json_string):
            logger.error(
                f"JSON-LD validation failed: dangerous pattern detected ({label})",
                extra={"pattern": pattern.pattern},
            )
            return None

    if not isinstance(data, dict) or data.get("@context") != SCHEMA_ORG_CONTEXT:
        logger.error("JSON-LD validation failed: invalid schema.org context")
        return None

    try:
        suspicious = _has_script_content(data)
        problem = None if suspicious else _structure_violation(data)
    except RecursionError:
        logger.error("JSON-LD validation failed: nesting too deep")
        return None

    if suspicious:
        logger.error("JSON-LD validation failed: suspicious content in nested value")
        return None

    if problem:
        logger.error(f"JSON-LD validation failed: {problem}")
        return None

    return json_string


def build_contact_page_structured_data(
    base_url: str,
    date_published: str = "2024-01-01",
    date_modified: Optional[date] = None,
) -> dict:
    """Build the schema.org ContactPage object for the contact page."""
    modified = (date_modified or date.today()).isoformat()
    return {
        "@context": SCHEMA_ORG_CONTEXT,
        "@type": "ContactPage",
        "headline": "Contact & Support | WornVault",
        "description": (
            "Have a question, need support, or want to get in touch? Contact "
            "WornVault for assistance with your account, orders, or general inquiries."
        ),
        "author": {"@type": "Organization", "name": "WornVault"},
        "publisher": {"@type": "Organization", "name": "WornVault"},
        "datePublished": date_published,
        "dateModified": modified,
        "mainEntityOfPage": {"@type": "WebPage", "@id": f"{base_url}/contact"},
        "inLanguage": "en-US",
    }
