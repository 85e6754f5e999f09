"""
Rule-based SEO checks.

Each check scores one area of a page snapshot from 0 to 100 without
calling the LLM. The checks run once per job, next to the AI category
scores, and feed a priority list of the weakest areas.
"""

import re
from typing import Callable

from seo_audit.models import PageSnapshot, Priority, PriorityItem, SeoCheck, SeoValidation

TITLE_MIN_LENGTH = 30
TITLE_MAX_LENGTH = 60
DESCRIPTION_MIN_LENGTH = 120
DESCRIPTION_MAX_LENGTH = 160

# Areas scoring below these thresholds enter the priority list
CRITICAL_BELOW = 50
HIGH_BELOW = 70

PLACEHOLDER_TITLES = ("untitled", "new page")

CALL_TO_ACTION_RE = re.compile(
    r"\b(learn more|discover|find out|get|try|start|book|contact|call|visit|shop|buy)\b",
    re.IGNORECASE,
)

IMPLEMENTATION_EFFORT = {
    "title_tag": "low",
    "meta_description": "low",
    "heading_structure": "medium",
    "content_length": "high",
    "image_optimization": "medium",
    "internal_linking": "medium",
    "technical_seo": "medium",
}


def check_title(snapshot: PageSnapshot) -> SeoCheck:
    title = snapshot.title.strip()
    check = SeoCheck(area="title_tag", score=0, measured={"length": len(title)})

    if not title:
        check.issues.append("Missing title tag")
        check.recommendations.append("Add a descriptive title tag with primary keywords")
        return check

    if len(title) < TITLE_MIN_LENGTH:
        check.issues.append(f"Title too short (less than {TITLE_MIN_LENGTH} characters)")
        check.recommendations.append("Expand title to 50-60 characters")
        check.score = 20
    elif len(title) > TITLE_MAX_LENGTH:
        check.issues.append(f"Title too long (more than {TITLE_MAX_LENGTH} characters)")
        check.recommendations.append("Shorten title to 50-60 characters to prevent truncation")
        check.score = 60
    else:
        check.score = 100

    lowered = title.lower()
    if any(word in lowered for word in PLACEHOLDER_TITLES):
        check.issues.append("Generic or placeholder title detected")
        check.recommendations.append("Replace with a specific, keyword-rich title")
        check.score = min(check.score, 30)

    return check


def check_meta_description(snapshot: PageSnapshot) -> SeoCheck:
    description = snapshot.meta_description.strip()
    check = SeoCheck(area="meta_description", score=0, measured={"length": len(description)})

    if not description:
        check.issues.append("Missing meta description")
        check.recommendations.append("Add a compelling meta description with a call to action")
        return check

    if len(description) < DESCRIPTION_MIN_LENGTH:
        check.issues.append(
            f"Meta description too short (less than {DESCRIPTION_MIN_LENGTH} characters)"
        )
        check.recommendations.append("Expand to 150-160 characters")
        check.score = 50
    elif len(description) > DESCRIPTION_MAX_LENGTH:
        check.issues.append(
            f"Meta description too long (more than {DESCRIPTION_MAX_LENGTH} characters)"
        )
        check.recommendations.append("Shorten to 150-160 characters to prevent truncation")
        check.score = 70
    else:
        check.score = 100

    if not CALL_TO_ACTION_RE.search(description):
        check.issues.append("Missing call to action in meta description")
        check.recommendations.append("Add a call to action to improve click-through rate")
        check.score = max(check.score - 20, 0)

    return check


def check_headings(snapshot: PageSnapshot) -> SeoCheck:
    hierarchy: dict[str, int] = {}
    for level, _ in snapshot.headings:
        key = f"h{level}"
        hierarchy[key] = hierarchy.get(key, 0) + 1
    check = SeoCheck(area="heading_structure", score=0, measured={"hierarchy": hierarchy})

    if not hierarchy:
        check.issues.append("No headings found")
        check.recommendations.append("Add a heading structure (H1, H2, H3) with target keywords")
        return check

    h1 = hierarchy.get("h1", 0)
    if h1 == 0:
        check.issues.append("Missing H1 tag")
        check.recommendations.append("Add a single H1 tag with the primary keyword")
        check.score = 0
    elif h1 > 1:
        check.issues.append(f"Multiple H1 tags found ({h1})")
        check.recommendations.append("Use only one H1 tag per page")
        check.score = 40
    else:
        check.score = 80

    has_h2 = hierarchy.get("h2", 0) > 0
    if not has_h2:
        check.issues.append("Missing H2 subheadings")
        check.recommendations.append("Add H2 subheadings to structure the content")
        check.score = max(check.score - 20, 0)
        if hierarchy.get("h3", 0) > 0:
            check.issues.append("H3 used without H2 (improper hierarchy)")
            check.recommendations.append("Keep the heading hierarchy H1 > H2 > H3")
            check.score = max(check.score - 15, 0)

    # A single H1 with H2 subheadings is a complete structure
    if check.score > 60:
        check.score = 100
    return check


def check_content_length(snapshot: PageSnapshot) -> SeoCheck:
    words = snapshot.word_count
    check = SeoCheck(area="content_length", score=100, measured={"word_count": words})

    if words < 300:
        check.issues.append("Insufficient content length (less than 300 words)")
        check.recommendations.append("Expand content to at least 1000 words for competitive keywords")
        check.score = 20
    elif words < 600:
        check.issues.append("Content length below competitive threshold (less than 600 words)")
        check.recommendations.append("Consider expanding content for better search visibility")
        check.score = 50
    elif words < 1000:
        check.issues.append("Content length below optimal range (less than 1000 words)")
        check.recommendations.append("Expand content to 1000+ words")
        check.score = 70
    return check


def check_images(snapshot: PageSnapshot) -> SeoCheck:
    total = snapshot.total_images
    missing = total - snapshot.images_with_alt
    check = SeoCheck(
        area="image_optimization",
        score=100,
        measured={"images": total, "missing_alt": missing},
    )

    if total == 0:
        # Not every page needs images
        check.issues.append("No images found")
        check.recommendations.append("Add relevant images with descriptive alt text")
        check.score = 50
    elif missing == 0:
        check.score = 100
    elif snapshot.images_with_alt > missing:
        check.issues.append(f"{missing} images missing alt text")
        check.recommendations.append("Add descriptive alt text to all images")
        check.score = 70
    else:
        check.issues.append(f"{missing} images missing alt text")
        check.recommendations.append("Add descriptive alt text to all images for accessibility and SEO")
        check.score = 30
    return check


def check_internal_links(snapshot: PageSnapshot) -> SeoCheck:
    internal = snapshot.internal_links
    external = snapshot.external_links
    check = SeoCheck(
        area="internal_linking",
        score=100,
        measured={"internal": internal, "external": external},
    )

    if internal + external == 0:
        check.issues.append("No links found on page")
        check.recommendations.append("Add relevant internal and external links")
        check.score = 30
    elif internal == 0:
        check.issues.append("No internal links found")
        check.recommendations.append("Add 2-5 contextual internal links to related pages")
        check.score = 40
    elif internal < 2:
        check.issues.append("Too few internal links")
        check.recommendations.append("Add more internal links to improve site navigation")
        check.score = 60
    elif internal > 10:
        check.issues.append("Too many internal links may dilute link equity")
        check.recommendations.append("Focus on 3-8 high-quality internal links")
        check.score = 80
    return check


def check_technical(snapshot: PageSnapshot) -> SeoCheck:
    """Viewport, canonical, lang and robots; each is a quarter of the score."""
    check = SeoCheck(area="technical_seo", score=0)
    passed = 0

    if snapshot.viewport:
        passed += 1
    else:
        check.issues.append("Missing viewport meta tag")
        check.recommendations.append("Add a viewport meta tag for mobile devices")

    if snapshot.canonical_url:
        passed += 1
    else:
        check.issues.append("Missing canonical URL")
        check.recommendations.append("Add a canonical URL to prevent duplicate content issues")

    if snapshot.lang:
        passed += 1
    else:
        check.issues.append("Missing language attribute")
        check.recommendations.append("Add a lang attribute to the html tag")

    robots = (snapshot.robots or "").lower()
    if "noindex" in robots:
        check.issues.append("Page is set to noindex")
        check.recommendations.append("Remove noindex if the page should be indexed")
    elif robots:
        passed += 1
    else:
        check.issues.append("Missing robots directive")
        check.recommendations.append("Add an appropriate robots meta tag")

    check.score = round(passed / 4 * 100)
    check.measured = {"passed": passed, "checks": 4}
    return check


CHECKS: tuple[Callable[[PageSnapshot], SeoCheck], ...] = (
    check_title,
    check_meta_description,
    check_headings,
    check_content_length,
    check_images,
    check_internal_links,
    check_technical,
)


def priority_matrix(checks: list[SeoCheck]) -> list[PriorityItem]:
    """Weak areas, critical ones first, in check order within a priority."""
    items = []
    for check in checks:
        if check.score < CRITICAL_BELOW:
            priority, impact = Priority.CRITICAL, "high"
        elif check.score < HIGH_BELOW:
            priority, impact = Priority.HIGH, "medium"
        else:
            continue
        items.append(PriorityItem(
            area=check.area,
            priority=priority,
            score=check.score,
            impact=impact,
            effort=IMPLEMENTATION_EFFORT.get(check.area, "medium"),
            issues=list(check.issues),
            recommendations=list(check.recommendations),
        ))
    rank = {Priority.CRITICAL: 0, Priority.HIGH: 1}
    return sorted(items, key=lambda item: rank[item.priority])


def validate_snapshot(snapshot: PageSnapshot) -> SeoValidation:
    """Run every rule-based check against ``snapshot``."""
    checks = [check(snapshot) for check in CHECKS]
    overall = round(sum(c.score for c in checks) / len(checks))
    return SeoValidation(checks=checks, overall_score=overall, priorities=priority_matrix(checks))
