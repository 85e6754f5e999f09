"""Prompt catalog: stored templates and analysis-type resolution."""

from dataclasses import replace
from pathlib import Path
from typing import Iterable, Optional
import json
import logging
import uuid

from seo_audit.exceptions import ValidationError
from seo_audit.models import AnalysisType, CategoryPrompt, PromptTemplate

logger = logging.getLogger(__name__)

# Expected categories per analysis type, in display order.
ANALYSIS_CATEGORIES: dict[AnalysisType, tuple[str, ...]] = {
    AnalysisType.COMPLETE_SEO_AUDIT: ("technical", "content", "ux", "competitive"),
    AnalysisType.CONTENT_ANALYSIS: ("content",),
    AnalysisType.TECHNICAL_SEO: ("technical", "ux"),
    AnalysisType.COMPETITOR_ANALYSIS: ("competitive",),
    AnalysisType.LOCAL_SEO: ("local", "content"),
}

DEFAULT_TEMPLATES: tuple[dict, ...] = (
    {
        "name": "seo-technical-analysis",
        "category": "technical",
        "description": "Comprehensive technical SEO analysis",
        "body": (
            "Evaluate the technical SEO of this page.\n"
            "Consider: load timing, title and meta description presence and length, "
            "canonical URL, robots directives, heading hierarchy (exactly one H1), "
            "viewport meta for mobile, lang attribute and structured data blocks.\n"
            "Deduct points for each problem in proportion to its search impact."
        ),
    },
    {
        "name": "content-quality-review",
        "category": "content",
        "description": "Content quality and relevance assessment",
        "body": (
            "Evaluate the content quality and on-page optimization of this page.\n"
            "Consider: word count (thin content under 300 words), title and "
            "description relevance, heading structure and readability, and how "
            "well headings describe the content beneath them."
        ),
    },
    {
        "name": "competitive-analysis",
        "category": "competitive",
        "description": "Competitive positioning and opportunity analysis",
        "body": (
            "Assess how competitive this page is likely to be in search results.\n"
            "Consider: clarity of the value proposition in title and H1, content "
            "depth compared with typical ranking pages, Open Graph completeness for "
            "sharing, and external linking to authoritative sources."
        ),
    },
    {
        "name": "user-experience-audit",
        "category": "ux",
        "description": "User experience and usability assessment",
        "body": (
            "Assess the user experience signals of this page that affect SEO.\n"
            "Consider: image alt text coverage, viewport configuration, internal "
            "link count for navigation, heading order and load timing."
        ),
    },
    {
        "name": "local-seo-analysis",
        "category": "local",
        "description": "Local SEO optimization assessment",
        "body": (
            "Assess the page for local search visibility.\n"
            "Consider: presence of location information in title, headings and "
            "description, LocalBusiness structured data (JSON-LD blocks), and "
            "language targeting."
        ),
    },
)


def expected_categories(analysis_type: AnalysisType) -> tuple[str, ...]:
    """Categories a non-custom analysis type must produce."""
    if analysis_type == AnalysisType.CUSTOM:
        raise ValidationError("custom analyses take their category from the prompt")
    return ANALYSIS_CATEGORIES[analysis_type]


class PromptCatalog:
    """In-memory store of prompt templates keyed by id.

    Selection is a lookup on each template's explicit category tag.
    Updating a template replaces the record; jobs already running keep
    the CategoryPrompt copy they captured.
    """

    def __init__(
        self,
        templates: Optional[Iterable[PromptTemplate]] = None,
        analysis_categories: Optional[dict[AnalysisType, tuple[str, ...]]] = None,
    ):
        self._templates: dict[str, PromptTemplate] = {}
        self.analysis_categories = dict(analysis_categories or ANALYSIS_CATEGORIES)
        for template in templates or ():
            self._templates[template.id] = template

    @classmethod
    def with_defaults(cls) -> "PromptCatalog":
        catalog = cls()
        catalog.load_defaults()
        return catalog

    def load_defaults(self) -> int:
        """Add the built-in templates that are not already present by name.

        Returns:
            Number of templates added
        """
        existing = {t.name for t in self._templates.values()}
        added = 0
        for default in DEFAULT_TEMPLATES:
            if default["name"] in existing:
                continue
            self.add_template(
                name=default["name"],
                category=default["category"],
                body=default["body"],
                description=default["description"],
                is_default=True,
            )
            added += 1
        if added:
            logger.info(f"Loaded {added} default prompt templates")
        return added

    def add_template(
        self,
        name: str,
        category: str,
        body: str,
        description: str = "",
        is_default: bool = False,
        template_id: Optional[str] = None,
    ) -> PromptTemplate:
        """Create and store a new template.

        Raises:
            ValidationError: On empty fields, a duplicate name, or a duplicate id
        """
        if not name or not name.strip():
            raise ValidationError("Template name is required")
        if not category or not category.strip():
            raise ValidationError("Template category is required")
        if not body or not body.strip():
            raise ValidationError("Template body is required")
        if any(t.name == name for t in self._templates.values()):
            raise ValidationError(f"A template named {name!r} already exists")

        template_id = template_id or str(uuid.uuid4())
        if template_id in self._templates:
            raise ValidationError(f"A template with id {template_id!r} already exists")

        template = PromptTemplate(
            id=template_id,
            name=name.strip(),
            category=category.strip().lower(),
            body=body,
            is_default=is_default,
            description=description,
        )
        self._templates[template.id] = template
        return template

    def get_template(self, template_id: str) -> PromptTemplate:
        """Look up a template by id.

        Raises:
            ValidationError: If no such template exists
        """
        try:
            return self._templates[template_id]
        except KeyError:
            raise ValidationError(f"Prompt with ID {template_id} not found")

    def update_template(self, template_id: str, **changes) -> PromptTemplate:
        """Replace a template with updated fields.

        Accepted keys: name, category, body, description, is_active, is_default.
        """
        allowed = {"name", "category", "body", "description", "is_active", "is_default"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unknown template fields: {', '.join(sorted(unknown))}")

        current = self.get_template(template_id)
        if "category" in changes:
            changes["category"] = changes["category"].strip().lower()
        updated = replace(current, **changes)
        if not updated.body.strip() or not updated.name.strip() or not updated.category:
            raise ValidationError("Template name, category and body must not be empty")
        self._templates[template_id] = updated
        return updated

    def deactivate_template(self, template_id: str) -> PromptTemplate:
        return self.update_template(template_id, is_active=False)

    def delete_template(self, template_id: str) -> None:
        self.get_template(template_id)
        del self._templates[template_id]

    def list_templates(
        self,
        category: Optional[str] = None,
        active_only: bool = True,
    ) -> list[PromptTemplate]:
        """Templates ordered by category then name."""
        templates = [
            t for t in self._templates.values()
            if (category is None or t.category == category)
            and (t.is_active or not active_only)
        ]
        return sorted(templates, key=lambda t: (t.category, t.name))

    def search(
        self,
        term: str,
        category: Optional[str] = None,
        limit: int = 50,
    ) -> list[PromptTemplate]:
        """Case-insensitive search over active template names, descriptions and bodies."""
        needle = term.lower()
        matches = [
            t for t in self.list_templates(category=category)
            if needle in t.name.lower()
            or needle in t.description.lower()
            or needle in t.body.lower()
        ]
        return matches[:limit]

    def categories(self) -> dict[str, int]:
        """Active template count per category."""
        counts: dict[str, int] = {}
        for template in self.list_templates():
            counts[template.category] = counts.get(template.category, 0) + 1
        return dict(sorted(counts.items()))

    def _default_for(self, category: str) -> Optional[PromptTemplate]:
        """Pick the template serving ``category``: defaults first, then by name."""
        candidates = self.list_templates(category=category)
        if not candidates:
            return None
        candidates.sort(key=lambda t: (not t.is_default, t.name))
        return candidates[0]

    def resolve_prompts(
        self,
        analysis_type: AnalysisType,
        custom_prompt_id: Optional[str] = None,
    ) -> list[CategoryPrompt]:
        """Map an analysis type to one captured prompt per expected category.

        Raises:
            ValidationError: If a custom prompt id is missing, unknown or
                inactive, or a category has no active template
        """
        if analysis_type == AnalysisType.CUSTOM:
            if not custom_prompt_id:
                raise ValidationError("custom analysis requires a prompt id")
            template = self.get_template(custom_prompt_id)
            if not template.is_active:
                raise ValidationError(f"Prompt {custom_prompt_id} is not active")
            if not template.body.strip():
                raise ValidationError(f"Prompt {custom_prompt_id} has an empty body")
            return [CategoryPrompt.from_template(template)]

        prompts = []
        for category in self.analysis_categories[analysis_type]:
            template = self._default_for(category)
            if template is None:
                raise ValidationError(
                    f"No active prompt template for category {category!r} "
                    f"required by {analysis_type.value}"
                )
            prompts.append(CategoryPrompt.from_template(template))
        return prompts

    @classmethod
    def from_file(cls, path: str) -> "PromptCatalog":
        """Load templates from a JSON file of the form {"templates": [...]}.

        A missing file yields a catalog holding only the defaults.
        """
        catalog = cls()
        file_path = Path(path)
        if not file_path.exists():
            catalog.load_defaults()
            return catalog

        with open(file_path, 'r') as f:
            data = json.load(f)

        for raw in data.get("templates", []):
            template = PromptTemplate.from_dict(raw)
            catalog._templates[template.id] = template
        catalog.load_defaults()
        return catalog

    def save_to_file(self, path: str) -> None:
        templates = self.list_templates(active_only=False)
        with open(path, 'w') as f:
            json.dump({"templates": [t.to_dict() for t in templates]}, f, indent=2)
