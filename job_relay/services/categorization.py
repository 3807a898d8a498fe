"""
AI categorization of ingested content.

The categorizer turns (title, body) into a content type slug, a category
slug, AI metadata and custom attribute values. ``apply_categorization``
writes that result onto an asset: slugs are resolved to identifiers, AI
metadata is merged into the existing metadata, custom attributes are
stored when present.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Protocol

from anthropic import Anthropic
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from job_relay.entities.content_asset import ContentAsset
from job_relay.entities.content_taxonomy import ContentCategory, ContentType
from job_relay.repositories.content_asset_repo import ContentAssetRepository, TaxonomyRepository

logger = logging.getLogger(__name__)


class CategorizationResult(BaseModel):
    content_type_slug: str | None = None
    category_slug: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    custom_attributes: dict[str, Any] = Field(default_factory=dict)


class Categorizer(Protocol):
    def categorize(
        self,
        content: str,
        title: str,
        *,
        types: list[ContentType],
        categories: list[ContentCategory],
        content_type_slug: str | None = None,
    ) -> CategorizationResult | None:
        """Classify content; None when no classification could be made."""
        ...


def count_words(text: str) -> int:
    return len(text.split())


def _strip_fences(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        text = re.sub(r"^```\w*\n?", "", text)
        text = re.sub(r"\n?```\s*$", "", text)
    return text


def _taxonomy_lines(rows: list[ContentType] | list[ContentCategory]) -> str:
    lines = []
    for row in rows:
        line = f"- {row.slug}: {row.name}"
        if row.description:
            line += f" ({row.description})"
        lines.append(line)
    return "\n".join(lines)


SYSTEM_PROMPT = """You are a content classification engine. Analyze the given content and return a JSON object with categorization data.

Available content types (use the slug):
{types}

Available categories (use the slug):
{categories}
{type_hint}
Return ONLY valid JSON (no markdown fences, no extra text) with this exact shape:
{{
  "content_type_slug": "<slug>",
  "category_slug": "<slug>",
  "ai_tags": ["tag1", "tag2"],
  "ai_summary": "<2-3 sentence summary>",
  "ai_key_themes": ["theme1", "theme2"],
  "confidence": {{"content_type": <0.0-1.0>, "category": <0.0-1.0>}},
  "custom_attributes": {{}}
}}

Rules:
- ai_tags: 3-7 lowercase, hyphen-separated tags relevant to the content
- ai_key_themes: 2-5 high-level themes
- Pick the BEST matching type and category even if the fit isn't perfect"""


class AnthropicCategorizer:
    """Categorizer backed by the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-sonnet-4-20250514",
        max_chars: int = 4000,
    ):
        self._client = Anthropic(api_key=api_key)
        self._model = model
        self._max_chars = max_chars

    def _complete(self, system: str, user: str) -> str:
        response = self._client.messages.create(
            model=self._model,
            max_tokens=1024,
            temperature=0.2,
            system=system,
            messages=[{"role": "user", "content": user}],
        )
        for block in response.content:
            if getattr(block, "type", None) == "text":
                return block.text
        return ""

    def categorize(
        self,
        content: str,
        title: str,
        *,
        types: list[ContentType],
        categories: list[ContentCategory],
        content_type_slug: str | None = None,
    ) -> CategorizationResult | None:
        type_hint = ""
        if content_type_slug:
            type_hint = f"\nThe content type is already known: {content_type_slug}\n"
        system = SYSTEM_PROMPT.format(
            types=_taxonomy_lines(types),
            categories=_taxonomy_lines(categories),
            type_hint=type_hint,
        )
        body = content
        if len(body) > self._max_chars:
            body = body[: self._max_chars] + "..."

        raw = self._complete(system, f"Title: {title}\n\nContent:\n{body}")
        try:
            parsed = json.loads(_strip_fences(raw))
        except json.JSONDecodeError:
            logger.warning("Categorizer returned non-JSON output for %r", title)
            return None
        if not isinstance(parsed, dict):
            return None

        return CategorizationResult(
            content_type_slug=content_type_slug or parsed.get("content_type_slug"),
            category_slug=parsed.get("category_slug"),
            metadata={
                "ai_summary": parsed.get("ai_summary"),
                "ai_word_count": count_words(content),
                "ai_key_themes": parsed.get("ai_key_themes") or [],
                "ai_tags": parsed.get("ai_tags") or [],
                "ai_confidence": parsed.get("confidence") or {},
                "ai_categorized_at": datetime.now(timezone.utc).isoformat(),
            },
            custom_attributes=parsed.get("custom_attributes") or {},
        )


def categorize_asset(
    session: Session,
    categorizer: Categorizer,
    asset: ContentAsset,
    *,
    content_type_slug: str | None = None,
) -> CategorizationResult | None:
    """Run the categorizer for *asset* and apply the result (no commit)."""
    taxonomy = TaxonomyRepository(session)
    result = categorizer.categorize(
        asset.content_body or "",
        asset.title,
        types=taxonomy.active_types(),
        categories=taxonomy.active_categories(),
        content_type_slug=content_type_slug,
    )
    if result is not None:
        apply_categorization(session, asset, result)
    return result


def apply_categorization(
    session: Session, asset: ContentAsset, result: CategorizationResult
) -> None:
    """Write a categorization onto *asset*. Unknown slugs are left unresolved."""
    taxonomy = TaxonomyRepository(session)

    type_id = taxonomy.resolve_type_id(result.content_type_slug)
    if type_id:
        asset.content_type_id = type_id
    elif result.content_type_slug:
        logger.warning("Unknown content type slug %r", result.content_type_slug)

    category_id = taxonomy.resolve_category_id(result.category_slug)
    if category_id:
        asset.category_id = category_id
    elif result.category_slug:
        logger.warning("Unknown category slug %r", result.category_slug)

    ContentAssetRepository(session).merge_metadata(asset, result.metadata)
    if result.custom_attributes:
        asset.custom_attributes = result.custom_attributes

    logger.info(
        "Categorization applied to asset %s: type=%s, category=%s",
        asset.asset_id,
        result.content_type_slug,
        result.category_slug,
    )
