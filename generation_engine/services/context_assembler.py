"""
Context assembler.

This module builds the generation context from a context selection:
style guides, previous posts, reference image descriptions and free
text, assembled into fixed-order sections and cached for a limited
time. It also shrinks oversized contexts to a token budget.
"""

import hashlib
import json
import logging
import math
import re
import time
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any, Union

from ..core.models.context import (
    ContextBundle,
    ContextConfig,
    IncludeElements,
    PreviousContentMode,
    PreviousContentSelection,
    ReferenceImageSelection,
    StyleGuideSelection
)
from ..repositories.base import NodeRepository


logger = logging.getLogger(__name__)

SECTION_SEPARATOR = "\n\n---\n\n"

STYLE_SECTION = "# Style Guidelines"
PREVIOUS_SECTION = "# Previous Content Examples"
VISUAL_SECTION = "# Visual References"
CUSTOM_SECTION = "# Additional Context"

ALL_POSTS_LIMIT = 50
VERTICAL_POSTS_LIMIT = 20
CONTENT_PREVIEW_LENGTH = 1000
POST_BLOCK_LIMIT = 2000
DEFAULT_MAX_TOKENS = 50000

PREVIOUS_BLOG_PATTERN = re.compile(r"## Previous Blog \d+[\s\S]*?(?=## Previous Blog \d+|\n\n---\n\n# |$)")
VISUAL_SECTION_PATTERN = re.compile(r"# Visual References[\s\S]*?(?=---|$)")
CUSTOM_SECTION_PATTERN = re.compile(r"# Additional Context[\s\S]*?(?=---|$)")

IMAGE_SECTIONS = (
    ("style", "Style References", "Style reference"),
    ("logo", "Brand Assets", "Brand logo"),
    ("persona", "Character References", "Character reference")
)


def estimate_tokens(text: Optional[str]) -> int:
    """Rough token estimate at four characters per token."""
    if not text or not isinstance(text, str):
        return 0
    return math.ceil(len(text) / 4)


class ContextAssembler:
    """
    Builds, caches and optimizes generation context.

    Any failure to read a source degrades to that section being absent.
    """

    def __init__(
        self,
        repository: NodeRepository,
        cache_size: int = 100,
        cache_ttl: float = 1800.0
    ):
        """
        Initialize context assembler.

        Args:
            repository: Source of style guides, posts and images
            cache_size: Maximum cached contexts
            cache_ttl: Cache entry lifetime in seconds
        """
        self.repository = repository
        self.cache_size = cache_size
        self.cache_ttl = cache_ttl
        self._cache: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self.cache_hits = 0
        self.cache_misses = 0

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce_config(config: Union[ContextConfig, Dict[str, Any], None]) -> Optional[ContextConfig]:
        if config is None:
            return None
        if isinstance(config, ContextConfig):
            return config
        return ContextConfig(**config)

    async def build_context(self, config: Union[ContextConfig, Dict[str, Any], None]) -> Optional[str]:
        """
        Build the assembled context string.

        Args:
            config: Context selection

        Returns:
            Assembled context, or None if nothing was selected or found
        """
        bundle = await self.build_bundle(config)
        return bundle.content if bundle else None

    async def build_bundle(self, config: Union[ContextConfig, Dict[str, Any], None]) -> Optional[ContextBundle]:
        """Build the context with its sections and accounting."""
        config = self._coerce_config(config)
        if config is None:
            return None

        cache_key = self.build_cache_key(config)
        cached = self._get_from_cache(cache_key)
        if cached is not None:
            return cached

        bundle = ContextBundle(cache_key=cache_key, built_at=datetime.now(timezone.utc))

        if config.style_guides:
            bundle.style_guides = await self._build_style_guides(config.style_guides)
        if config.previous_content:
            bundle.previous_content = await self._build_previous_content(config.previous_content)
        if config.reference_images:
            bundle.reference_images = await self._build_reference_images(config.reference_images)
        if config.custom_context:
            bundle.custom_context = config.custom_context

        bundle.content = self.assemble_context(bundle)
        bundle.estimated_tokens = estimate_tokens(bundle.content)
        bundle.expires_at = bundle.built_at + timedelta(seconds=self.cache_ttl)

        self._cache_context(cache_key, bundle)
        return bundle

    async def _build_style_guides(self, selection: StyleGuideSelection) -> Optional[str]:
        parts = []

        try:
            if selection.brand:
                guide = await self.repository.get_style_guide("brand")
                if guide:
                    parts.append(f"## Brand Guide\n{guide.get('content', '')}")

            for vertical in selection.vertical:
                guide = await self.repository.get_style_guide("vertical", vertical)
                if guide:
                    parts.append(f"## {vertical[:1].upper()}{vertical[1:]} Industry Guide\n{guide.get('content', '')}")

            for style_id in selection.writing_style:
                guide = await self.repository.get_style_guide_by_id(style_id)
                if guide:
                    parts.append(f"## {guide.get('name', style_id)} Style\n{guide.get('content', '')}")

            for persona_id in selection.persona:
                guide = await self.repository.get_style_guide_by_id(persona_id)
                if guide:
                    parts.append(f"## {guide.get('name', persona_id)} Persona\n{guide.get('content', '')}")

        except Exception as e:
            logger.error(f"Error building style guides context: {str(e)}")

        return "\n\n".join(parts) if parts else None

    async def _build_previous_content(self, selection: PreviousContentSelection) -> Optional[str]:
        mode = PreviousContentMode(selection.mode)
        if mode == PreviousContentMode.NONE:
            return None

        try:
            posts: List[Dict[str, Any]] = []
            if mode == PreviousContentMode.ALL:
                posts = await self.repository.get_all_blogs(limit=ALL_POSTS_LIMIT)
            elif mode == PreviousContentMode.VERTICAL and selection.vertical_filter:
                posts = await self.repository.get_blogs_by_vertical(selection.vertical_filter, limit=VERTICAL_POSTS_LIMIT)
            elif mode == PreviousContentMode.SELECTED and selection.items:
                posts = await self.repository.get_blogs_by_ids(selection.items)
        except Exception as e:
            logger.error(f"Error building previous content context: {str(e)}")
            return None

        if not posts:
            return None
        return self.format_previous_content(posts, selection.include_elements)

    def format_previous_content(self, posts: List[Dict[str, Any]], elements: IncludeElements) -> str:
        """Render posts as numbered blocks separated by rules."""
        blocks = []

        for index, post in enumerate(posts, start=1):
            parts = [f"## Previous Blog {index}"]

            if elements.titles and post.get("title"):
                parts.append(f"**Title:** {post['title']}")

            if elements.synopsis and post.get("synopsis"):
                parts.append(f"**Synopsis:** {post['synopsis']}")

            if elements.tags and post.get("tags"):
                tags = post["tags"]
                if isinstance(tags, (list, tuple)):
                    tags = ", ".join(str(tag) for tag in tags)
                parts.append(f"**Tags:** {tags}")

            if elements.content and post.get("content"):
                content = post["content"]
                if len(content) > CONTENT_PREVIEW_LENGTH:
                    content = content[:CONTENT_PREVIEW_LENGTH] + "..."
                parts.append(f"**Content Preview:**\n{content}")

            if elements.metadata and post.get("metadata"):
                parts.append(f"**Metadata:** {json.dumps(post['metadata'], default=str)}")

            blocks.append("\n\n".join(parts))

        return SECTION_SEPARATOR.join(blocks)

    async def _build_reference_images(self, selection: ReferenceImageSelection) -> Optional[str]:
        parts = []

        try:
            for image_type, label, fallback in IMAGE_SECTIONS:
                ids = getattr(selection, image_type)
                if not ids:
                    continue
                images = await self.repository.get_reference_images(image_type, ids)
                if images:
                    descriptions = ", ".join(img.get("description") or fallback for img in images)
                    parts.append(f"**{label}:** {descriptions}")
        except Exception as e:
            logger.error(f"Error building reference images context: {str(e)}")

        return "\n\n".join(parts) if parts else None

    def assemble_context(self, bundle: ContextBundle) -> Optional[str]:
        """Join the non-empty sections in their fixed order."""
        sections = [
            (STYLE_SECTION, bundle.style_guides),
            (PREVIOUS_SECTION, bundle.previous_content),
            (VISUAL_SECTION, bundle.reference_images),
            (CUSTOM_SECTION, bundle.custom_context)
        ]
        parts = [f"{heading}\n\n{body}" for heading, body in sections if body]
        return SECTION_SEPARATOR.join(parts) if parts else None

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------

    def optimize_context(self, context: Optional[str], max_tokens: int = DEFAULT_MAX_TOKENS) -> Optional[str]:
        """
        Shrink a context to a token budget.

        Stages, each applied only while still over budget: truncate long
        previous-post blocks, drop the visual and additional sections,
        then cut the whole string proportionally.
        """
        if not context:
            return None

        estimated = estimate_tokens(context)
        if estimated <= max_tokens:
            return context

        logger.warning(f"Context too large ({estimated} tokens), optimizing...")

        def truncate_block(match: "re.Match") -> str:
            block = match.group(0)
            if len(block) > POST_BLOCK_LIMIT:
                return block[:POST_BLOCK_LIMIT] + "\n\n[Content truncated...]"
            return block

        optimized = PREVIOUS_BLOG_PATTERN.sub(truncate_block, context)

        if estimate_tokens(optimized) > max_tokens:
            optimized = VISUAL_SECTION_PATTERN.sub("", optimized, count=1)
            optimized = CUSTOM_SECTION_PATTERN.sub("", optimized, count=1)

        current = estimate_tokens(optimized)
        if current > max_tokens:
            target_length = int(len(optimized) * (max_tokens / current))
            optimized = optimized[:target_length] + "\n\n[Context truncated due to size limits...]"

        return optimized

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_context_config(self, config: Union[ContextConfig, Dict[str, Any]]) -> List[str]:
        """Return configuration errors; empty when valid."""
        config = self._coerce_config(config)
        errors = []

        previous = config.previous_content if config else None
        if previous is not None:
            mode = PreviousContentMode(previous.mode)
            if mode == PreviousContentMode.SELECTED and not previous.items:
                errors.append("Selected mode requires items array")
            if mode == PreviousContentMode.VERTICAL and not previous.vertical_filter:
                errors.append("Vertical mode requires verticalFilter")

        return errors

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def build_cache_key(self, config: ContextConfig) -> str:
        """Cache key hashed over the whole selection, free text included."""
        key_string = json.dumps({
            "style_guides": config.style_guides.model_dump() if config.style_guides else {},
            "previous_content": config.previous_content.model_dump() if config.previous_content else {},
            "reference_images": config.reference_images.model_dump() if config.reference_images else {},
            "custom_context": config.custom_context
        }, sort_keys=True, default=str)
        key_hash = hashlib.md5(key_string.encode('utf-8')).hexdigest()
        return f"context:{key_hash}"

    def _get_from_cache(self, cache_key: str) -> Optional[ContextBundle]:
        cached = self._cache.get(cache_key)
        if cached is None:
            self.cache_misses += 1
            return None

        if time.monotonic() - cached["timestamp"] > self.cache_ttl:
            del self._cache[cache_key]
            self.cache_misses += 1
            return None

        self.cache_hits += 1
        return cached["bundle"].model_copy(deep=True)

    def _cache_context(self, cache_key: str, bundle: ContextBundle):
        if cache_key not in self._cache and len(self._cache) >= self.cache_size:
            self._cache.popitem(last=False)

        self._cache[cache_key] = {
            "bundle": bundle.model_copy(deep=True),
            "timestamp": time.monotonic()
        }

    def clear_cache(self):
        self._cache.clear()

    def get_context_stats(self) -> Dict[str, Any]:
        """Report cache occupancy and per-entry age."""
        now = time.monotonic()
        return {
            "cache_size": len(self._cache),
            "max_cache_size": self.cache_size,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "entries": [
                {
                    "key": key[:50] + "...",
                    "tokens": value["bundle"].estimated_tokens,
                    "age": now - value["timestamp"]
                }
                for key, value in self._cache.items()
            ]
        }
