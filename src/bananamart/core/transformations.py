"""Transformation catalog.

A transformation is a named image-edit instruction.  The catalog is static
configuration loaded from ``transformations.json``; the only runtime change
is the display order, which each user may customise.

Descriptor fields mirror the JSON file::

    {
      "title": "Line Art Coloring",
      "prompt": "Turn this image into clean black-and-white line art.",
      "emoji": "🖍️",
      "description": "Two passes: line art, then colors from a palette.",
      "is_multi_image": true,
      "is_two_step": true,
      "step_two_prompt": "Color the line art using the palette image.",
      "primary_uploader_title": "Photo",
      "secondary_uploader_title": "Palette"
    }

``prompt`` may be the sentinel ``"CUSTOM"``, in which case the user supplies
the instruction with each request.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from bananamart.core.errors import ValidationError

logger = logging.getLogger(__name__)

CUSTOM_PROMPT = "CUSTOM"


class Transformation(BaseModel):
    """Immutable transformation descriptor."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    title: str
    prompt: str
    emoji: str = ""
    description: str = ""
    is_multi_image: bool = False
    is_two_step: bool = False
    step_two_prompt: str | None = None
    primary_uploader_title: str | None = None
    primary_uploader_description: str | None = None
    secondary_uploader_title: str | None = None
    secondary_uploader_description: str | None = None

    @model_validator(mode="after")
    def _two_step_needs_second_prompt(self) -> Transformation:
        if self.is_two_step and not self.step_two_prompt:
            raise ValueError(f"Two-step transformation '{self.title}' needs a step_two_prompt")
        return self

    @property
    def is_custom(self) -> bool:
        return self.prompt == CUSTOM_PROMPT

    def resolve_prompt(self, custom_prompt: str | None = None) -> str:
        """Return the instruction to send for the first (or only) step.

        Raises:
            ValidationError: Custom transformation with an empty prompt.
        """
        if not self.is_custom:
            return self.prompt
        prompt = (custom_prompt or "").strip()
        if not prompt:
            raise ValidationError("Please enter a prompt describing the change you want to see.")
        return prompt


class TransformationCatalog(BaseModel):
    transformations: list[Transformation] = Field(default_factory=list)


def load_transformations(path: Path) -> list[Transformation]:
    """Load and validate the catalog file.

    Raises:
        FileNotFoundError: If *path* does not exist.
        pydantic.ValidationError: If an entry is malformed.
    """
    with open(path, encoding="utf-8") as handle:
        raw = json.load(handle)

    catalog = TransformationCatalog.model_validate(raw)
    titles = [t.title for t in catalog.transformations]
    if len(titles) != len(set(titles)):
        raise ValueError(f"Duplicate transformation titles in {path}")

    logger.info(f"Loaded {len(titles)} transformations from {path}")
    return catalog.transformations


def find_transformation(catalog: Iterable[Transformation], title: str) -> Transformation:
    """Look up a transformation by title.

    Raises:
        ValidationError: Unknown title.
    """
    for transformation in catalog:
        if transformation.title == title:
            return transformation
    raise ValidationError(f"Unknown transformation: {title}")


def order_transformations(
    catalog: list[Transformation], saved_titles: Iterable[str] | None
) -> list[Transformation]:
    """Apply a user's saved display order.

    Saved titles come first in their saved order; titles no longer in the
    catalog are dropped; catalog entries missing from the saved order are
    appended in catalog order.
    """
    if not saved_titles:
        return list(catalog)

    by_title = {t.title: t for t in catalog}
    ordered: list[Transformation] = []
    seen: set[str] = set()
    for title in saved_titles:
        if title in by_title and title not in seen:
            ordered.append(by_title[title])
            seen.add(title)

    ordered.extend(t for t in catalog if t.title not in seen)
    return ordered
