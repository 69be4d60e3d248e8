"""Pydantic request models for the Banana Mart API.

These models define the JSON schema for every API endpoint.  Field names are
snake_case in Python and camelCase on the wire (``transformationTitle``,
``newUses``, ...), matching what the browser client sends.

Models
------
CredentialsRequest
    Payload for ``POST /api/register`` and ``POST /api/login``.
PhoneRequest
    Payload for ``POST /api/user/info`` and ``POST /api/user/images``.
GenerateRequest
    Payload for ``POST /api/generate``.
SaveImageRequest
    Payload for ``POST /api/save-image``.
AdminLoginRequest
    Payload for ``POST /api/admin/login``.
ResetUsesRequest
    Payload for ``POST /api/admin/reset-uses``.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base model accepting camelCase aliases and snake_case names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CredentialsRequest(ApiModel):
    """Request body for registration and login.

    Attributes:
        phone: 11-digit mobile number.
        password: Plaintext password.
    """

    phone: str = Field(..., description="11-digit mobile number.")
    password: str = Field(..., description="Account password.")


class PhoneRequest(ApiModel):
    phone: str = Field(..., description="Phone number identifying the account.")


class GenerateRequest(ApiModel):
    """Request body for the ``POST /api/generate`` endpoint.

    Attributes:
        phone: Account to charge.
        transformation_title: Title of a catalog transformation.
        custom_prompt: Instruction text for the custom transformation.
        primary_image: Data URL of the image to edit.
        secondary_image: Data URL of the second image (multi-image only).
        mask: Data URL of a mask confining the edit (single-step only).
    """

    phone: str = Field(..., description="Account to charge.")
    transformation_title: str = Field(..., description="Catalog transformation title.")
    custom_prompt: str | None = Field(
        default=None,
        description="Instruction text (required for the custom transformation).",
    )
    primary_image: str = Field(..., description="Data URL of the image to edit.")
    secondary_image: str | None = Field(
        default=None,
        description="Data URL of the second image (multi-image transformations).",
    )
    mask: str | None = Field(
        default=None,
        description="Data URL of a mask limiting where the edit applies.",
    )


class SaveImageRequest(ApiModel):
    """Request body for the ``POST /api/save-image`` endpoint.

    Attributes:
        image_url: Data URL or http(s) URL of the image to store.
        filename: Optional client-chosen filename.
        transformation_title: Title encoded into the stored filename.
        step: ``single`` or ``two-step``.
        phone: Account to charge.
    """

    image_url: str = Field(..., description="Data URL or http(s) URL of the image.")
    filename: str | None = Field(default=None, description="Optional filename.")
    transformation_title: str | None = Field(
        default=None,
        description="Transformation title encoded into the filename.",
    )
    step: Literal["single", "two-step"] = Field(default="single")
    phone: str = Field(..., description="Account to charge.")


class AdminLoginRequest(ApiModel):
    username: str
    password: str


class ResetUsesRequest(ApiModel):
    """Request body for the ``POST /api/admin/reset-uses`` endpoint.

    Attributes:
        phone: Account to update.
        new_uses: New remaining-use count (non-negative, default 10).
    """

    phone: str
    new_uses: int = Field(default=10, ge=0, description="New remaining-use count.")
