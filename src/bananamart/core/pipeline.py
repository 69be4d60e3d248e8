"""Transformation pipeline: one user action, one or two gateway calls.

Flow
----
1. **Preconditions** - the account exists and has credits, and the inputs
   required by the transformation are present (secondary image for
   multi-image transformations, prompt text for custom ones).
2. **Generation**

   - *Single-step*: one call with the primary image, the resolved prompt,
     the optional mask and (for multi-image transformations) the secondary
     image.
   - *Two-step*: call #1 turns the primary image into an intermediate
     ("line art") image using only the first prompt.  Without an image from
     call #1 the pipeline stops.  Call #2 edits the intermediate image with
     ``step_two_prompt`` and, for multi-image transformations, the
     secondary image cropped to the primary image's aspect ratio.

3. **Watermark** the final image.
4. **Meter** - :class:`~bananamart.core.metering.UsageMeter` stores the
   image and charges the account as one unit.

Nothing is charged unless a final image exists, so a failure at any stage
leaves the account untouched.  A final reply carrying only text is handed
back to the caller uncharged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from bananamart.core.accounts import AccountService
from bananamart.core.errors import InsufficientCreditsError, UpstreamError, ValidationError
from bananamart.core.imaging import ImagePayload, embed_watermark, resize_to_match
from bananamart.core.metering import ChargeReceipt, UsageMeter
from bananamart.core.response_parser import GeneratedContent
from bananamart.core.transformations import Transformation

logger = logging.getLogger(__name__)

STEP_ONE_FAILED_MESSAGE = "Step 1 (line art) failed to generate an image."
UNREADABLE_RESULT_MESSAGE = "The model returned an image that could not be read."


class Gateway(Protocol):
    def generate(
        self,
        image: ImagePayload,
        prompt: str,
        mask: ImagePayload | None = None,
        secondary: ImagePayload | None = None,
    ) -> GeneratedContent: ...

    def load_image(self, url: str) -> ImagePayload: ...


@dataclass(frozen=True)
class GenerationRequest:
    phone: str
    transformation: Transformation
    primary: ImagePayload
    secondary: ImagePayload | None = None
    mask: ImagePayload | None = None
    custom_prompt: str | None = None


@dataclass(frozen=True)
class PipelineResult:
    content: GeneratedContent
    receipt: ChargeReceipt | None = None

    def to_dict(self) -> dict:
        data = {
            "imageUrl": self.content.image_url,
            "text": self.content.text,
            "secondaryImageUrl": self.content.secondary_image_url,
        }
        if self.receipt is not None:
            data.update(self.receipt.to_dict())
        return data


class TransformationPipeline:
    """Orchestrates gateway calls, watermarking and metering."""

    def __init__(
        self,
        gateway: Gateway,
        accounts: AccountService,
        meter: UsageMeter,
        watermark_text: str = "",
    ) -> None:
        self.gateway = gateway
        self.accounts = accounts
        self.meter = meter
        self.watermark_text = watermark_text

    def _check_preconditions(self, request: GenerationRequest) -> str:
        account = self.accounts.get_user_info(request.phone)
        if account.remaining_uses <= 0:
            raise InsufficientCreditsError(
                "Generation credits exhausted, please contact the administrator"
            )

        transformation = request.transformation
        if transformation.is_multi_image and request.secondary is None:
            raise ValidationError("Please upload both required images.")
        return transformation.resolve_prompt(request.custom_prompt)

    def _load_result_image(self, url: str) -> ImagePayload:
        """Load an image produced by the model and check that Pillow can read it."""
        try:
            image = self.gateway.load_image(url)
            image.open()
        except ValidationError as e:
            logger.error(f"Unreadable model output: {e.message}")
            raise UpstreamError(UNREADABLE_RESULT_MESSAGE) from e
        return image

    def run(self, request: GenerationRequest) -> PipelineResult:
        """Execute a generation for *request*.

        Raises:
            AuthenticationError: Unknown account.
            InsufficientCreditsError: No credits left (before or at charge time).
            ValidationError: Missing inputs.
            UpstreamError: Gateway failure, a step-1 result without an
                image, or a result image Pillow cannot read.
        """
        prompt = self._check_preconditions(request)
        transformation = request.transformation

        if transformation.is_two_step:
            step = "two-step"
            content = self._run_two_step(request, prompt)
        else:
            step = "single"
            content = self._run_single_step(request, prompt)

        if not content.image_url:
            logger.info(f"'{transformation.title}' for {request.phone} returned text only")
            return PipelineResult(content=content)

        final_image = embed_watermark(
            self._load_result_image(content.image_url), self.watermark_text
        )
        receipt = self.meter.record_generation(
            request.phone, final_image, transformation.title, step
        )

        return PipelineResult(
            content=GeneratedContent(
                image_url=final_image.to_data_url(),
                text=content.text,
                secondary_image_url=content.secondary_image_url,
            ),
            receipt=receipt,
        )

    def _run_single_step(self, request: GenerationRequest, prompt: str) -> GeneratedContent:
        secondary = request.secondary if request.transformation.is_multi_image else None
        return self.gateway.generate(request.primary, prompt, request.mask, secondary)

    def _run_two_step(self, request: GenerationRequest, prompt: str) -> GeneratedContent:
        transformation = request.transformation

        logger.info(f"Step 1 of '{transformation.title}' for {request.phone}")
        step_one = self.gateway.generate(request.primary, prompt, None, None)
        if not step_one.image_url:
            raise UpstreamError(STEP_ONE_FAILED_MESSAGE)

        intermediate = self._load_result_image(step_one.image_url)

        secondary = None
        if transformation.is_multi_image and request.secondary is not None:
            secondary = resize_to_match(request.secondary, request.primary)

        logger.info(f"Step 2 of '{transformation.title}' for {request.phone}")
        step_two = self.gateway.generate(
            intermediate, transformation.step_two_prompt, None, secondary
        )

        return GeneratedContent(
            image_url=step_two.image_url,
            text=step_two.text,
            secondary_image_url=step_one.image_url,
        )
