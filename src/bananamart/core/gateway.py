"""HTTP gateway to the remote multimodal generation service.

The service speaks the OpenAI chat-completions dialect.  One call to
:meth:`GenerationGateway.generate` is exactly one HTTP request: there is no
retry, and the only timeout is the connection-level ``httpx`` timeout taken
from :class:`~bananamart.core.config.BananaMartConfig`.

Request Layout
--------------
The user message content is an ordered list::

    [text, primary image, mask (optional), secondary image (optional)]

Images are sent as ``image_url`` blocks carrying data URLs.  When a mask is
supplied the prompt is rewritten into an explicit "only inside the mask"
instruction; the mask itself stays a separate image.

Failure Policy
--------------
Every failure surfaces as one :class:`~bananamart.core.errors.UpstreamError`
with a message fit for the user: the ``error.message`` of a JSON error body,
else the raw body text, else the HTTP status line.
"""

from __future__ import annotations

import logging

import httpx

from bananamart.core.config import BananaMartConfig
from bananamart.core.errors import ConfigurationError, UpstreamError
from bananamart.core.imaging import ImagePayload
from bananamart.core.response_parser import GeneratedContent, parse_response

logger = logging.getLogger(__name__)

MASK_PROMPT_TEMPLATE = (
    'Apply the following instruction only to the masked area of the image: "{prompt}". '
    "Preserve the unmasked area."
)
NO_CONTENT_MESSAGE = (
    "The model did not return any content. Please try a different image or prompt."
)


def build_content(
    image: ImagePayload,
    prompt: str,
    mask: ImagePayload | None = None,
    secondary: ImagePayload | None = None,
) -> list[dict]:
    """Assemble the ordered content blocks of one generation request."""
    text = MASK_PROMPT_TEMPLATE.format(prompt=prompt) if mask is not None else prompt

    content: list[dict] = [
        {"type": "text", "text": text},
        {"type": "image_url", "image_url": {"url": image.to_data_url()}},
    ]
    if mask is not None:
        mask_url = f"data:image/png;base64,{mask.to_base64()}"
        content.append({"type": "image_url", "image_url": {"url": mask_url}})
    if secondary is not None:
        content.append({"type": "image_url", "image_url": {"url": secondary.to_data_url()}})
    return content


def extract_error_message(response: httpx.Response) -> str:
    """Turn a non-success response into a single descriptive message."""
    body = response.text
    try:
        parsed = response.json()
    except ValueError:
        parsed = None

    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return body or f"HTTP {response.status_code}: {response.reason_phrase}"


class GenerationGateway:
    """Client for the remote chat-completions endpoint.

    Args:
        config: Service configuration (base URL, key, model, timeout).
        client: Optional pre-built ``httpx.Client``; tests pass one with a
            ``MockTransport``.
    """

    def __init__(self, config: BananaMartConfig, client: httpx.Client | None = None) -> None:
        self.config = config
        self._client = client or httpx.Client(timeout=config.request_timeout)

    @property
    def endpoint(self) -> str:
        return f"{self.config.api_base_url.rstrip('/')}/v1/chat/completions"

    def close(self) -> None:
        self._client.close()

    def build_payload(
        self,
        image: ImagePayload,
        prompt: str,
        mask: ImagePayload | None = None,
        secondary: ImagePayload | None = None,
    ) -> dict:
        return {
            "model": self.config.model,
            "stream": False,
            "messages": [
                {"role": "user", "content": build_content(image, prompt, mask, secondary)}
            ],
        }

    def generate(
        self,
        image: ImagePayload,
        prompt: str,
        mask: ImagePayload | None = None,
        secondary: ImagePayload | None = None,
    ) -> GeneratedContent:
        """Run one generation request.

        Args:
            image: Primary image to edit.
            prompt: Editing instruction.
            mask: Optional mask confining the edit.
            secondary: Optional second reference image.

        Returns:
            Parsed image URL and caption.

        Raises:
            ConfigurationError: No API key is configured.
            UpstreamError: Transport failure, non-2xx status, malformed body,
                or a reply with neither image nor text.
        """
        if not self.config.api_key:
            raise ConfigurationError("API key is not configured")

        payload = self.build_payload(image, prompt, mask, secondary)
        headers = {"Authorization": f"Bearer {self.config.api_key}"}

        logger.info(
            f"Calling {self.endpoint} (model={self.config.model}, "
            f"mask={mask is not None}, secondary={secondary is not None})"
        )
        try:
            response = self._client.post(self.endpoint, json=payload, headers=headers)
        except httpx.RequestError as e:
            logger.error(f"Generation request failed: {e}")
            raise UpstreamError(f"Failed to reach the generation service: {e}") from e

        if not response.is_success:
            message = extract_error_message(response)
            logger.error(f"Generation service returned {response.status_code}: {message}")
            raise UpstreamError(message)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("The generation service returned an unreadable response") from e

        result = GeneratedContent()
        choices = data.get("choices") if isinstance(data, dict) else None
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            text = message.get("content") if isinstance(message, dict) else None
            if isinstance(text, str) and text:
                result = parse_response(text).to_content()

        if not result.image_url and not result.text:
            raise UpstreamError(NO_CONTENT_MESSAGE)

        logger.info(f"Generation finished (image={'yes' if result.image_url else 'no'})")
        return result

    def fetch_image(self, url: str) -> ImagePayload:
        """Download an image returned by URL.

        Raises:
            UpstreamError: The download failed.
        """
        try:
            response = self._client.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(f"Image server error: {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise UpstreamError(f"Failed to fetch image: {e}") from e

        mime_type = response.headers.get("content-type", "image/png").split(";")[0].strip()
        if not mime_type.startswith("image/"):
            mime_type = "image/png"
        return ImagePayload(data=response.content, mime_type=mime_type)

    def load_image(self, url: str) -> ImagePayload:
        """Resolve a result URL (data URL or http URL) into an image payload."""
        if url.startswith(("http://", "https://")):
            return self.fetch_image(url)
        return ImagePayload.from_data_url(url)
