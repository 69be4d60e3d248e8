"""Shared pytest fixtures for Banana Mart tests."""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

# The global configuration is created on import and creates its data
# directory; keep it out of the working tree.
os.environ.setdefault("BANANAMART_DATA_DIR", tempfile.mkdtemp(prefix="bananamart-tests-"))

from fastapi.testclient import TestClient  # noqa: E402
from PIL import Image  # noqa: E402

from bananamart.api.main import create_app  # noqa: E402
from bananamart.core.account_store import InMemoryAccountRepository  # noqa: E402
from bananamart.core.accounts import AccountService  # noqa: E402
from bananamart.core.config import BananaMartConfig  # noqa: E402
from bananamart.core.image_library import ImageLibrary  # noqa: E402
from bananamart.core.imaging import ImagePayload  # noqa: E402
from bananamart.core.metering import UsageMeter  # noqa: E402
from bananamart.core.response_parser import GeneratedContent  # noqa: E402

VALID_PHONE = "13800138000"
OTHER_PHONE = "15912345678"
VALID_PASSWORD = "secret123"


def make_png(width: int = 64, height: int = 48, color=(200, 120, 40)) -> ImagePayload:
    """Build a solid-colour PNG payload."""
    return ImagePayload.from_image(Image.new("RGB", (width, height), color))


class FakeGateway:
    """Recording stand-in for :class:`GenerationGateway`.

    Each ``generate`` call pops the next queued result (or returns a fresh
    inline image) and records its arguments.
    """

    def __init__(self, results: list[GeneratedContent] | None = None) -> None:
        self.results = list(results or [])
        self.calls: list[dict] = []
        self.remote_images: dict[str, ImagePayload] = {}
        self.closed = False

    def generate(self, image, prompt, mask=None, secondary=None) -> GeneratedContent:
        self.calls.append({"image": image, "prompt": prompt, "mask": mask, "secondary": secondary})
        if self.results:
            return self.results.pop(0)
        return GeneratedContent(image_url=make_png().to_data_url(), text="done")

    def fetch_image(self, url: str) -> ImagePayload:
        return self.remote_images.get(url) or make_png()

    def load_image(self, url: str) -> ImagePayload:
        if url.startswith(("http://", "https://")):
            return self.fetch_image(url)
        return ImagePayload.from_data_url(url)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> BananaMartConfig:
    """Create a test configuration with temporary directories.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        BananaMartConfig instance for testing
    """
    return BananaMartConfig(
        _env_file=None,
        data_dir=temp_dir / "data",
        api_key="test-key",
        api_base_url="https://model.test",
        watermark_text="Test Mark",
    )


@pytest.fixture
def repository() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def accounts(repository: InMemoryAccountRepository) -> AccountService:
    return AccountService(repository, initial_uses=10)


@pytest.fixture
def registered(accounts: AccountService) -> AccountService:
    """Account service with one registered user (VALID_PHONE)."""
    accounts.register(VALID_PHONE, VALID_PASSWORD)
    return accounts


@pytest.fixture
def library(temp_dir: Path) -> ImageLibrary:
    return ImageLibrary(temp_dir / "images")


@pytest.fixture
def meter(registered: AccountService, library: ImageLibrary) -> UsageMeter:
    return UsageMeter(registered, library)


@pytest.fixture
def make_image():
    """Factory fixture returning :func:`make_png`."""
    return make_png


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def test_client(
    test_config: BananaMartConfig,
    repository: InMemoryAccountRepository,
    fake_gateway: FakeGateway,
) -> Generator[TestClient, None, None]:
    """TestClient over an app wired to in-memory accounts and a fake gateway."""
    app = create_app(test_config, repository=repository, gateway=fake_gateway)
    with TestClient(app) as client:
        yield client
