"""Tests for service wiring and the worker entry point."""

import asyncio
import io
from unittest.mock import patch

import pytest
from conftest import png_bytes

from docscan.config import Settings
from docscan.schemas.document import DocumentStatus
from docscan.services.notifier import NullNotifier
from docscan.storage import MemoryRecordStore
from docscan.worker.run_worker import run
from docscan.worker.startup import build_services, engine_options


@pytest.fixture
def config(tmp_path):
    return Settings(
        storage_backend="memory",
        default_engine="mock",
        uploads_dir=tmp_path / "uploads",
        max_concurrent_jobs=2,
    )


class TestBuildServices:
    """Tests for build_services."""

    def test_memory_backend(self, config):
        services = build_services(config)

        assert isinstance(services.store, MemoryRecordStore)
        assert isinstance(services.notifier, NullNotifier)
        assert services.redis_client is None
        assert services.scheduler.max_concurrent == 2
        assert services.documents.uploads_dir == config.uploads_dir
        assert services.recognition.engine_name == "mock"

    def test_unknown_engine(self, config):
        config.default_engine = "abbyy"

        with pytest.raises(ValueError, match="not registered"):
            build_services(config)

    def test_tesseract_options(self, config):
        config.default_engine = "tesseract"
        config.binarization_method = "otsu"

        options = engine_options(config)

        assert options["binarization_method"] == "otsu"
        assert options["denoise_strength"] == 10
        assert engine_options(Settings(default_engine="mock")) == {}


def test_worker_once_drains_backlog(config):
    """``--once`` processes every queued job and exits."""
    services = build_services(config)
    document = services.documents.register_upload(io.BytesIO(png_bytes()), "scan.png", owner_id="alice")

    async def enqueue():
        return await services.scheduler.enqueue(document.id, "alice")

    job = asyncio.run(enqueue())

    with patch("docscan.worker.run_worker.build_services", return_value=services):
        asyncio.run(run(once=True))

    assert services.store.jobs.get(job.id).status.value == "completed"
    assert services.documents.get_document(document.id).status == DocumentStatus.COMPLETED
    assert not services.recognition.is_loaded
