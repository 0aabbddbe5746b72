"""
Shared fixtures for the selfcorrect tests.
"""

import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from selfcorrect.config import LearningConfig
from selfcorrect.store import CorrectionLog, LearningStore, MemoryDocumentBackend
from selfcorrect.system import create_learning_system


@pytest.fixture
def temp_dir():
    """Create a temporary working directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_dir):
    """Configuration rooted in the temporary directory."""
    return LearningConfig(data_dir=temp_dir / "memory-bank" / "learning-data")


@pytest.fixture
def backend():
    return MemoryDocumentBackend()


@pytest_asyncio.fixture
async def store(config, backend):
    """An initialized store backed by memory, logging to a real file."""
    learning_store = LearningStore(backend, config, CorrectionLog(config.correction_log_path))
    await learning_store.initialize()
    yield learning_store
    await learning_store.close()


@pytest_asyncio.fixture
async def system(config, backend):
    """An initialized learning system backed by memory."""
    learning_system = create_learning_system(config, backend=backend)
    await learning_system.initialize()
    yield learning_system
    await learning_system.close()
