import pytest
from PySide6.QtCore import QCoreApplication

from playback.engine import PlaybackEngine
from stubs import MediaFactory


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def media_factory():
    return MediaFactory()


@pytest.fixture
def engine(media_factory):
    return PlaybackEngine(media_factory=media_factory, probe=lambda buf, ft: 1.5)
