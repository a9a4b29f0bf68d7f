import pytest

from app import app


@pytest.fixture
def client(tmp_path):
    """Test client with every JSON collection and upload under tmp_path."""
    saved = {key: app.config.get(key) for key in ("TESTING", "DATA_FOLDER", "UPLOAD_FOLDER")}
    app.config.update(
        TESTING=True,
        DATA_FOLDER=str(tmp_path),
        UPLOAD_FOLDER=str(tmp_path / "uploads"),
    )
    with app.test_client() as client:
        yield client
    app.config.update(saved)
