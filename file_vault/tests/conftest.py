import json

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from file_vault import config
from file_vault.app.services.storage_manager import StorageManager
from file_vault.main import app

BOUNDARY = "----FileVaultTestBoundary7MA4YWxkTrZu0gW"


def build_body(filename, payload: bytes, boundary: str = BOUNDARY) -> bytes:
    """Frame a single file part the way browsers send it."""
    disposition = 'Content-Disposition: form-data; name="file"'
    if filename is not None:
        disposition += f'; filename="{filename}"'
    head = f"--{boundary}\r\n{disposition}\r\nContent-Type: application/octet-stream\r\n\r\n"
    return head.encode("utf-8") + payload + f"\r\n--{boundary}--\r\n".encode("ascii")


@pytest.fixture
def multipart():
    """Return ``(body, content_type)`` builders for upload requests."""
    def _build(filename, payload: bytes, boundary: str = BOUNDARY):
        return build_body(filename, payload, boundary), f"multipart/form-data; boundary={boundary}"
    return _build


@pytest.fixture
def vault_dir(tmp_path):
    return tmp_path / "vault"


@pytest.fixture
def seed_records(vault_dir):
    """Overwrite the data file with the given records."""
    def _seed(*records):
        data_file = vault_dir / config.DATA_FILE
        data_file.write_text(json.dumps({"files": list(records)}, indent=2))
    return _seed


@pytest_asyncio.fixture
async def storage_manager(vault_dir):
    manager = StorageManager(vault_dir)
    await manager.initialize()
    return manager


@pytest.fixture
def client(vault_dir, monkeypatch):
    monkeypatch.setattr(config, "BASE_DIR", vault_dir)
    with TestClient(app) as test_client:
        yield test_client
