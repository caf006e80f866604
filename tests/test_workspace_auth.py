import time

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt

from server.src.modules.workspace_auth import verify_token
from server.src.modules.workspace_config import validate_workspace_environment
from tests.conftest import workspace_client
from tests.helpers import create_page


def _key_pair() -> tuple[str, str]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


@pytest.fixture(scope="module")
def keys():
    return _key_pair()


def _token(private_pem: str, sub: str, **claims) -> str:
    payload = {"sub": sub, "exp": int(time.time()) + 300, **claims}
    return jwt.encode(payload, private_pem, algorithm="RS256")


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_verify_token_reads_subject(monkeypatch, keys):
    private_pem, public_pem = keys
    monkeypatch.setenv("JWT_PUBLIC_KEY", public_pem.replace("\n", "\\n"))
    assert verify_token(_token(private_pem, "user-42")) == "user-42"
    assert verify_token(_token(private_pem, "user-42", exp=int(time.time()) - 10)) is None
    assert verify_token(_token(_key_pair()[0], "user-42")) is None
    assert verify_token("not-a-jwt") is None


def test_verify_token_without_key_is_unverified(monkeypatch, keys):
    monkeypatch.delenv("JWT_PUBLIC_KEY", raising=False)
    monkeypatch.delenv("JWT_PUBLIC_KEY_PATH", raising=False)
    assert verify_token(_token(keys[0], "user-42")) is None
    report = validate_workspace_environment()
    assert any("JWT_PUBLIC_KEY" in warning for warning in report.warnings)


def test_public_key_loaded_from_file(monkeypatch, tmp_path, keys):
    private_pem, public_pem = keys
    key_file = tmp_path / "jwt.pub"
    key_file.write_text(public_pem)
    monkeypatch.setenv("JWT_PUBLIC_KEY_PATH", str(key_file))
    monkeypatch.delenv("JWT_PUBLIC_KEY", raising=False)
    assert verify_token(_token(private_pem, "user-7")) == "user-7"
    assert validate_workspace_environment().errors == ()


def test_missing_key_file_is_a_config_error(monkeypatch, tmp_path):
    monkeypatch.setenv("JWT_PUBLIC_KEY_PATH", str(tmp_path / "absent.pub"))
    report = validate_workspace_environment()
    assert any("JWT_PUBLIC_KEY_PATH" in error for error in report.errors)


def test_audience_is_enforced_when_configured(monkeypatch, keys):
    private_pem, public_pem = keys
    monkeypatch.setenv("JWT_PUBLIC_KEY", public_pem)
    monkeypatch.setenv("JWT_AUDIENCE", "workspace")
    assert verify_token(_token(private_pem, "user-1", aud="workspace")) == "user-1"
    assert verify_token(_token(private_pem, "user-1", aud="billing")) is None


@pytest.mark.asyncio
async def test_jwt_subject_owns_workspace_rows(monkeypatch, keys):
    private_pem, public_pem = keys
    monkeypatch.setenv("JWT_PUBLIC_KEY", public_pem)
    alice = _bearer(_token(private_pem, "alice"))
    bob = _bearer(_token(private_pem, "bob"))
    async with workspace_client(auth_token=None) as client:
        page = await create_page(client, "Alice's notes", headers=alice)
        alice_pages = await client.get("/api/pages", headers=alice)
        assert [row["id"] for row in alice_pages.json()] == [page["id"]]

        assert (await client.get(f"/api/pages/{page['id']}", headers=alice)).status_code == 200
        assert (await client.get(f"/api/pages/{page['id']}", headers=bob)).status_code == 404
        assert (await client.get("/api/pages", headers=bob)).json() == []

        forged = await client.get("/api/pages", headers=_bearer(_token(_key_pair()[0], "alice")))
        assert forged.status_code == 401
        assert forged.json()["detail"] == "Invalid token"
