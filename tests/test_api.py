"""End-to-end HTTP tests through the FastAPI app."""

from pathlib import Path

from lanvault.api.files import _content_disposition, _header_value
from lanvault.core.crypto import generate_key_pair

from conftest import auth


def upload(client, content=b"hello world", filename="hello.txt", **form):
    return client.post(
        "/api/files",
        files={"file": (filename, content, "text/plain")},
        data=form,
    )


class TestResponseHeaders:
    def test_header_value_never_carries_line_breaks(self):
        value = _header_value("evil\r\nSet-Cookie: x=1")
        assert "\r" not in value and "\n" not in value
        assert _header_value("laptop") == "laptop"

    def test_content_disposition_fallback_is_clean(self):
        header = _content_disposition("a\r\nb.txt")
        assert "\r" not in header and "\n" not in header
        assert 'filename="ab.txt"' in header


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestFileSharing:
    def test_upload_download_round_trip(self, client):
        response = upload(client)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["filename"] == "hello.txt"
        assert data["size"] == 11
        assert data["expiresAt"] is None
        file_id = data["fileId"]

        download = client.get(f"/api/files/{file_id}")
        assert download.status_code == 200
        assert download.content == b"hello world"
        assert "hello.txt" in download.headers["content-disposition"]
        assert download.headers["x-file-device"].startswith("Anonymous Device")

        info = client.get(f"/api/files/{file_id}/info").json()["data"]
        assert info["downloadCount"] == 1
        assert info["filename"] == "hello.txt"
        assert "encryptionKey" not in info
        assert "storedName" not in info

    def test_unicode_filename_download(self, client):
        file_id = upload(client, filename="báo cáo.txt").json()["data"]["fileId"]
        response = client.get(f"/api/files/{file_id}")
        assert response.status_code == 200
        assert "filename*=UTF-8''" in response.headers["content-disposition"]
        assert response.content == b"hello world"

    def test_expired_file_is_gone(self, client):
        response = upload(client, expiresInMinutes="0")
        file_id = response.json()["data"]["fileId"]

        download = client.get(f"/api/files/{file_id}")
        assert download.status_code == 410
        assert download.json() == {"success": False, "message": "File expired", "data": None}
        assert client.get(f"/api/files/{file_id}/info").status_code == 410

    def test_unknown_file(self, client):
        assert client.get("/api/files/not-a-file").status_code == 404
        assert client.get("/api/files/not-a-file/info").status_code == 404

    def test_bad_expiry(self, client):
        response = upload(client, expiresInMinutes="soon")
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_huge_expiry(self, client, settings):
        response = upload(client, expiresInMinutes="10000000000")
        assert response.status_code == 400
        assert [p for p in Path(settings.STORAGE_DIR).iterdir() if p.is_file()] == []

    def test_device_name_with_line_break_rejected(self, client):
        response = upload(client, deviceName="evil\r\nSet-Cookie: x=1")
        assert response.status_code == 400
        assert client.get("/api/files").json()["data"] == []

    def test_public_upload_does_not_rename_this_node(self, client, admin_key, identity):
        response = upload(client, deviceId=identity.device_id, deviceName="pwned")
        assert response.status_code == 200
        me = client.get(f"/api/devices/{identity.device_id}", headers=auth(admin_key)).json()["data"]
        assert me["name"] == identity.device_name

    def test_unreadable_blob_is_a_server_error(self, client, monkeypatch):
        file_id = upload(client).json()["data"]["fileId"]

        def denied(path, mode="r", *args, **kwargs):
            raise PermissionError(13, "Permission denied", str(path))

        monkeypatch.setattr("lanvault.storage.blob.open", denied, raising=False)
        response = client.get(f"/api/files/{file_id}")
        assert response.status_code == 500
        assert response.json()["success"] is False
        monkeypatch.undo()
        assert client.get(f"/api/files/{file_id}/info").json()["data"]["downloadCount"] == 0

    def test_missing_file(self, client):
        response = client.post("/api/files", data={"deviceName": "laptop"})
        assert response.status_code == 400
        assert response.json()["message"] == "No file uploaded"

    def test_too_large(self, client):
        response = upload(client, content=b"x" * (1024 * 1024 + 1))
        assert response.status_code == 400

    def test_no_plaintext_on_disk(self, client, settings):
        upload(client, content=b"a very distinctive payload")
        blobs = [p for p in Path(settings.STORAGE_DIR).iterdir() if p.is_file()]
        assert len(blobs) == 1
        assert b"distinctive" not in blobs[0].read_bytes()
        assert list(Path(settings.STAGING_DIR).iterdir()) == []

    def test_list_shows_active_files_only(self, client, admin_key):
        keep = upload(client, filename="keep.txt").json()["data"]["fileId"]
        upload(client, filename="expired.txt", expiresInMinutes="0")
        gone = upload(client, filename="gone.txt").json()["data"]["fileId"]
        assert client.delete(f"/api/files/{gone}", headers=auth(admin_key)).status_code == 200

        listed = client.get("/api/files").json()["data"]
        assert [f["id"] for f in listed] == [keep]

    def test_list_by_device(self, client):
        first = upload(client, deviceName="alpha").json()["data"]
        upload(client, deviceName="beta")
        listed = client.get("/api/files", params={"deviceId": first["deviceId"]}).json()["data"]
        assert [f["id"] for f in listed] == [first["fileId"]]
        assert listed[0]["deviceName"] == "alpha"


class TestProtectedFileOperations:
    def test_delete_requires_key(self, client):
        file_id = upload(client).json()["data"]["fileId"]
        response = client.delete(f"/api/files/{file_id}")
        assert response.status_code == 401
        assert "www-authenticate" in response.headers
        assert client.get(f"/api/files/{file_id}").status_code == 200

    def test_delete_requires_write(self, client, admin_key):
        reader = client.post(
            "/api/auth/api-key", json={"permissions": "read"}, headers=auth(admin_key)
        ).json()["data"]["apiKey"]
        file_id = upload(client).json()["data"]["fileId"]
        assert client.delete(f"/api/files/{file_id}", headers=auth(reader)).status_code == 403

    def test_delete_then_download(self, client, admin_key):
        file_id = upload(client).json()["data"]["fileId"]
        response = client.delete(f"/api/files/{file_id}", headers=auth(admin_key))
        assert response.status_code == 200
        assert response.json()["data"] == {"deleted": True, "reclaimed": True}
        assert client.get(f"/api/files/{file_id}").status_code == 404
        assert client.delete(f"/api/files/{file_id}", headers=auth(admin_key)).status_code == 404

    def test_key_in_query_string(self, client, admin_key):
        file_id = upload(client).json()["data"]["fileId"]
        response = client.delete(f"/api/files/{file_id}", params={"apiKey": admin_key})
        assert response.status_code == 200

    def test_cleanup(self, client, admin_key):
        upload(client, expiresInMinutes="0")
        upload(client, expiresInMinutes="0")
        upload(client)
        assert client.post("/api/files/cleanup").status_code == 401

        first = client.post("/api/files/cleanup", headers=auth(admin_key)).json()["data"]
        assert first == {"expiredFiles": 2, "cleanedFiles": 2}
        second = client.post("/api/files/cleanup", headers=auth(admin_key)).json()["data"]
        assert second == {"expiredFiles": 0, "cleanedFiles": 0}


class TestDevices:
    def register(self, client, **extra):
        payload = {"deviceName": "phone", "publicKey": generate_key_pair().public_key, "ipAddress": "10.0.0.9"}
        payload.update(extra)
        return client.post("/api/devices/register", json=payload)

    def test_discover_is_public(self, client, identity):
        response = client.get("/api/devices/discover")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"] == identity.device_id
        assert data["publicKey"] == identity.public_key
        assert data["fingerprint"] == identity.fingerprint
        assert "secretKey" not in data

    def test_device_listing_requires_read(self, client, admin_key, identity):
        assert client.get("/api/devices").status_code == 401
        devices = client.get("/api/devices", headers=auth(admin_key)).json()["data"]
        me = [d for d in devices if d["isSelf"]]
        assert len(me) == 1
        assert me[0]["id"] == identity.device_id
        assert me[0]["isTrusted"] is True

    def test_trust_gating(self, client, admin_key):
        registered = self.register(client).json()["data"]
        device_id = registered["deviceId"]
        assert registered["created"] is True
        assert registered["isTrusted"] is False

        file_id = upload(client, deviceId=device_id).json()["data"]["fileId"]

        trusted = client.post(f"/api/devices/{device_id}/trust", headers=auth(admin_key))
        assert trusted.json()["data"]["isTrusted"] is True
        untrusted = client.post(f"/api/devices/{device_id}/untrust", headers=auth(admin_key))
        assert untrusted.json()["data"]["isTrusted"] is False
        assert untrusted.json()["data"]["id"] == device_id

        info = client.get(f"/api/files/{file_id}/info").json()["data"]
        assert info["deviceId"] == device_id

    def test_reregistration_keeps_trust(self, client, admin_key):
        public_key = generate_key_pair().public_key
        device_id = self.register(client, publicKey=public_key).json()["data"]["deviceId"]
        client.post(f"/api/devices/{device_id}/trust", headers=auth(admin_key))

        again = self.register(client, publicKey=public_key, deviceId=device_id, ipAddress="10.0.0.10")
        data = again.json()["data"]
        assert data == {"deviceId": device_id, "created": False, "isTrusted": True}

    def test_register_rejects_bad_key(self, client):
        assert self.register(client, publicKey="bm90IGEga2V5").status_code == 400

    def test_register_rejects_control_characters(self, client):
        assert self.register(client, deviceName="phone\r\nX-Injected: 1").status_code == 400

    def test_register_own_identity_rejected(self, client, identity):
        assert self.register(client, publicKey=identity.public_key).status_code == 400

    def test_trust_requires_write(self, client):
        device_id = self.register(client).json()["data"]["deviceId"]
        assert client.post(f"/api/devices/{device_id}/trust").status_code == 401

    def test_rename_and_delete(self, client, admin_key):
        device_id = self.register(client).json()["data"]["deviceId"]
        renamed = client.put(f"/api/devices/{device_id}", json={"name": "tablet"}, headers=auth(admin_key))
        assert renamed.json()["data"]["name"] == "tablet"
        assert client.delete(f"/api/devices/{device_id}", headers=auth(admin_key)).status_code == 200
        assert client.get(f"/api/devices/{device_id}", headers=auth(admin_key)).status_code == 404

    def test_cannot_delete_self(self, client, admin_key, identity):
        response = client.delete(f"/api/devices/{identity.device_id}", headers=auth(admin_key))
        assert response.status_code == 400
        assert response.json()["message"] == "Cannot delete own device"

    def test_device_stats(self, client, admin_key):
        device_id = self.register(client).json()["data"]["deviceId"]
        file_id = upload(client, deviceId=device_id).json()["data"]["fileId"]
        client.get(f"/api/files/{file_id}")
        stats = client.get(f"/api/devices/{device_id}/stats", headers=auth(admin_key)).json()["data"]
        assert stats["totalFiles"] == 1
        assert stats["totalSize"] == 11
        assert stats["totalDownloads"] == 1


class TestApiKeys:
    def test_bootstrap_only_once(self, client, admin_key):
        response = client.post("/api/auth/bootstrap")
        assert response.status_code == 400

    def test_validate(self, client, admin_key):
        response = client.post("/api/auth/validate", json={"apiKey": admin_key})
        assert response.status_code == 200
        assert response.json()["data"]["permissions"] == ["read", "write", "admin"]
        assert client.post("/api/auth/validate", json={"apiKey": "nope"}).status_code == 401

    def test_revoked_key_is_rejected(self, client, admin_key):
        issued = client.post(
            "/api/auth/api-key", json={"permissions": ["read", "write"]}, headers=auth(admin_key)
        ).json()["data"]
        assert client.post("/api/auth/validate", json={"apiKey": issued["apiKey"]}).status_code == 200

        revoked = client.delete(f"/api/auth/api-keys/{issued['keyId']}", headers=auth(admin_key))
        assert revoked.status_code == 200
        assert revoked.json()["data"]["isActive"] is False

        assert client.post("/api/auth/validate", json={"apiKey": issued["apiKey"]}).status_code == 401
        assert client.get("/api/devices", headers=auth(issued["apiKey"])).status_code == 401

    def test_listing_keys_requires_admin(self, client, admin_key):
        writer = client.post(
            "/api/auth/api-key", json={"permissions": "read,write"}, headers=auth(admin_key)
        ).json()["data"]["apiKey"]
        assert client.get("/api/auth/api-keys", headers=auth(writer)).status_code == 403

        keys = client.get("/api/auth/api-keys", headers=auth(admin_key)).json()["data"]
        assert len(keys) == 2
        assert all("keyHash" not in k and "apiKey" not in k for k in keys)

    def test_writer_cannot_mint_admin(self, client, admin_key):
        writer = client.post(
            "/api/auth/api-key", json={"permissions": "read,write"}, headers=auth(admin_key)
        ).json()["data"]["apiKey"]
        response = client.post("/api/auth/api-key", json={"permissions": "admin"}, headers=auth(writer))
        assert response.status_code == 403

    def test_key_for_unknown_device(self, client, admin_key):
        response = client.post(
            "/api/auth/api-key", json={"deviceId": "missing"}, headers=auth(admin_key)
        )
        assert response.status_code == 404
