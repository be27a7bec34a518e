"""HTTP surface tests through the FastAPI app."""
import pytest

from storage_api.config import GIB, MAX_QUOTA_GB


def upload(client, headers, name="notes.txt", data=b"hello world"):
    return client.post(
        "/api/files/upload",
        files={"file": (name, data, "application/octet-stream")},
        headers=headers,
    )


class TestHealth:

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "database": "connected"}


class TestAuth:

    def test_missing_token(self, client):
        resp = client.get("/api/files")
        assert resp.status_code == 401
        assert resp.json() == {"detail": "No token provided", "error": "unauthorized"}

    def test_wrong_scheme(self, client, alice):
        resp = client.get("/api/files", headers={"Authorization": "Basic alice-token"})
        assert resp.status_code == 401

    def test_invalid_token(self, client):
        resp = client.get("/api/files", headers={"Authorization": "Bearer forged"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "unauthorized"

    def test_admin_route_requires_admin_role(self, client, alice):
        resp = client.get("/api/admin/users", headers=alice)
        assert resp.status_code == 403
        assert resp.json()["error"] == "forbidden"

    def test_token_without_roles(self, client, identity):
        identity.add_user("norole-id", token="norole-token")
        resp = client.get("/api/admin/users", headers={"Authorization": "Bearer norole-token"})
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Forbidden: User role information missing"


class TestFiles:

    def test_upload_list_download_delete(self, client, alice):
        resp = upload(client, alice)
        assert resp.status_code == 201
        body = resp.json()
        assert body["ownerId"] == "alice-id"
        assert body["logicalName"] == "notes.txt"
        assert body["sizeBytes"] == 11
        file_id = body["id"]

        listed = client.get("/api/files", headers=alice).json()
        assert [f["id"] for f in listed] == [file_id]

        resp = client.get(f"/api/files/{file_id}/download", headers=alice)
        assert resp.status_code == 200
        assert resp.content == b"hello world"
        assert "notes.txt" in resp.headers["content-disposition"]

        resp = client.delete(f"/api/files/{file_id}", headers=alice)
        assert resp.status_code == 200
        assert resp.json() == {"deleted": True, "id": file_id}

        resp = client.get(f"/api/files/{file_id}/download", headers=alice)
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    def test_reupload_replaces(self, client, alice):
        first = upload(client, alice, data=b"first").json()
        resp = upload(client, alice, data=b"second!")

        assert resp.status_code == 200
        assert resp.json()["id"] == first["id"]
        assert resp.json()["sizeBytes"] == 7
        assert len(client.get("/api/files", headers=alice).json()) == 1

    def test_files_are_private(self, client, alice, admin):
        file_id = upload(client, alice).json()["id"]

        assert client.get("/api/files", headers=admin).json() == []
        assert client.get(f"/api/files/{file_id}/download", headers=admin).status_code == 404
        assert client.delete(f"/api/files/{file_id}", headers=admin).status_code == 404

    def test_unknown_and_malformed_ids(self, client, alice):
        assert client.get("/api/files/not-a-uuid/download", headers=alice).status_code == 404
        resp = client.delete("/api/files/00000000-0000-0000-0000-000000000000", headers=alice)
        assert resp.status_code == 404

    def test_blob_missing(self, client, alice):
        file_id = upload(client, alice).json()["id"]
        storage = client.app.state.storage
        storage.blob_store.blob_path("alice-id", "notes.txt").unlink()

        resp = client.get(f"/api/files/{file_id}/download", headers=alice)

        assert resp.status_code == 404
        assert resp.json()["error"] == "blob_missing"

    def test_upload_over_size_limit(self, client, alice, settings):
        settings.MAX_UPLOAD_BYTES = 4

        resp = upload(client, alice, data=b"12345")

        assert resp.status_code == 413
        assert resp.json()["error"] == "payload_too_large"
        assert client.get("/api/files", headers=alice).json() == []

    def test_upload_without_file(self, client, alice):
        resp = client.post(
            "/api/files/upload",
            files={"attachment": ("notes.txt", b"hello", "text/plain")},
            headers=alice,
        )

        assert resp.status_code == 400
        assert resp.json() == {"detail": "No file uploaded", "error": "missing_upload"}

    def test_upload_over_quota(self, client, alice, admin):
        client.get("/api/user/me", headers=alice)
        resp = client.post("/api/admin/users/alice-id/quota", json={"quota": 1e-9}, headers=admin)
        assert resp.json()["quotaBytes"] == 1

        resp = upload(client, alice, data=b"ab")

        assert resp.status_code == 403
        assert resp.json() == {"detail": "Storage quota exceeded", "error": "quota_exceeded"}
        assert client.get("/api/files", headers=alice).json() == []


class TestCurrentUser:

    def test_me(self, client, alice):
        upload(client, alice, data=b"x" * 100)

        resp = client.get("/api/user/me", headers=alice)

        assert resp.status_code == 200
        assert resp.json() == {
            "id": "alice-id",
            "username": "alice",
            "email": "",
            "roles": ["user"],
            "quotaBytes": 5 * GIB,
            "usedBytes": 100,
            "availableBytes": 5 * GIB - 100,
        }

    def test_delete_me_with_identity_outage(self, client, alice, identity):
        upload(client, alice)
        identity.fail_delete = True

        resp = client.delete("/api/user/me", headers=alice)

        assert resp.status_code == 200
        body = resp.json()
        assert body["metadataDeleted"] is True
        assert body["identityDeleted"] is False
        assert body["success"] is True
        assert "identity" in body["errors"]


class TestAdmin:

    def test_list_users(self, client, alice, admin):
        upload(client, alice, data=b"x" * 10)

        resp = client.get("/api/admin/users", headers=admin)

        assert resp.status_code == 200
        users = {u["id"]: u for u in resp.json()}
        assert users["alice-id"]["username"] == "alice"
        assert users["alice-id"]["usedBytes"] == 10
        assert users["alice-id"]["storageQuotaBytes"] == 5 * GIB
        assert users["admin-id"]["roles"] == ["admin", "user"]

    def test_quota_get_and_set(self, client, admin):
        resp = client.post("/api/admin/users/bob-id/quota", json={"quota": 2}, headers=admin)
        assert resp.status_code == 200
        assert resp.json() == {"userId": "bob-id", "quotaBytes": 2 * GIB}

        resp = client.get("/api/admin/users/bob-id/quota", headers=admin)
        assert resp.json() == {
            "userId": "bob-id",
            "quotaBytes": 2 * GIB,
            "usedBytes": 0,
            "availableBytes": 2 * GIB,
        }

    def test_quota_must_be_positive(self, client, admin):
        resp = client.post("/api/admin/users/bob-id/quota", json={"quota": 0}, headers=admin)
        assert resp.status_code == 422

    @pytest.mark.parametrize("body", ['{"quota": Infinity}', '{"quota": NaN}', '{"quota": 1e30}'])
    def test_quota_out_of_range(self, client, admin, body):
        resp = client.post(
            "/api/admin/users/bob-id/quota",
            content=body,
            headers={**admin, "Content-Type": "application/json"},
        )
        assert resp.status_code == 422

    def test_largest_quota_is_stored(self, client, admin):
        resp = client.post("/api/admin/users/bob-id/quota", json={"quota": MAX_QUOTA_GB}, headers=admin)
        assert resp.status_code == 200
        assert resp.json()["quotaBytes"] == MAX_QUOTA_GB * GIB

    def test_delete_user(self, client, alice, admin, identity):
        upload(client, alice)

        resp = client.delete("/api/admin/users/alice-id", headers=admin)

        assert resp.status_code == 200
        body = resp.json()
        assert body["userId"] == "alice-id"
        assert body["filesDeleted"] == 1
        assert body["identityDeleted"] is True
        assert body["success"] is True
        assert "alice-id" in identity.deleted

    def test_cleanup(self, client, alice, admin):
        upload(client, alice, name="kept.txt")
        upload(client, alice, name="orphan.txt")
        storage = client.app.state.storage
        storage.blob_store.blob_path("alice-id", "orphan.txt").unlink()
        (storage.blob_store.user_dir("alice-id") / "stray.bin").write_bytes(b"stray")

        resp = client.post("/api/admin/system/cleanup", headers=admin)

        assert resp.status_code == 200
        assert resp.json() == {"removedRecords": 1, "removedBlobs": 1, "removedStaged": 0}
        names = [f["logicalName"] for f in client.get("/api/files", headers=alice).json()]
        assert names == ["kept.txt"]
