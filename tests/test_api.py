from app.schemas.user import UserRole

from conftest import PDF_BYTES, auth_headers


async def create_folder(client, headers, name, parent_id=None):
    response = await client.post(
        "/api/v1/folder/", json={"Name": name, "ParentFolderId": parent_id}, headers=headers
    )
    assert response.status_code == 201, response.text
    return response.json()


async def upload_pdf(client, headers, folder_id=None, name="a.pdf", is_public=False):
    data = {"isPublic": str(is_public).lower()}
    if folder_id is not None:
        data["folderId"] = str(folder_id)
    response = await client.post(
        "/api/v1/file/upload",
        files={"file": (name, PDF_BYTES, "application/pdf")},
        data=data,
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


async def test_folder_lifecycle_scenario(client, customer_headers):
    docs = await create_folder(client, customer_headers, "Docs")
    uploaded = await upload_pdf(client, customer_headers, folder_id=docs["Id"])
    assert uploaded["FolderId"] == docs["Id"]
    assert uploaded["FileSizeFormatted"].endswith("B")

    archive = await create_folder(client, customer_headers, "Archive")
    response = await client.post(
        "/api/v1/folder/move",
        json={"FolderId": docs["Id"], "NewParentFolderId": archive["Id"]},
        headers=customer_headers,
    )
    assert response.status_code == 200
    assert response.json()["Path"] == "Archive/Docs"

    response = await client.get(f"/api/v1/folder/{docs['Id']}/path", headers=customer_headers)
    assert response.json() == {"FolderId": docs["Id"], "Path": "Archive/Docs"}

    response = await client.delete(f"/api/v1/folder/{docs['Id']}", headers=customer_headers)
    assert response.status_code == 400
    assert "deleteFiles" in response.json()["Message"]

    response = await client.delete(
        f"/api/v1/folder/{docs['Id']}", params={"deleteFiles": "true"}, headers=customer_headers
    )
    assert response.status_code == 200
    assert response.json() == {"Message": "Folder deleted successfully"}

    response = await client.get(f"/api/v1/file/{uploaded['Id']}", headers=customer_headers)
    assert response.status_code == 404


async def test_move_folder_into_descendant_is_rejected(client, customer_headers):
    parent = await create_folder(client, customer_headers, "Parent")
    child = await create_folder(client, customer_headers, "Child", parent["Id"])

    response = await client.post(
        "/api/v1/folder/move",
        json={"FolderId": parent["Id"], "NewParentFolderId": child["Id"]},
        headers=customer_headers,
    )

    assert response.status_code == 400
    assert "Message" in response.json()


async def test_folder_tree_and_breadcrumbs(client, customer_headers):
    root = await create_folder(client, customer_headers, "Root")
    leaf = await create_folder(client, customer_headers, "Leaf", root["Id"])

    tree = (await client.get("/api/v1/folder/tree", headers=customer_headers)).json()
    assert tree["Name"] == "Root" and tree["Id"] == 0
    assert tree["SubFolders"][0]["SubFolders"][0]["Id"] == leaf["Id"]

    crumbs = (await client.get(f"/api/v1/folder/{leaf['Id']}/breadcrumbs", headers=customer_headers)).json()
    assert [c["Name"] for c in crumbs] == ["Root", "Leaf"]

    response = await client.get("/api/v1/folder/by-path", params={"path": "Root/Leaf"}, headers=customer_headers)
    assert response.json()["Id"] == leaf["Id"]


async def test_requests_without_token_are_rejected(client):
    response = await client.get("/api/v1/folder/")
    assert response.status_code == 401
    assert response.json() == {"Message": "Not authenticated"}

    response = await client.get("/api/v1/folder/", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


async def test_admin_routes_reject_customers(client, customer_headers, admin_headers):
    response = await client.get("/api/v1/cache/statistics", headers=customer_headers)
    assert response.status_code == 403

    response = await client.get("/api/v1/cache/statistics", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["Connected"] is True


async def test_download_token_flow(client, customer_headers):
    uploaded = await upload_pdf(client, customer_headers)

    response = await client.post(f"/api/v1/file/{uploaded['Id']}/download-token", headers=customer_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["ExpiresIn"] == 300

    response = await client.get(f"/api/v1/file/download/{body['Token']}")
    assert response.status_code == 200
    assert response.content == PDF_BYTES
    assert "no-store" in response.headers["cache-control"]
    assert "attachment" in response.headers["content-disposition"]

    response = await client.get("/api/v1/file/download/not-a-real-token")
    assert response.status_code == 400
    assert response.json() == {"Message": "Invalid or expired download token"}


async def test_private_download_requires_authentication(client, customer_headers):
    private = await upload_pdf(client, customer_headers, name="private.pdf")
    public = await upload_pdf(client, customer_headers, name="public.pdf", is_public=True)

    assert (await client.get(f"/api/v1/file/{private['Id']}/download")).status_code == 401
    assert (await client.get(f"/api/v1/file/{public['Id']}/download")).status_code == 200
    response = await client.get(f"/api/v1/file/{private['Id']}/download", headers=customer_headers)
    assert response.status_code == 200
    assert response.content == PDF_BYTES


async def test_rejected_upload_returns_message(client, customer_headers):
    response = await client.post(
        "/api/v1/file/upload",
        files={"file": ("fake.pdf", b"MZ\x90\x00 not a pdf", "application/pdf")},
        headers=customer_headers,
    )
    assert response.status_code == 400
    assert "Message" in response.json()


async def test_bulk_delete_endpoint(client, customer_headers):
    first = await upload_pdf(client, customer_headers)
    second = await upload_pdf(client, customer_headers)

    response = await client.request(
        "DELETE",
        "/api/v1/file/bulk-delete",
        json={"FileIds": [first["Id"], second["Id"], 999]},
        headers=customer_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["TotalRequested"] == 3
    assert body["SuccessCount"] == 2
    assert body["FailureCount"] == 1
    assert body["IsPartialSuccess"] is True
    assert body["Errors"][0]["EntityId"] == 999


async def test_integrity_and_diagnostic_are_privileged(client, customer_headers, admin_headers):
    uploaded = await upload_pdf(client, customer_headers)

    response = await client.post(f"/api/v1/file/{uploaded['Id']}/verify-integrity", headers=customer_headers)
    assert response.status_code == 403

    response = await client.post(f"/api/v1/file/{uploaded['Id']}/verify-integrity", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["IsValid"] is True

    response = await client.get(f"/api/v1/file/{uploaded['Id']}/diagnostic", headers=admin_headers)
    assert response.json()["HashMatches"] is True


async def test_cache_pattern_endpoint_rejects_wildcard_for_every_role(client, admin_headers):
    dev_headers = auth_headers(3, UserRole.DEV)
    for headers in (admin_headers, dev_headers):
        response = await client.delete("/api/v1/cache/pattern", params={"pattern": "*"}, headers=headers)
        assert response.status_code == 400
        assert response.json() == {"Message": "Use the /cache/all endpoint to clear all cache"}

    response = await client.delete("/api/v1/cache/pattern", headers=admin_headers)
    assert response.status_code == 400
    assert response.json() == {"Message": "Pattern is required"}


async def test_clear_all_cache_is_dev_only(client, admin_headers, dev_headers):
    assert (await client.delete("/api/v1/cache/all", headers=admin_headers)).status_code == 403
    response = await client.delete("/api/v1/cache/all", headers=dev_headers)
    assert response.status_code == 200


async def test_indexing_job_endpoints(client, admin_headers):
    response = await client.post("/api/v1/indexingjob/trigger/full", headers=admin_headers)
    assert response.status_code == 200
    job_id = response.json()["JobId"]
    assert response.json()["JobType"] == "Full"

    response = await client.get(f"/api/v1/indexingjob/{job_id}", headers=admin_headers)
    assert response.json()["Status"] == "Pending"

    response = await client.post(f"/api/v1/indexingjob/{job_id}/cancel", headers=admin_headers)
    assert response.json()["Status"] == "Cancelled"

    response = await client.post(f"/api/v1/indexingjob/{job_id}/cancel", headers=admin_headers)
    assert response.status_code == 400

    response = await client.post(f"/api/v1/indexingjob/{job_id}/retry", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["JobId"] != job_id

    listing = (await client.get("/api/v1/indexingjob/", headers=admin_headers)).json()
    assert listing["TotalCount"] == 2


async def test_search_requires_two_characters(client):
    response = await client.get("/api/v1/search", params={"q": "a"})
    assert response.status_code == 400
    assert (await client.get("/api/v1/search", params={"q": "ab"})).json() == []


async def test_cache_admin_routes_leave_download_tokens_alone(client, customer_headers, admin_headers, dev_headers):
    uploaded = await upload_pdf(client, customer_headers)
    await client.get(f"/api/v1/file/{uploaded['Id']}", headers=customer_headers)
    token = (await client.post(f"/api/v1/file/{uploaded['Id']}/download-token", headers=customer_headers)).json()["Token"]

    keys = (await client.get("/api/v1/cache/keys", headers=admin_headers)).json()["Keys"]
    assert f"file:id:{uploaded['Id']}" in keys
    assert not any(token in key for key in keys)

    response = await client.delete("/api/v1/cache/pattern", params={"pattern": "**"}, headers=admin_headers)
    assert response.status_code == 400

    assert (await client.delete("/api/v1/cache/all", headers=dev_headers)).status_code == 200
    response = await client.get(f"/api/v1/file/download/{token}")
    assert response.status_code == 200
    assert response.content == PDF_BYTES
