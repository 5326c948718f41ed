from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from database import get_db
from main import app
from services.session_token import issue_session_token


def auth_headers(user_id: str, *roles: str) -> dict:
    token = issue_session_token(user_id, roles=roles)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.pop(get_db, None)


async def _create(client, body=None, user="owner-1", scenario="scenario-1"):
    response = await client.post(f"/sharing/{scenario}", json=body or {}, headers=auth_headers(user))
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_password_protected_share_end_to_end(client):
    created = await _create(client, {"password": "abc123", "title": "Cheese"})
    share_url = created["shareUrl"]
    assert created["isPasswordProtected"] is True
    assert created["fullUrl"] == f"http://localhost:3005/shared/{share_url}"
    assert created["qrCodeUrl"].endswith(f"/sharing/qr/{share_url}")

    missing = await client.get(f"/sharing/shared/{share_url}")
    assert missing.status_code == 401
    assert missing.json()["detail"]["code"] == "password_required"

    wrong = await client.get(f"/sharing/shared/{share_url}", params={"password": "nope"})
    assert wrong.status_code == 401
    assert wrong.json()["detail"]["code"] == "password_incorrect"

    ok = await client.get(
        f"/sharing/shared/{share_url}",
        params={"password": "abc123"},
        headers={"User-Agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) Mobile/15E148"},
    )
    assert ok.status_code == 200
    scenario = ok.json()["scenario"]
    assert scenario["viewCount"] == 1
    assert scenario["title"] == "Cheese"
    assert scenario["scenarioData"]["topic"] == "the moon was made of cheese"

    owner_view = await client.get(f"/sharing/share/{share_url}", headers=auth_headers("owner-1"))
    assert owner_view.status_code == 200
    assert owner_view.json()["share"]["viewsByDevice"] == {"mobile": 1}


@pytest.mark.asyncio
async def test_create_requires_auth_and_ownership(client):
    assert (await client.post("/sharing/scenario-1", json={})).status_code == 401

    foreign = await client.post("/sharing/scenario-2", json={}, headers=auth_headers("owner-1"))
    assert foreign.status_code == 404


@pytest.mark.asyncio
async def test_create_rejects_past_expiry_and_long_title(client):
    past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
    expired = await client.post("/sharing/scenario-1", json={"expiresAt": past}, headers=auth_headers("owner-1"))
    assert expired.status_code == 400
    assert expired.json()["detail"]["code"] == "validation_error"
    assert expired.json()["detail"]["field"] == "expiresAt"

    too_long = await client.post("/sharing/scenario-1", json={"title": "x" * 101}, headers=auth_headers("owner-1"))
    assert too_long.status_code == 400
    assert too_long.json()["detail"]["field"] == "title"


@pytest.mark.asyncio
async def test_unknown_share_is_404(client):
    response = await client.get("/sharing/shared/does-not-exist")
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "not_found"


@pytest.mark.asyncio
async def test_strangers_cannot_manage_a_share(client):
    share_url = (await _create(client))["shareUrl"]

    patch = await client.patch(f"/sharing/share/{share_url}", json={"title": "pwned"}, headers=auth_headers("owner-2"))
    assert patch.status_code == 404
    delete = await client.delete(f"/sharing/share/{share_url}", headers=auth_headers("owner-2"))
    assert delete.status_code == 404
    view = await client.get(f"/sharing/share/{share_url}", headers=auth_headers("owner-2"))
    assert view.status_code == 404

    assert (await client.get(f"/sharing/shared/{share_url}")).status_code == 200


@pytest.mark.asyncio
async def test_owner_patch_and_revoke(client):
    share_url = (await _create(client))["shareUrl"]
    headers = auth_headers("owner-1")

    patched = await client.patch(
        f"/sharing/share/{share_url}",
        json={"title": "New title", "password": "letmein"},
        headers=headers,
    )
    assert patched.status_code == 200
    assert patched.json()["share"]["title"] == "New title"
    assert patched.json()["share"]["isPasswordProtected"] is True

    assert (await client.get(f"/sharing/shared/{share_url}")).status_code == 401

    revoked = await client.delete(f"/sharing/share/{share_url}", headers=headers)
    assert revoked.status_code == 200
    inactive = await client.get(f"/sharing/shared/{share_url}", params={"password": "letmein"})
    assert inactive.status_code == 403
    assert inactive.json()["detail"]["code"] == "share_inactive"

    reactivated = await client.patch(f"/sharing/share/{share_url}", json={"isActive": True}, headers=headers)
    assert reactivated.json()["share"]["isActive"] is True


@pytest.mark.asyncio
async def test_record_share_platforms(client):
    share_url = (await _create(client))["shareUrl"]

    twitter = await client.post(f"/sharing/share/{share_url}/record", json={"platform": "twitter"})
    assert twitter.status_code == 200
    assert twitter.json() == {"shareUrl": share_url, "platform": "twitter", "shareCount": 1}

    unknown = await client.post(f"/sharing/share/{share_url}/record", json={"platform": "friendster"})
    assert unknown.json()["platform"] == "other"
    assert unknown.json()["shareCount"] == 2

    owner_view = await client.get(f"/sharing/share/{share_url}", headers=auth_headers("owner-1"))
    assert owner_view.json()["share"]["sharesByPlatform"] == {"twitter": 1, "other": 1}


@pytest.mark.asyncio
async def test_qr_code_is_png_and_counts_as_share(client):
    share_url = (await _create(client))["shareUrl"]

    response = await client.get(f"/sharing/qr/{share_url}")
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert response.content.startswith(b"\x89PNG")

    owner_view = await client.get(f"/sharing/share/{share_url}", headers=auth_headers("owner-1"))
    assert owner_view.json()["share"]["sharesByPlatform"] == {"qr": 1}


@pytest.mark.asyncio
async def test_metadata_does_not_leak_protected_content(client):
    open_share = (await _create(client))["shareUrl"]
    locked_share = (await _create(client, {"password": "abc123"}))["shareUrl"]

    open_meta = (await client.get(f"/sharing/metadata/{open_share}")).json()
    locked_meta = (await client.get(f"/sharing/metadata/{locked_share}")).json()

    assert open_meta["description"].startswith("Dairy farmers")
    assert "Dairy" not in locked_meta["description"]
    assert locked_meta["title"] == "What if: the moon was made of cheese"


@pytest.mark.asyncio
async def test_my_shares_and_analytics(client):
    first = (await _create(client))["shareUrl"]
    await _create(client, {"forceNew": True})
    await client.get(f"/sharing/shared/{first}")
    await client.post(f"/sharing/share/{first}/record", json={"platform": "email"})

    mine = await client.get("/sharing/my", headers=auth_headers("owner-1"))
    assert mine.status_code == 200
    assert mine.json()["pagination"]["total"] == 2

    analytics = await client.get("/sharing/analytics", headers=auth_headers("owner-1"))
    assert analytics.json() == {
        "totalShares": 2,
        "totalViews": 1,
        "totalShareEvents": 1,
        "activeShares": 2,
        "platformStats": {"email": 1},
    }
