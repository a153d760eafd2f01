"""
Snapgram Backend — API Integration Tests
==========================================

What:  End-to-end tests through the FastAPI app over ASGITransport, with a
       SQLite store and temporary file storage.

What we test:
    ✅ Health check
    ✅ sign-up → me → sign-out → 401
    ✅ Create post (multipart), read it back, like it, see the like
    ✅ Feed: distance filter, cursor, server-side infinite feed
    ✅ Follow / unfollow
    ✅ Error envelope shape for 400 / 401 / 403 / 404
    ✅ X-Request-ID propagation
"""

import pytest

PASSWORD = "correct horse battery"


async def _sign_up(client, name, latitude=None, longitude=None):
    body = {
        "name": name.title(),
        "username": name,
        "email": f"{name}@example.com",
        "password": PASSWORD,
    }
    if latitude is not None:
        body.update(latitude=latitude, longitude=longitude)
    response = await client.post("/api/auth/sign-up", json=body)
    assert response.status_code == 201, response.text
    data = response.json()
    return {"Authorization": f"Bearer {data['token']}"}, data["user"]


async def _create_post(client, headers, image, caption="A day out", tags="sun, sea"):
    response = await client.post(
        "/api/posts",
        headers=headers,
        data={"caption": caption, "location": "Paris", "tags": tags},
        files={"file": ("photo.jpg", image, "image/jpeg")},
    )
    assert response.status_code == 201, response.text
    return response.json()


def _assert_envelope(response, status, error):
    assert response.status_code == status
    body = response.json()
    assert body["error"] == error
    assert body["message"]
    assert "details" in body


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, test_client):
        response = await test_client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["circuit_breaker"] == "closed"

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, test_client):
        response = await test_client.get("/health", headers={"X-Request-ID": "trace-123"})
        assert response.headers["X-Request-ID"] == "trace-123"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, test_client):
        response = await test_client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 8


class TestAuth:
    @pytest.mark.asyncio
    async def test_session_lifecycle(self, test_client):
        headers, user = await _sign_up(test_client, "alice", 48.85, 2.35)

        me = await test_client.get("/api/auth/me", headers=headers)
        assert me.status_code == 200
        assert me.json()["id"] == user["id"]
        assert me.json()["latitude"] == 48.85

        out = await test_client.post("/api/auth/sign-out", headers=headers)
        assert out.json() == {"status": "ok"}

        after = await test_client.get("/api/auth/me", headers=headers)
        _assert_envelope(after, 401, "authentication_error")
        assert after.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_sign_in_with_wrong_password(self, test_client):
        await _sign_up(test_client, "bob")
        response = await test_client.post(
            "/api/auth/sign-in", json={"email": "bob@example.com", "password": "not-it"}
        )
        _assert_envelope(response, 401, "authentication_error")

    @pytest.mark.asyncio
    async def test_duplicate_email(self, test_client):
        await _sign_up(test_client, "carol")
        response = await test_client.post(
            "/api/auth/sign-up",
            json={"name": "Carol", "username": "carol2", "email": "carol@example.com", "password": PASSWORD},
        )
        _assert_envelope(response, 400, "validation_error")

    @pytest.mark.asyncio
    async def test_short_password(self, test_client):
        response = await test_client.post(
            "/api/auth/sign-up",
            json={"name": "Dan", "username": "dan", "email": "dan@example.com", "password": "short"},
        )
        _assert_envelope(response, 400, "validation_error")
        assert response.json()["details"]["field"] == "password"

    @pytest.mark.asyncio
    async def test_update_location(self, test_client):
        headers, _ = await _sign_up(test_client, "erin")

        response = await test_client.put(
            "/api/auth/me/location", headers=headers, json={"latitude": 10.0, "longitude": 20.0}
        )
        assert response.status_code == 200
        me = await test_client.get("/api/auth/me", headers=headers)
        assert (me.json()["latitude"], me.json()["longitude"]) == (10.0, 20.0)

    @pytest.mark.asyncio
    async def test_protected_route_without_token(self, test_client):
        response = await test_client.post("/api/auth/sign-out")
        _assert_envelope(response, 401, "authentication_error")


class TestPosts:
    @pytest.mark.asyncio
    async def test_create_read_like(self, test_client, sample_image_bytes):
        headers, user = await _sign_up(test_client, "alice")
        post = await _create_post(test_client, headers, sample_image_bytes)

        assert post["creator_id"] == user["id"]
        assert post["tags"] == ["sun", "sea"]

        fetched = await test_client.get(f"/api/posts/{post['id']}")
        assert fetched.json()["likes"] == []

        liked = await test_client.put(
            f"/api/posts/{post['id']}/likes", headers=headers, json={"likes": [user["id"]]}
        )
        assert liked.status_code == 200

        fetched = await test_client.get(f"/api/posts/{post['id']}")
        assert fetched.json()["likes"] == [user["id"]]

        preview = await test_client.get(f"/api/files/{post['image_id']}/preview")
        assert preview.status_code == 200
        assert preview.content == sample_image_bytes

    @pytest.mark.asyncio
    async def test_recent_posts_and_search(self, test_client, sample_image_bytes):
        headers, _ = await _sign_up(test_client, "alice")
        await _create_post(test_client, headers, sample_image_bytes, caption="Sunset in Lisbon")
        await _create_post(test_client, headers, sample_image_bytes, caption="Morning coffee")

        recent = await test_client.get("/api/posts/recent")
        assert [p["caption"] for p in recent.json()] == ["Morning coffee", "Sunset in Lisbon"]

        found = await test_client.get("/api/posts/search", params={"q": "lisbon"})
        assert [p["caption"] for p in found.json()] == ["Sunset in Lisbon"]

    @pytest.mark.asyncio
    async def test_only_creator_may_delete(self, test_client, sample_image_bytes):
        owner, _ = await _sign_up(test_client, "alice")
        other, _ = await _sign_up(test_client, "bob")
        post = await _create_post(test_client, owner, sample_image_bytes)

        denied = await test_client.delete(f"/api/posts/{post['id']}", headers=other)
        _assert_envelope(denied, 403, "permission_denied")

        deleted = await test_client.delete(f"/api/posts/{post['id']}", headers=owner)
        assert deleted.status_code == 200
        gone = await test_client.get(f"/api/posts/{post['id']}")
        _assert_envelope(gone, 404, "not_found")

    @pytest.mark.asyncio
    async def test_update_caption(self, test_client, sample_image_bytes):
        headers, _ = await _sign_up(test_client, "alice")
        post = await _create_post(test_client, headers, sample_image_bytes)

        response = await test_client.patch(
            f"/api/posts/{post['id']}", headers=headers, data={"caption": "Edited"}
        )

        assert response.status_code == 200
        assert response.json()["caption"] == "Edited"
        assert response.json()["image_id"] == post["image_id"]

    @pytest.mark.asyncio
    async def test_save_and_saved_list(self, test_client, sample_image_bytes):
        headers, user = await _sign_up(test_client, "alice")
        other, _ = await _sign_up(test_client, "bob")
        post = await _create_post(test_client, headers, sample_image_bytes)

        saved = await test_client.post(f"/api/posts/{post['id']}/save", headers=headers)
        assert saved.status_code == 201

        mine = await test_client.get(f"/api/users/{user['id']}/saved", headers=headers)
        assert [s["post"]["id"] for s in mine.json()] == [post["id"]]

        theirs = await test_client.get(f"/api/users/{user['id']}/saved", headers=other)
        _assert_envelope(theirs, 403, "permission_denied")

        await test_client.delete(f"/api/saves/{saved.json()['id']}", headers=headers)
        mine = await test_client.get(f"/api/users/{user['id']}/saved", headers=headers)
        assert mine.json() == []

    @pytest.mark.asyncio
    async def test_unknown_post(self, test_client):
        response = await test_client.get("/api/posts/missing")
        _assert_envelope(response, 404, "not_found")
        assert response.json()["details"]["resource"] == "post"


class TestFeed:
    @pytest.mark.asyncio
    async def test_distance_filter(self, test_client, sample_image_bytes):
        paris, _ = await _sign_up(test_client, "paris", 48.8566, 2.3522)
        sydney, _ = await _sign_up(test_client, "sydney", -33.8688, 151.2093)
        near = await _create_post(test_client, paris, sample_image_bytes, caption="Near")
        await _create_post(test_client, sydney, sample_image_bytes, caption="Far")

        response = await test_client.get(
            "/api/feed", params={"latitude": 51.5074, "longitude": -0.1278, "distance": "500"}
        )

        assert response.status_code == 200
        page = response.json()
        assert [p["id"] for p in page["posts"]] == [near["id"]]
        assert page["has_more"] is False
        assert page["batch_size"] == 2

    @pytest.mark.asyncio
    async def test_all_returns_everything(self, test_client, sample_image_bytes):
        headers, _ = await _sign_up(test_client, "alice")
        for i in range(3):
            await _create_post(test_client, headers, sample_image_bytes, caption=f"post {i}")

        response = await test_client.get("/api/feed", params={"distance": "all"})

        assert len(response.json()["posts"]) == 3

    @pytest.mark.asyncio
    async def test_invalid_distance(self, test_client):
        response = await test_client.get(
            "/api/feed", params={"latitude": 0, "longitude": 0, "distance": "-3"}
        )
        _assert_envelope(response, 400, "validation_error")

    @pytest.mark.asyncio
    async def test_out_of_range_latitude(self, test_client):
        response = await test_client.get(
            "/api/feed", params={"latitude": 95, "longitude": 0, "distance": "10"}
        )
        _assert_envelope(response, 400, "validation_error")

    @pytest.mark.asyncio
    async def test_session_feed_uses_profile_location(self, test_client, sample_image_bytes):
        viewer, _ = await _sign_up(test_client, "viewer", 48.8566, 2.3522)
        far, _ = await _sign_up(test_client, "far", -33.8688, 151.2093)
        mine = await _create_post(test_client, viewer, sample_image_bytes)
        await _create_post(test_client, far, sample_image_bytes)

        response = await test_client.post("/api/feed/next", headers=viewer, json={"distance": "100"})

        assert response.status_code == 200
        body = response.json()
        assert body["state"] == "exhausted"
        assert body["has_more"] is False
        assert body["page_count"] == 1
        assert [p["id"] for p in body["posts"]] == [mine["id"]]

    @pytest.mark.asyncio
    async def test_session_feed_requires_sign_in(self, test_client):
        response = await test_client.post("/api/feed/next", json={})
        _assert_envelope(response, 401, "authentication_error")


class TestFollowGraph:
    @pytest.mark.asyncio
    async def test_follow_unfollow(self, test_client):
        alice, a = await _sign_up(test_client, "alice")
        _, b = await _sign_up(test_client, "bob")

        followed = await test_client.post(f"/api/users/{b['id']}/follow", headers=alice)
        assert followed.status_code == 200
        assert followed.json()["followed"]["followers"] == [a["id"]]

        followers = await test_client.get(f"/api/users/{b['id']}/followers")
        assert [u["id"] for u in followers.json()] == [a["id"]]

        await test_client.delete(f"/api/users/{b['id']}/follow", headers=alice)

        followers = await test_client.get(f"/api/users/{b['id']}/followers")
        following = await test_client.get(f"/api/users/{a['id']}/following")
        assert followers.json() == []
        assert following.json() == []

    @pytest.mark.asyncio
    async def test_follow_unknown_user(self, test_client):
        alice, _ = await _sign_up(test_client, "alice")
        response = await test_client.post("/api/users/ghost/follow", headers=alice)
        _assert_envelope(response, 404, "not_found")
