"""
Tests API — patterns, usages, invalidation en arrière-plan, lazy cleanup.
TestClient exécute les BackgroundTasks de façon synchrone → invalidation visible après la réponse.
"""
import pytest

from conftest import block, ref

USER = {"X-User-Id": "usr-1", "X-Team-Id": "team-1"}


def _create_pattern(client, slug="newsletter", status="published", blocks=None):
    r = client.post("/api/patterns", headers=USER, json={
        "title": "Newsletter", "slug": slug, "status": status, "blocks": blocks or [block("pb1")],
    })
    assert r.status_code == 201
    return r.json()["id"]


def _create_document(client, entity_type, slug, blocks):
    r = client.post("/api/documents", headers=USER, json={
        "entity_type": entity_type, "slug": slug, "title": slug.title(), "blocks": blocks,
    })
    assert r.status_code == 201
    return r.json()["id"]


@pytest.fixture
def seeded(client):
    pid = _create_pattern(client)
    home = _create_document(client, "pages", "home", [block("hero"), ref(pid, "inst-1")])
    hello = _create_document(client, "posts", "hello", [ref(pid, "inst-2")])
    return pid, home, hello


# ── Patterns ──────────────────────────────────────────────────────────────

class TestPatternsApi:

    def test_identity_required(self, client):
        assert client.post("/api/patterns", json={"title": "T", "slug": "s"}).status_code == 401

    def test_create_get_list(self, client):
        pid = _create_pattern(client)
        r = client.get(f"/api/patterns/{pid}", headers=USER)
        assert r.status_code == 200
        assert r.json()["ownerId"] == "usr-1"
        assert r.json()["blocks"] == [block("pb1")]
        body = client.get("/api/patterns", headers=USER).json()
        assert body["total"] == 1

    def test_other_team_gets_404(self, client):
        pid = _create_pattern(client)
        r = client.get(f"/api/patterns/{pid}", headers={"X-User-Id": "u", "X-Team-Id": "team-2"})
        assert r.status_code == 404

    def test_validation_error_422(self, client):
        _create_pattern(client, slug="dup")
        r = client.post("/api/patterns", headers=USER, json={"title": "Other", "slug": "dup"})
        assert r.status_code == 422

    def test_by_ids_only_published(self, client):
        pub = _create_pattern(client, slug="pub")
        draft = _create_pattern(client, slug="draft", status="draft")
        r = client.post("/api/patterns/by-ids", json={"ids": [pub, draft, " "]})
        assert [p["id"] for p in r.json()["data"]] == [pub]
        assert client.post("/api/patterns/by-ids", json={"ids": None}).json() == {"data": []}


# ── Usages + invalidation ─────────────────────────────────────────────────

class TestUsagesAndInvalidation:

    def test_usages_endpoint(self, client, seeded):
        pid, home, hello = seeded
        body = client.get(f"/api/patterns/{pid}/usages", headers=USER).json()
        assert body["total"] == 2
        assert sorted((c["entityType"], c["count"]) for c in body["counts"]) == [("pages", 1), ("posts", 1)]

        filtered = client.get(f"/api/patterns/{pid}/usages", headers=USER,
                              params={"entityType": "pages", "limit": 10}).json()
        assert [u["entityId"] for u in filtered["usages"]] == [home]
        assert filtered["total"] == 2

    def test_update_triggers_one_revalidation_per_usage(self, client, seeded, revalidator):
        pid, _, _ = seeded
        r = client.patch(f"/api/patterns/{pid}", headers=USER, json={"title": "Newsletter v2"})
        assert r.status_code == 200
        assert r.json()["title"] == "Newsletter v2"
        assert revalidator.revalidate.call_count == 2
        assert sorted(c.args[0] for c in revalidator.revalidate.call_args_list) == ["/blog/hello", "/home"]

        tasks = client.get(f"/api/patterns/{pid}/invalidations", headers=USER).json()
        assert tasks["total"] == 2
        assert {t["status"] for t in tasks["tasks"]} == {"DONE"}

    def test_invalidation_failure_does_not_fail_request(self, client, seeded, revalidator):
        pid, _, _ = seeded
        revalidator.revalidate.side_effect = ConnectionError("down")
        r = client.patch(f"/api/patterns/{pid}", headers=USER, json={"description": "x"})
        assert r.status_code == 200

    def test_update_unknown_pattern_404(self, client):
        r = client.patch("/api/patterns/nope", headers=USER, json={"title": "x"})
        assert r.status_code == 404

    def test_nested_pattern_update_revalidates_parent_pages(self, client, revalidator):
        inner = _create_pattern(client, slug="inner")
        outer = _create_pattern(client, slug="outer", blocks=[ref(inner)])
        _create_document(client, "pages", "home", [ref(outer)])

        usages = client.get(f"/api/patterns/{inner}/usages", headers=USER).json()
        assert [(u["entityType"], u["entityId"]) for u in usages["usages"]] == [("patterns", outer)]

        client.patch(f"/api/patterns/{inner}", headers=USER, json={"title": "Inner v2"})
        revalidator.revalidate.assert_called_once_with("/home")


class TestTeamScoping:

    def test_usages_require_identity(self, client, seeded):
        pid, _, _ = seeded
        assert client.get(f"/api/patterns/{pid}/usages").status_code == 401
        assert client.get(f"/api/patterns/{pid}/invalidations").status_code == 401

    def test_other_team_gets_404(self, client, seeded):
        pid, _, _ = seeded
        other = {"X-User-Id": "usr-2", "X-Team-Id": "team-2"}
        assert client.get(f"/api/patterns/{pid}/usages", headers=other).status_code == 404
        assert client.get(f"/api/patterns/{pid}/invalidations", headers=other).status_code == 404

    def test_deleted_pattern_usages_still_visible(self, client, seeded):
        pid, _, _ = seeded
        client.delete(f"/api/patterns/{pid}", headers=USER)
        body = client.get(f"/api/patterns/{pid}/usages", headers=USER).json()
        assert body["total"] == 2


# ── Suppression + lazy cleanup ────────────────────────────────────────────

class TestDeleteAndLazyCleanup:

    def test_delete_keeps_reference_then_editor_cleanup(self, client, seeded, revalidator):
        pid, home, _ = seeded
        assert client.delete(f"/api/patterns/{pid}", headers=USER).json() == {"deleted": True, "id": pid}
        assert revalidator.revalidate.call_count == 2

        editor = client.get(f"/api/documents/{home}/editor", headers=USER).json()
        kinds = [n["kind"] for n in editor["blocks"]]
        assert kinds == ["block", "deleted_pattern"]
        assert editor["blocks"][1]["node"] == ref(pid, "inst-1")
        assert editor["blocks"][1]["actions"] == ["remove"]

        # rendu : la référence orpheline ne rend rien
        assert client.get(f"/api/documents/{home}/resolved").json()["blocks"] == [block("hero")]

        after = client.post(f"/api/documents/{home}/blocks/inst-1/remove", headers=USER).json()
        assert [n["kind"] for n in after["blocks"]] == ["block"]

        saved = client.put(f"/api/documents/{home}/blocks", headers=USER,
                           json={"blocks": [block("hero")]}).json()
        assert saved["blocks"] == [block("hero")]

    def test_save_prunes_orphans(self, client, seeded):
        pid, home, _ = seeded
        client.delete(f"/api/patterns/{pid}", headers=USER)
        saved = client.put(f"/api/documents/{home}/blocks", headers=USER,
                           json={"blocks": [block("hero"), ref(pid, "inst-1")]}).json()
        assert saved["blocks"] == [block("hero")]


def test_resolved_and_preview(client):
    draft = _create_pattern(client, slug="draft", status="draft", blocks=[block("d1")])
    doc = _create_document(client, "pages", "landing", [ref(draft)])
    assert client.get(f"/api/documents/{doc}/resolved").json()["blocks"] == []
    r = client.get(f"/api/documents/{doc}/resolved", params={"preview": True}, headers={"X-User-Id": "usr-1"})
    assert r.json()["blocks"] == [block("d1")]


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
