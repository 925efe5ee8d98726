import pytest
from fastapi.testclient import TestClient

from gallerypro.api.main import app


@pytest.fixture
def small_payload_client(tmp_path, monkeypatch):
    """Test client whose storage ceiling is tiny."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "db" / "api.db"))
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "config" / "config.json"))
    monkeypatch.setenv("GP_MAX_PAYLOAD_BYTES", "1500")

    with TestClient(app) as c:
        yield c


def create_rule(client, rule, shop=None):
    headers = {"X-Shop-Domain": shop} if shop else {}
    response = client.post("/api/rules/", json=rule, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


class TestHealthEndpoints:

    @pytest.mark.unit
    def test_liveness_check(self, client):
        """Test liveness check endpoint."""
        response = client.get("/health/live")
        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    @pytest.mark.unit
    def test_readiness_check(self, client):
        """Test readiness check endpoint."""
        response = client.get("/health/ready")
        assert response.status_code == 200
        data = response.json()
        assert data["ready"] is True
        assert data["checks"] == {"database": True, "filesystem": True}
        assert "timestamp" in data

    @pytest.mark.unit
    def test_health_check(self, client):
        data = client.get("/health/").json()
        assert data["status"] == "healthy"
        assert data["service"] == "Gallery Pro API"


class TestRuleEndpoints:

    @pytest.mark.api
    def test_metadata(self, client):
        data = client.get("/api/rules/meta").json()
        assert len(data["conditionTypes"]) == 12
        assert data["groupOperators"] == ["AND", "OR", "NOT"]
        assert "badge" in data["actionTypes"]

    @pytest.mark.api
    def test_empty_document(self, client):
        """Test the rules document of a new shop."""
        response = client.get("/api/rules/")
        assert response.status_code == 200
        data = response.json()
        assert data["rules"] == []
        assert data["evaluationMode"] == "first_match"
        assert data["globalSettings"]["enableRules"] is True

    @pytest.mark.api
    def test_create_and_get(self, client, mobile_video_rule):
        created = create_rule(client, mobile_video_rule)
        assert created["id"] == "rule_mobile"
        assert created["createdAt"]

        response = client.get("/api/rules/rule_mobile")
        assert response.status_code == 200
        assert response.json()["name"] == "Hide videos on mobile"

        rules = client.get("/api/rules/").json()["rules"]
        assert [r["id"] for r in rules] == ["rule_mobile"]

    @pytest.mark.api
    def test_create_invalid_rule(self, client, mobile_video_rule):
        """Test that invalid rules are rejected with field errors."""
        response = client.post("/api/rules/", json={**mobile_video_rule, "name": "", "priority": -1})
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["message"] == "Rule validation failed"
        assert [e["field"] for e in detail["errors"]] == ["name", "priority"]

    @pytest.mark.api
    def test_update_rule(self, client, mobile_video_rule):
        create_rule(client, mobile_video_rule)

        response = client.put("/api/rules/rule_mobile", json={"name": "Renamed"})
        assert response.status_code == 200
        assert response.json()["name"] == "Renamed"
        assert response.json()["status"] == "active"

        response = client.put("/api/rules/rule_mobile", json={"priority": 5000})
        assert response.status_code == 400

    @pytest.mark.api
    def test_missing_rule(self, client):
        assert client.get("/api/rules/nope").status_code == 404
        assert client.put("/api/rules/nope", json={"name": "x"}).status_code == 404
        assert client.delete("/api/rules/nope").status_code == 404
        assert client.post("/api/rules/nope/duplicate").status_code == 404
        assert client.post("/api/rules/nope/enable").status_code == 404

    @pytest.mark.api
    def test_delete_rule(self, client, mobile_video_rule):
        create_rule(client, mobile_video_rule)
        response = client.delete("/api/rules/rule_mobile")
        assert response.status_code == 200
        assert response.json() == {"message": "Rule deleted successfully"}
        assert client.get("/api/rules/rule_mobile").status_code == 404

    @pytest.mark.api
    def test_duplicate_enable_disable(self, client, mobile_video_rule):
        create_rule(client, mobile_video_rule)

        copy = client.post("/api/rules/rule_mobile/duplicate").json()
        assert copy["name"] == "Hide videos on mobile (Copy)"
        assert copy["status"] == "draft"

        assert client.post(f"/api/rules/{copy['id']}/enable").json() == {"message": "Rule enabled"}
        assert client.get(f"/api/rules/{copy['id']}").json()["status"] == "active"
        assert client.post("/api/rules/rule_mobile/disable").json() == {"message": "Rule disabled"}
        assert client.get("/api/rules/rule_mobile").json()["status"] == "paused"

    @pytest.mark.api
    def test_reorder(self, client, mobile_video_rule):
        create_rule(client, mobile_video_rule)
        create_rule(client, {**mobile_video_rule, "id": "rule_other", "priority": 2})

        response = client.post("/api/rules/reorder", json={"ruleIds": ["rule_other", "rule_mobile"]})
        assert response.status_code == 200
        rules = response.json()["rules"]
        assert [(r["id"], r["priority"]) for r in rules] == [("rule_other", 0), ("rule_mobile", 1)]

    @pytest.mark.api
    def test_bulk(self, client, mobile_video_rule):
        create_rule(client, mobile_video_rule)
        create_rule(client, {**mobile_video_rule, "id": "rule_other"})

        response = client.post("/api/rules/bulk", json={"action": "pause", "ruleIds": ["rule_mobile", "rule_other"]})
        assert response.json() == {"action": "pause", "affected": 2}

        response = client.post("/api/rules/bulk", json={"action": "delete", "ruleIds": ["rule_other"]})
        assert response.json() == {"action": "delete", "affected": 1}
        assert [r["id"] for r in client.get("/api/rules/").json()["rules"]] == ["rule_mobile"]

        assert client.post("/api/rules/bulk", json={"action": "delete", "ruleIds": []}).status_code == 422

    @pytest.mark.api
    def test_validate_without_saving(self, client, mobile_video_rule):
        assert client.post("/api/rules/validate", json=mobile_video_rule).json() == {"valid": True, "errors": []}

        data = client.post("/api/rules/validate", json={**mobile_video_rule, "actions": []}).json()
        assert data["valid"] is False
        assert data["errors"][0]["field"] == "actions"
        assert client.get("/api/rules/").json()["rules"] == []

    @pytest.mark.api
    def test_shops_are_isolated(self, client, mobile_video_rule):
        create_rule(client, mobile_video_rule, shop="a.myshopify.com")

        other = client.get("/api/rules/", headers={"X-Shop-Domain": "b.myshopify.com"}).json()
        assert other["rules"] == []
        own = client.get("/api/rules/", headers={"X-Shop-Domain": "a.myshopify.com"}).json()
        assert len(own["rules"]) == 1

    @pytest.mark.api
    def test_payload_too_large(self, small_payload_client, mobile_video_rule):
        response = small_payload_client.post(
            "/api/rules/", json={**mobile_video_rule, "description": "x" * 400}
        )
        assert response.status_code == 200

        response = small_payload_client.post(
            "/api/rules/", json={**mobile_video_rule, "id": "rule_big", "description": "x" * 2000}
        )
        assert response.status_code == 413


class TestTemplateEndpoints:

    @pytest.mark.api
    def test_list_templates(self, client):
        templates = client.get("/api/rules/templates").json()
        assert len(templates) == 8
        assert templates[0]["configOptions"]

        categories = client.get("/api/rules/templates/categories").json()
        assert len(categories) == 8

    @pytest.mark.api
    def test_create_from_template(self, client):
        response = client.post("/api/rules/from-template", json={
            "templateId": "mobile-optimization",
            "config": {"actions[0].maxImages": 4},
        })
        assert response.status_code == 200
        rule = response.json()
        assert rule["actions"][0]["maxImages"] == 4
        assert [r["id"] for r in client.get("/api/rules/").json()["rules"]] == [rule["id"]]

    @pytest.mark.api
    def test_create_without_saving(self, client):
        response = client.post("/api/rules/from-template", json={"templateId": "vip-customer", "save": False})
        assert response.status_code == 200
        assert client.get("/api/rules/").json()["rules"] == []

    @pytest.mark.api
    def test_template_errors(self, client):
        response = client.post("/api/rules/from-template", json={"templateId": "nope"})
        assert response.status_code == 404

        response = client.post("/api/rules/from-template", json={"templateId": "sale-badge"})
        assert response.status_code == 400
        assert response.json()["detail"]["message"] == "Invalid template config"


class TestPreviewEndpoints:

    @pytest.mark.rules
    def test_sample_contexts(self, client):
        contexts = client.get("/api/rules/preview").json()
        assert len(contexts) == 5
        assert all("name" in c and "context" in c for c in contexts)

    @pytest.mark.rules
    def test_preview_saved_rules(self, client, mobile_video_rule):
        """Test that a mobile visitor does not see the video."""
        create_rule(client, mobile_video_rule)

        response = client.post("/api/rules/preview", json={"context": {"device": "mobile"}})
        assert response.status_code == 200
        data = response.json()

        media = data["result"]["media"]
        assert [m["id"] for m in media if not m["visible"]] == ["media_5"]
        assert media[-1]["newPosition"] == -1
        assert data["result"]["matchedRules"] == [{"id": "rule_mobile", "name": "Hide videos on mobile"}]
        assert data["result"]["usedLegacyFallback"] is False
        assert data["debug"]["rulesEvaluated"] == 1
        assert data["context"]["device"] == "mobile"

    @pytest.mark.rules
    def test_preview_with_inline_rules(self, client, mobile_video_rule):
        response = client.post("/api/rules/preview", json={
            "rules": [mobile_video_rule],
            "context": {"device": "desktop"},
        })
        data = response.json()
        assert data["result"]["matchedRules"] == []
        assert all(m["visible"] for m in data["result"]["media"])

    @pytest.mark.rules
    def test_preview_without_rules(self, client):
        data = client.post("/api/rules/preview", json={}).json()
        assert data["result"]["usedLegacyFallback"] is True
        assert len(data["result"]["media"]) == 5

    @pytest.mark.rules
    def test_preview_disabled_engine(self, client, mobile_video_rule):
        response = client.post("/api/rules/preview", json={
            "rules": [mobile_video_rule],
            "context": {"device": "mobile"},
            "settings": {"enableRules": False},
        })
        data = response.json()
        assert data["result"]["matchedRules"] == []
        assert data["result"]["usedLegacyFallback"] is True

    @pytest.mark.rules
    def test_preview_rejects_invalid_rules(self, client, mobile_video_rule):
        response = client.post("/api/rules/preview", json={"rules": [{**mobile_video_rule, "actions": []}]})
        assert response.status_code == 400

    @pytest.mark.rules
    def test_preview_rejects_malformed_condition_values(self, client, mobile_video_rule):
        rule = {**mobile_video_rule, "conditions": {"operator": "OR", "conditions": [
            {"type": "time", "field": "day_of_week", "operator": "equals", "value": ["sat"]},
            {"type": "ab_test", "testId": "t", "bucketMin": None, "bucketMax": "half"},
            {"type": "time", "field": "date", "operator": "in_last_n_days", "value": 10 ** 9},
        ]}}
        response = client.post("/api/rules/preview", json={"rules": [rule]})
        assert response.status_code == 400
        assert [e["field"] for e in response.json()["detail"]["errors"]] == [
            "conditions.conditions[0].value",
            "conditions.conditions[1].bucketMin",
            "conditions.conditions[1].bucketMax",
            "conditions.conditions[2].value",
        ]


class TestProductOverrideEndpoints:

    @pytest.mark.api
    def test_overrides_lifecycle(self, client, mobile_video_rule):
        create_rule(client, mobile_video_rule)
        assert client.get("/api/rules/products/p1/overrides").status_code == 404

        product_rule = {**mobile_video_rule, "id": "rule_product", "name": "Product only"}
        response = client.put("/api/rules/products/p1/overrides", json={
            "disabledRuleIds": ["rule_mobile"],
            "rules": [product_rule],
        })
        assert response.status_code == 200
        assert response.json()["disableShopRules"] is False

        effective = client.get("/api/rules/products/p1/effective").json()
        assert effective["productId"] == "p1"
        assert [r["id"] for r in effective["rules"]] == ["rule_product"]
        assert effective["total"] == 1

        assert client.delete("/api/rules/products/p1/overrides").status_code == 200
        assert client.delete("/api/rules/products/p1/overrides").status_code == 404
        assert client.get("/api/rules/products/p1/effective").json()["total"] == 1

    @pytest.mark.api
    def test_invalid_override_rule(self, client, mobile_video_rule):
        response = client.put("/api/rules/products/p1/overrides", json={
            "rules": [{**mobile_video_rule, "name": ""}],
        })
        assert response.status_code == 400


class TestSettingsEndpoints:

    @pytest.mark.api
    def test_get_settings(self, client):
        data = client.get("/api/settings/rules").json()
        assert data == {
            "globalSettings": {
                "enableRules": True,
                "fallbackBehavior": "default_gallery",
                "maxRulesPerEvaluation": 50,
                "useLegacyFallback": True,
            },
            "evaluationMode": "first_match",
        }

    @pytest.mark.api
    def test_partial_update(self, client):
        response = client.put("/api/settings/rules", json={
            "globalSettings": {"fallbackBehavior": "show_all"},
            "evaluationMode": "all_matches",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["globalSettings"]["fallbackBehavior"] == "show_all"
        assert data["globalSettings"]["enableRules"] is True
        assert data["evaluationMode"] == "all_matches"

    @pytest.mark.api
    def test_invalid_update(self, client):
        assert client.put("/api/settings/rules", json={"evaluationMode": "random"}).status_code == 422
        response = client.put("/api/settings/rules", json={"globalSettings": {"maxRulesPerEvaluation": 0}})
        assert response.status_code == 422


class TestMappingEndpoints:

    @pytest.mark.api
    def test_mapping_lifecycle(self, client):
        assert client.get("/api/mappings/p1").status_code == 404

        response = client.put("/api/mappings/p1", json={
            "mappings": {"media_1": {"variants": ["Green"], "universal": False, "tags": ["green"]}},
        })
        assert response.status_code == 200
        assert response.json()["settings"]["fallback"] == "show_all"

        response = client.post("/api/mappings/p1/apply", json={
            "media": [{"id": "media_1", "tags": ["hero"]}, {"id": "media_2", "tags": []}],
        })
        media = response.json()["media"]
        assert media[0]["variantValues"] == ["Green"]
        assert media[0]["tags"] == ["hero", "green"]
        assert media[1] == {"id": "media_2", "tags": []}

        assert client.delete("/api/mappings/p1").status_code == 200
        assert client.get("/api/mappings/p1").status_code == 404
