"""
Tests for System API (/api/v1/system)
"""


class TestHealth:
    """Test health endpoint"""

    def test_degraded_without_pipeline(self, client_without_pipeline):
        response = client_without_pipeline.get("/api/v1/system/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "degraded"
        assert data["pipeline"]["running"] is False

    def test_degraded_when_stopped(self, client):
        data = client.get("/api/v1/system/health").json()
        assert data["status"] == "degraded"
        assert data["pipeline"]["store_available"] is True
        assert data["pipeline"]["retention"] == "24h"
        assert data["pipeline"]["last_sample_at"] is None

    def test_healthy_when_running(self, client, usage_manager):
        usage_manager.start()
        usage_manager.engine.tick()

        data = client.get("/api/v1/system/health").json()
        assert data["status"] == "healthy"
        assert data["pipeline"]["running"] is True
        assert data["pipeline"]["interval_seconds"] == 5.0
        assert data["pipeline"]["power_source"] == "derived"


class TestSystemInfo:
    """Test version, metrics and root endpoints"""

    def test_version(self, client):
        response = client.get("/api/v1/system/version")
        assert response.status_code == 200
        data = response.json()
        assert "api_version" in data
        assert "python_version" in data

    def test_metrics_text_format(self, client):
        client.get("/api/v1/system/version")

        response = client.get("/api/v1/system/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        body = response.text
        assert "api_requests_total" in body
        assert "powerwatt_sampling_ticks_total" in body
        assert "powerwatt_minute_flushes_total" in body

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["endpoints"]["health"] == "/api/v1/system/health"

    def test_metrics_label_route_templates(self, client):
        client.get("/api/v1/system/version")
        assert client.get("/api/v1/no-such-endpoint/abc123").status_code == 404

        body = client.get("/api/v1/system/metrics").text
        assert 'endpoint="/api/v1/system/version"' in body
        assert 'endpoint="unmatched"' in body
        assert "abc123" not in body
