import pytest
from fastapi.testclient import TestClient

from plagiarism_detection.api.app import create_app


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "initialized": True}

    def test_uninitialised_service_returns_503(self):
        client = TestClient(create_app())
        assert client.get("/index/stats").status_code == 503


class TestDocuments:
    def test_add_and_remove(self, client):
        response = client.post(
            "/documents",
            json={"doc_id": "doc-9", "title": "Extra", "text": "Bright stars shine over the harbour."},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["state"] == "indexed"
        assert body["sentence_count"] == 1

        assert client.get("/index/stats").json()["total_documents"] == 4
        assert client.delete("/documents/doc-9").status_code == 200
        assert client.delete("/documents/doc-9").status_code == 404

    def test_batch_reports_each_document(self, client):
        response = client.post(
            "/documents/batch",
            json={
                "documents": [
                    {"doc_id": "b1", "text": "Bright stars shine over the harbour."},
                    {"doc_id": "b2", "text": ""},
                ]
            },
        )
        assert [r["success"] for r in response.json()] == [True, False]

    def test_save_without_store_is_an_error(self, client):
        assert client.post("/index/save").status_code == 500


class TestCheck:
    def test_report_shape(self, client):
        response = client.post(
            "/plagiarism/check",
            json={"text": "Snow covers the mountain peaks every winter."},
        )
        assert response.status_code == 200
        report = response.json()
        assert report["duplicate_percentage"] == 100.0
        assert report["status"] == "high"
        assert report["documents"][0]["doc_id"] == "doc-2"
        assert report["most_similar_document"]["title"] == "Mountains"
        assert report["matches"][0]["method"] == "paraphrase"
        assert report["partial"] is False

    def test_empty_text_is_a_bad_request(self, client):
        assert client.post("/plagiarism/check", json={"text": " "}).status_code == 400

    def test_out_of_range_options_are_rejected(self, client):
        response = client.post("/plagiarism/check", json={"text": "abc", "min_similarity": 120})
        assert response.status_code == 422


class TestThresholds:
    def test_get_and_update(self, client):
        assert client.get("/thresholds").json()["version"] == 1

        response = client.put(
            "/thresholds", json={"updated_by": "alice", "sentence_threshold": 70}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["version"] == 2
        assert body["sentence_threshold"] == 70
        assert body["high_duplication_threshold"] == 30

    def test_invalid_update_is_a_bad_request(self, client):
        response = client.put(
            "/thresholds",
            json={"updated_by": "alice", "medium_duplication_threshold": 50},
        )
        assert response.status_code == 400
