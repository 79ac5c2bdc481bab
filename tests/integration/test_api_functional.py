import base64

from fastapi.testclient import TestClient

from support_agent.api.main import build_services, create_app
from support_agent.config import AppConfig, RetrievalConfig, StorageConfig
from support_agent.ingest.embedder import HashingEmbedder

HEADERS = {"X-Tenant-Id": "acme", "X-User-Id": "user-1", "X-User-Email": "user@acme.test"}
POLICY = "Company policy states employees must encrypt customer data at rest.\n\n"


def _client(tmp_path) -> TestClient:
    config = AppConfig(
        storage=StorageConfig(sqlite_path=str(tmp_path / "agent.db"), upload_root=str(tmp_path / "uploads")),
        retrieval=RetrievalConfig(similarity_threshold=0.1),
    )
    services = build_services(config, embedder=HashingEmbedder())
    return TestClient(create_app(services))


def _upload(client: TestClient, text: str, ref: str = "acme/policy.txt", declared_type: str = "text/plain"):
    return client.post(
        "/documents",
        headers=HEADERS,
        json={
            "storage_ref": ref,
            "declared_type": declared_type,
            "content_base64": base64.b64encode(text.encode()).decode(),
        },
    )


def test_api_upload_chat_trace_metrics(tmp_path) -> None:
    client = _client(tmp_path)

    health = client.get("/health").json()
    assert health["model_mode"] == "deterministic"
    assert len(health["tools"]) == 8

    upload_resp = _upload(client, POLICY * 40)
    assert upload_resp.status_code == 200
    upload = upload_resp.json()
    assert upload["processed"]
    assert upload["chunks_processed"] >= 1

    status = client.get(f"/documents/{upload['document_id']}", headers=HEADERS).json()
    assert status["status"] == "processed"

    chat_resp = client.post(
        "/chat",
        headers=HEADERS,
        json={"message": "What does policy require for customer data?", "enable_tools": False},
    )
    assert chat_resp.status_code == 200
    chat = chat_resp.json()
    assert chat["has_context"]
    assert chat["sources"]
    assert "encrypt customer data" in chat["message"]

    trace_resp = client.get(f"/traces/{chat['trace_id']}")
    assert trace_resp.status_code == 200
    assert trace_resp.json()["sources"]

    source_resp = client.post("/sources/search", headers=HEADERS, json={"query": "encrypt customer data", "top_k": 3})
    assert source_resp.status_code == 200
    assert source_resp.json()["items"]

    metrics_resp = client.get("/metrics")
    assert metrics_resp.status_code == 200
    assert metrics_resp.json()["total_requests"] >= 1


def test_documents_are_tenant_scoped(tmp_path) -> None:
    client = _client(tmp_path)
    upload = _upload(client, POLICY * 5).json()

    other = client.get(f"/documents/{upload['document_id']}", headers={**HEADERS, "X-Tenant-Id": "globex"})

    assert other.status_code == 404


def test_upload_error_mapping(tmp_path) -> None:
    client = _client(tmp_path)

    unsupported = _upload(client, "binary", ref="acme/setup.exe", declared_type="application/x-msdownload")
    empty = _upload(client, "   ", ref="acme/empty.txt")
    missing = client.post("/documents/does-not-exist/reprocess", headers=HEADERS)

    assert unsupported.status_code == 400
    assert empty.status_code == 422
    assert empty.json()["detail"]["document_id"]
    assert missing.status_code == 404


def test_reprocess_keeps_chunk_count(tmp_path) -> None:
    client = _client(tmp_path)
    upload = _upload(client, POLICY * 40).json()

    again = client.post(f"/documents/{upload['document_id']}/reprocess", headers=HEADERS)

    assert again.status_code == 200
    assert again.json()["chunks_processed"] == upload["chunks_processed"]
