import pytest
import httpx
from fastapi.testclient import TestClient
from unittest.mock import patch

from api import app, limiter, serve
from config import Settings, get_settings

client = TestClient(app)

SCENARIO_C = "\n".join([
    "type, client, tx, amount",
    "deposit, 1, 1, 25.11",
    "dispute, 1, 1,",
    "chargeback, 1, 1,",
    "deposit, 1, 2, 25.11",
]) + "\n"


@pytest.fixture(autouse=True)
def reset_state():
    """Disable rate limiting and drop dependency overrides around each test."""
    limiter.enabled = False
    yield
    limiter.enabled = True
    app.dependency_overrides.clear()


def replay(body, **params):
    return client.post(
        "/ledger/replay",
        content=body,
        params=params,
        headers={"Content-Type": "text/csv"}
    )


class TestReplay:
    """Test the replay endpoint."""

    def test_single_deposit(self):
        """Test replay of a single deposit."""
        response = replay("type,client,tx,amount\ndeposit,1,1,25.11\n")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.text == "client,available,held,total,locked\n1,25.11,0,25.11,false\n"
        assert response.headers["X-Applied-Count"] == "1"
        assert response.headers["X-Rejected-Count"] == "0"

    def test_rejected_transaction(self):
        """Test that the first rejected transaction aborts the replay."""
        response = replay(SCENARIO_C)

        assert response.status_code == 422
        data = response.json()
        assert data["error_code"] == "ACCOUNT_LOCKED"
        assert "locked" in data["detail"]

    def test_skip_rejected(self):
        """Test that skip_rejected keeps going past refused transactions."""
        response = replay(SCENARIO_C, skip_rejected="true")

        assert response.status_code == 200
        assert response.text == "client,available,held,total,locked\n1,0,0,0,true\n"
        assert response.headers["X-Applied-Count"] == "3"
        assert response.headers["X-Rejected-Count"] == "1"

    def test_body_with_byte_order_mark(self):
        """Test a UTF-8 upload that starts with a byte-order mark."""
        response = replay(b"\xef\xbb\xbftype,client,tx,amount\r\ndeposit,1,1,25.11\r\n")

        assert response.status_code == 200
        assert response.text == "client,available,held,total,locked\n1,25.11,0,25.11,false\n"

    def test_every_request_starts_from_empty_ledger(self):
        """Test that replays do not share state."""
        body = "type,client,tx,amount\ndeposit,1,1,5.0\n"

        first = replay(body)
        second = replay(body)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.text == first.text


class TestErrorHandling:
    """Test error handling scenarios."""

    def test_malformed_csv(self):
        """Test malformed CSV handling."""
        response = replay("type,client,tx,amount\ndeposit,1,x,1.0\n")

        assert response.status_code == 400
        data = response.json()
        assert data["error_code"] == "INPUT_FORMAT_ERROR"
        assert data["line"] == 2

    def test_invalid_utf8(self):
        """Test undecodable request body."""
        response = replay(b"type,client,tx,amount\ndeposit,1,1,\xff\n")

        assert response.status_code == 400
        assert response.json()["error_code"] == "INPUT_FORMAT_ERROR"

    def test_request_too_large(self):
        """Test the request size limit."""
        app.dependency_overrides[get_settings] = lambda: Settings(max_request_size=10)

        response = replay("type,client,tx,amount\ndeposit,1,1,1.0\n")

        assert response.status_code == 413
        assert response.json()["error_code"] == "HTTP_413"

    def test_chunked_request_too_large(self):
        """Test the size limit on uploads without a content-length header."""
        app.dependency_overrides[get_settings] = lambda: Settings(max_request_size=10)

        response = client.post(
            "/ledger/replay",
            content=iter([b"type,client,tx,amount\n", b"deposit,1,1,1.0\n"]),
            headers={"Content-Type": "text/csv"}
        )

        assert "content-length" not in response.request.headers
        assert response.status_code == 413

    @patch('services.logger')
    def test_logging_on_error(self, mock_logger):
        """Test that rejected transactions are logged."""
        response = replay("type,client,tx,amount\nresolve,1,1,\n")

        assert response.status_code == 422
        mock_logger.warning.assert_called()


class TestHealthAndUtility:
    """Test health check and utility endpoints."""

    def test_health_check(self):
        """Test health check endpoint."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()

        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert "timestamp" in data

    def test_root_endpoint(self):
        """Test root endpoint."""
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()

        assert data["service"] == "Transaction Ledger"
        assert data["replay"] == "/ledger/replay"
        assert data["docs"] == "/docs"

    def test_request_id_is_generated(self):
        """Test that responses carry a generated request id."""
        response = client.get("/health")

        assert len(response.headers["X-Request-ID"]) == 32

    def test_request_id_is_echoed(self):
        """Test that a caller supplied request id is kept."""
        response = client.get("/health", headers={"X-Request-ID": "replay-42"})

        assert response.headers["X-Request-ID"] == "replay-42"

    def test_serve_uses_configured_address(self):
        """Test the uvicorn entry point."""
        with patch("uvicorn.run") as mock_run:
            serve()

        settings = get_settings()
        mock_run.assert_called_once()
        assert mock_run.call_args.args == ("api:app",)
        assert mock_run.call_args.kwargs["host"] == settings.host
        assert mock_run.call_args.kwargs["port"] == settings.port


class TestAsyncClient:
    """Test the app through an async client."""

    @pytest.mark.asyncio
    async def test_replay_with_async_client(self):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.post(
                "/ledger/replay",
                content="type,client,tx,amount\ndeposit,1,1,1.5\nwithdrawal,1,2,0.5\n",
                headers={"Content-Type": "text/csv"}
            )

        assert response.status_code == 200
        assert response.text == "client,available,held,total,locked\n1,1,0,1,false\n"
