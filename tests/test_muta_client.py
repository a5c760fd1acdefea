from __future__ import annotations

import json
from typing import Any, Optional

import httpx
import pytest
from eth_keys import keys

from ckb_relayer.errors import (
    DataShapeError,
    SubmissionRejectedError,
    SubmissionTimeoutError,
    TransientError,
)
from ckb_relayer.muta import (
    GET_LATEST_HEIGHT_QUERY,
    GET_RECEIPT_QUERY,
    SEND_TRANSACTION_MUTATION,
    CkbHandlerService,
    MutaClient,
    RawTransaction,
)
from ckb_relayer.signer import MessageSigner

from conftest import RELAYER_KEY

CHAIN_ID = "0x" + "b6" * 32


class _FakeResponse:
    def __init__(self, payload: Any = None):
        self._payload = payload

    def raise_for_status(self) -> None:
        return

    def json(self) -> Any:
        return self._payload


def _receipt(tx_hash: str, code: int = 0, error: str = "") -> dict[str, Any]:
    return {
        "txHash": tx_hash,
        "height": "0x10",
        "cyclesUsed": "0x5",
        "response": {
            "serviceName": "ckb_handler",
            "method": "submit_message",
            "response": {
                "code": hex(code),
                "succeedData": "" if code else "ok",
                "errorMessage": error,
            },
        },
    }


class _FakeMuta:
    """Answers the three GraphQL documents MutaClient sends."""

    def __init__(
        self,
        height: int = 100,
        send_errors: Optional[list[dict[str, Any]]] = None,
        receipt_code: int = 0,
        pending_polls: int = 0,
    ):
        self.height = height
        self.send_errors = send_errors
        self.receipt_code = receipt_code
        self.pending_polls = pending_polls
        self.sent: list[dict[str, Any]] = []
        self.receipt_polls = 0

    def post(self, url: str, json: dict[str, Any]) -> _FakeResponse:
        query = json["query"]
        variables = json["variables"]
        if query == GET_LATEST_HEIGHT_QUERY:
            return _FakeResponse({"data": {"getBlock": {"header": {"height": hex(self.height)}}}})
        if query == SEND_TRANSACTION_MUTATION:
            self.sent.append(variables)
            if self.send_errors:
                return _FakeResponse({"data": None, "errors": self.send_errors})
            tx_hash = variables["inputEncryption"]["txHash"]
            return _FakeResponse({"data": {"sendTransaction": tx_hash}})
        if query == GET_RECEIPT_QUERY:
            self.receipt_polls += 1
            if self.receipt_polls <= self.pending_polls:
                return _FakeResponse({"data": {"getReceipt": None}})
            return _FakeResponse(
                {"data": {"getReceipt": _receipt(variables["txHash"], self.receipt_code, "bad sig")}}
            )
        raise AssertionError(f"unexpected query: {query}")


def _client(fake: _FakeMuta, **kwargs: Any) -> MutaClient:
    sleeps: list[float] = []
    client = MutaClient(
        "http://muta:8000/graphql",
        MessageSigner(RELAYER_KEY),
        CHAIN_ID,
        sleep=sleeps.append,
        **kwargs,
    )
    client.client.post = fake.post  # type: ignore[assignment]
    client.sleeps = sleeps  # type: ignore[attr-defined]
    return client


def test_get_latest_height() -> None:
    client = _client(_FakeMuta(height=0x1234))

    assert client.get_latest_height() == 0x1234


def test_get_latest_height_error_is_transient() -> None:
    client = _client(_FakeMuta())
    client.client.post = lambda url, json: _FakeResponse(  # type: ignore[assignment]
        {"errors": [{"message": "not ready"}]}
    )

    with pytest.raises(TransientError):
        client.get_latest_height()


def test_compose_transaction_sets_timeout_and_payload() -> None:
    client = _client(_FakeMuta(height=100), timeout_gap=20)

    raw = client.compose_transaction("ckb_handler", "submit_message", {"b": 1, "a": "x"})

    assert raw.timeout == 120
    assert raw.chain_id == CHAIN_ID
    assert raw.payload == '{"a":"x","b":1}'
    assert len(bytes.fromhex(raw.nonce[2:])) == 32


def test_write_signs_transaction_hash() -> None:
    fake = _FakeMuta()
    client = _client(fake)

    receipt = client.write("ckb_handler", "submit_message", {"payload": "0x", "signature": "0x"})

    assert receipt.height == 16
    assert receipt.cycles_used == 5
    assert receipt.succeed_data == "ok"

    sent = fake.sent[0]
    raw = sent["inputRaw"]
    assert raw["serviceName"] == "ckb_handler"
    assert raw["method"] == "submit_message"
    assert json.loads(raw["payload"]) == {"payload": "0x", "signature": "0x"}

    encryption = sent["inputEncryption"]
    pubkey = keys.PublicKey.from_compressed_bytes(bytes.fromhex(encryption["pubkey"][2:]))
    compact = bytes.fromhex(encryption["signature"][2:])
    assert len(compact) == 64
    tx_hash = bytes.fromhex(encryption["txHash"][2:])
    expected = RawTransaction(
        chain_id=raw["chainId"],
        cycles_limit=int(raw["cyclesLimit"], 16),
        cycles_price=int(raw["cyclesPrice"], 16),
        nonce=raw["nonce"],
        timeout=int(raw["timeout"], 16),
        service_name=raw["serviceName"],
        method=raw["method"],
        payload=raw["payload"],
    ).tx_hash()
    assert tx_hash == expected
    assert pubkey == MessageSigner(RELAYER_KEY).public_key


def test_send_errors_are_retryable_rejections() -> None:
    client = _client(_FakeMuta(send_errors=[{"message": "mempool full"}]))

    with pytest.raises(SubmissionRejectedError) as exc_info:
        client.write("ckb_handler", "submit_message", {})

    assert exc_info.value.retryable
    assert "mempool full" in str(exc_info.value)


def test_failed_receipt_is_permanent_rejection() -> None:
    client = _client(_FakeMuta(receipt_code=3))

    with pytest.raises(SubmissionRejectedError) as exc_info:
        client.write("ckb_handler", "submit_message", {})

    assert exc_info.value.code == 3
    assert not exc_info.value.retryable


def test_receipt_polling_sleeps_between_attempts() -> None:
    fake = _FakeMuta(pending_polls=2)
    client = _client(fake, receipt_poll_interval=0.5)

    client.write("ckb_handler", "update_headers", {"headers": []})

    assert fake.receipt_polls == 3
    assert client.sleeps == [0.5, 0.5]  # type: ignore[attr-defined]


def test_receipt_timeout() -> None:
    client = _client(_FakeMuta(pending_polls=10**6), receipt_timeout=0)

    with pytest.raises(SubmissionTimeoutError):
        client.write("ckb_handler", "submit_message", {})


def _status_post(status: int) -> Any:
    def fake_post(url: str, json: dict[str, Any]) -> httpx.Response:
        return httpx.Response(status, request=httpx.Request("POST", url))

    return fake_post


@pytest.mark.parametrize("status", [500, 502, 408, 429])
def test_retryable_http_status_is_transient(status: int) -> None:
    client = _client(_FakeMuta())
    client.client.post = _status_post(status)  # type: ignore[assignment]

    with pytest.raises(TransientError):
        client.get_latest_height()


@pytest.mark.parametrize("status", [400, 401, 404])
def test_other_4xx_is_permanent_rejection(status: int) -> None:
    client = _client(_FakeMuta())
    client.client.post = _status_post(status)  # type: ignore[assignment]

    with pytest.raises(SubmissionRejectedError) as exc_info:
        client.write("ckb_handler", "submit_message", {})

    assert exc_info.value.code == status
    assert not exc_info.value.retryable


def test_connection_failure_is_transient() -> None:
    client = _client(_FakeMuta())

    def fake_post(url: str, json: dict[str, Any]) -> httpx.Response:
        raise httpx.ReadTimeout("timed out")

    client.client.post = fake_post  # type: ignore[assignment]

    with pytest.raises(TransientError):
        client.get_latest_height()


def test_missing_block_header_is_data_shape_error() -> None:
    client = _client(_FakeMuta())
    client.client.post = lambda url, json: _FakeResponse(  # type: ignore[assignment]
        {"data": {"getBlock": None}}
    )

    with pytest.raises(DataShapeError):
        client.get_latest_height()


def test_receipt_missing_fields_is_data_shape_error() -> None:
    client = _client(_FakeMuta())
    receipt = _receipt("0x" + "01" * 32)
    del receipt["cyclesUsed"]
    client.client.post = lambda url, json: _FakeResponse(  # type: ignore[assignment]
        {"data": {"getReceipt": receipt}}
    )

    with pytest.raises(DataShapeError):
        client.get_receipt("0x" + "01" * 32)


def test_receipt_with_bad_height_is_data_shape_error() -> None:
    client = _client(_FakeMuta())
    receipt = {**_receipt("0x" + "01" * 32), "height": "0xzz"}
    client.client.post = lambda url, json: _FakeResponse(  # type: ignore[assignment]
        {"data": {"getReceipt": receipt}}
    )

    with pytest.raises(DataShapeError):
        client.get_receipt("0x" + "01" * 32)


class _RecordingClient:
    def __init__(self) -> None:
        self.writes: list[tuple[str, str, dict[str, Any]]] = []

    def write(self, service_name: str, method: str, payload: dict[str, Any]) -> str:
        self.writes.append((service_name, method, payload))
        return "receipt"


class TestCkbHandlerService:
    def test_update_headers_payload(self, make_header) -> None:
        client = _RecordingClient()
        service = CkbHandlerService(client, "ckb_handler")  # type: ignore[arg-type]

        service.update_headers([make_header(1), make_header(2)])

        name, method, payload = client.writes[0]
        assert (name, method) == ("ckb_handler", "update_headers")
        assert [h["number"] for h in payload["headers"]] == ["0x1", "0x2"]
        assert "hash" not in payload["headers"][0]
        assert "uncles_hash" in payload["headers"][0]

    def test_submit_message_payload(self) -> None:
        client = _RecordingClient()
        service = CkbHandlerService(client, "handler")  # type: ignore[arg-type]
        message = MessageSigner(RELAYER_KEY).sign(b"\xc1\xc0")

        service.submit_message(message)

        name, method, payload = client.writes[0]
        assert (name, method) == ("handler", "submit_message")
        assert payload == message.to_service_payload()

    def test_burn_sudt_payload(self) -> None:
        client = _RecordingClient()
        service = CkbHandlerService(client)  # type: ignore[arg-type]

        service.burn_sudt("0x" + "ab" * 32, "0xckb", 5)

        assert client.writes[0] == (
            "ckb_handler",
            "burn_sudt",
            {"asset_id": "0x" + "ab" * 32, "receiver": "0xckb", "amount": 5},
        )
