"""
Muta interaction for submitting relay messages to the ckb_handler service.

Muta exposes a GraphQL API. A service write is a signed raw transaction
naming the service, the method and a JSON payload; the result is read back
with getReceipt once the transaction is committed.
"""

import json
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

import httpx
import rlp
import structlog

from .errors import (
    DataShapeError,
    SubmissionRejectedError,
    SubmissionTimeoutError,
    TransientError,
)
from .models import BlockHeader, hex_to_bytes
from .signer import MessageSigner, SignedMessage, payload_digest

logger = structlog.get_logger()


GET_LATEST_HEIGHT_QUERY = """
query {
  getBlock {
    header {
      height
    }
  }
}
"""

SEND_TRANSACTION_MUTATION = """
mutation send_transaction($inputRaw: InputRawTransaction!, $inputEncryption: InputTransactionEncryption!) {
  sendTransaction(inputRaw: $inputRaw, inputEncryption: $inputEncryption)
}
"""

GET_RECEIPT_QUERY = """
query get_receipt($txHash: Hash!) {
  getReceipt(txHash: $txHash) {
    txHash
    height
    cyclesUsed
    response {
      serviceName
      method
      response {
        code
        succeedData
        errorMessage
      }
    }
  }
}
"""


# 4xx statuses treated as transient; any other 4xx is a rejection
RETRYABLE_HTTP_STATUS = (408, 429)


def _to_int(value: Any) -> int:
    """Muta serializes Uint64 as hex strings; tolerate plain ints."""
    try:
        if isinstance(value, str):
            return int(value, 16) if value.startswith("0x") else int(value)
        return int(value)
    except (TypeError, ValueError) as e:
        raise DataShapeError(f"not an integer in Muta response: {value!r}") from e


def _get_path(data: Any, *path: str) -> Any:
    """Walk a GraphQL response, raising DataShapeError on a missing field."""
    value = data
    for key in path:
        if not isinstance(value, dict) or value.get(key) is None:
            raise DataShapeError(f"Muta response is missing {'.'.join(path)}")
        value = value[key]
    return value


@dataclass
class Receipt:
    """Receipt of a committed Muta transaction."""

    tx_hash: str
    height: int
    cycles_used: int
    service_name: str
    method: str
    succeed_data: str


@dataclass(frozen=True)
class RawTransaction:
    """Unsigned Muta transaction."""

    chain_id: str
    cycles_limit: int
    cycles_price: int
    nonce: str
    timeout: int
    service_name: str
    method: str
    payload: str

    def encode(self) -> bytes:
        """RLP encoding whose keccak is the transaction hash."""
        return rlp.encode(
            [
                hex_to_bytes(self.chain_id),
                self.cycles_limit,
                self.cycles_price,
                hex_to_bytes(self.nonce),
                self.method.encode(),
                self.service_name.encode(),
                self.payload.encode(),
                self.timeout,
            ]
        )

    def tx_hash(self) -> bytes:
        return payload_digest(self.encode())

    def to_graphql(self) -> dict[str, str]:
        return {
            "chainId": self.chain_id,
            "cyclesLimit": hex(self.cycles_limit),
            "cyclesPrice": hex(self.cycles_price),
            "nonce": self.nonce,
            "timeout": hex(self.timeout),
            "serviceName": self.service_name,
            "method": self.method,
            "payload": self.payload,
        }


class MutaClient:
    """Client for Muta GraphQL service writes."""

    def __init__(
        self,
        endpoint: str,
        signer: MessageSigner,
        chain_id: str,
        cycles_limit: int = 0xFFFFFFFF,
        cycles_price: int = 1,
        timeout_gap: int = 20,
        receipt_timeout: float = 60.0,
        receipt_poll_interval: float = 1.0,
        http_timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.endpoint = endpoint
        self.signer = signer
        self.chain_id = chain_id
        self.cycles_limit = cycles_limit
        self.cycles_price = cycles_price
        self.timeout_gap = timeout_gap
        self.receipt_timeout = receipt_timeout
        self.receipt_poll_interval = receipt_poll_interval
        self.client = httpx.Client(timeout=http_timeout)
        self._sleep = sleep

        logger.info(
            "muta_client_initialized",
            endpoint=endpoint,
            sender=signer.address,
        )

    def _graphql(self, query: str, variables: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        POST a GraphQL document and return the decoded body.

        Raises:
            TransientError: transport failure, HTTP 5xx, 408 or 429
            SubmissionRejectedError: any other HTTP 4xx (not retryable)
            DataShapeError: body is not a JSON object
        """
        try:
            response = self.client.post(
                self.endpoint,
                json={"query": query, "variables": variables or {}},
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status >= 500 or status in RETRYABLE_HTTP_STATUS:
                raise TransientError(f"Muta returned HTTP {status}") from e
            raise SubmissionRejectedError(
                f"Muta refused the request with HTTP {status}", code=status, retryable=False
            ) from e
        except httpx.HTTPError as e:
            raise TransientError(f"Muta unreachable: {e}") from e
        except ValueError as e:
            raise DataShapeError("Muta returned a non-JSON body") from e

        if not isinstance(body, dict):
            raise DataShapeError(f"Muta returned {type(body).__name__}, expected an object")
        return body

    def get_latest_height(self) -> int:
        """Get the latest committed Muta height."""
        body = self._graphql(GET_LATEST_HEIGHT_QUERY)
        if body.get("errors"):
            raise TransientError(f"getBlock failed: {body['errors']}")
        return _to_int(_get_path(body, "data", "getBlock", "header", "height"))

    def compose_transaction(
        self, service_name: str, method: str, payload: dict[str, Any]
    ) -> RawTransaction:
        """Build an unsigned transaction valid for the next timeout_gap blocks."""
        height = self.get_latest_height()
        return RawTransaction(
            chain_id=self.chain_id,
            cycles_limit=self.cycles_limit,
            cycles_price=self.cycles_price,
            nonce="0x" + secrets.token_bytes(32).hex(),
            timeout=height + self.timeout_gap,
            service_name=service_name,
            method=method,
            payload=json.dumps(payload, sort_keys=True, separators=(",", ":")),
        )

    def send_transaction(self, raw: RawTransaction) -> str:
        """
        Sign and send a transaction. Returns the transaction hash.

        Raises:
            SubmissionRejectedError: node refused the transaction (retryable)
        """
        tx_hash = raw.tx_hash()
        # Muta verifies the 64-byte compact form against the compressed key
        signature = self.signer.sign_digest(tx_hash)[:64]

        body = self._graphql(
            SEND_TRANSACTION_MUTATION,
            {
                "inputRaw": raw.to_graphql(),
                "inputEncryption": {
                    "txHash": "0x" + tx_hash.hex(),
                    "pubkey": "0x" + self.signer.compressed_public_key.hex(),
                    "signature": "0x" + signature.hex(),
                },
            },
        )

        if body.get("errors"):
            message = "; ".join(str(e.get("message", e)) for e in body["errors"])
            raise SubmissionRejectedError(f"sendTransaction failed: {message}", retryable=True)

        sent_hash = (body.get("data") or {}).get("sendTransaction") or "0x" + tx_hash.hex()
        logger.info(
            "muta_tx_sent",
            tx_hash=sent_hash,
            service=raw.service_name,
            method=raw.method,
            timeout=raw.timeout,
        )
        return sent_hash

    def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        """
        Get a transaction receipt, or None while it is not committed.

        Raises:
            SubmissionRejectedError: transaction executed with a non-zero code
            DataShapeError: receipt is missing fields
        """
        body = self._graphql(GET_RECEIPT_QUERY, {"txHash": tx_hash})
        data = (body.get("data") or {}).get("getReceipt")
        if body.get("errors") or not data:
            return None

        service_response = _get_path(data, "response")
        result = _get_path(service_response, "response")
        code = _to_int(_get_path(result, "code"))
        service_name = _get_path(service_response, "serviceName")
        method = _get_path(service_response, "method")
        if code != 0:
            raise SubmissionRejectedError(
                f"{service_name}.{method} rejected: {result.get('errorMessage') or ''}",
                code=code,
                retryable=False,
            )

        return Receipt(
            tx_hash=_get_path(data, "txHash"),
            height=_to_int(_get_path(data, "height")),
            cycles_used=_to_int(_get_path(data, "cyclesUsed")),
            service_name=service_name,
            method=method,
            succeed_data=result.get("succeedData") or "",
        )

    def wait_for_receipt(self, tx_hash: str) -> Receipt:
        """Poll until the receipt is available or receipt_timeout elapses."""
        deadline = time.monotonic() + self.receipt_timeout
        while True:
            receipt = self.get_receipt(tx_hash)
            if receipt is not None:
                return receipt
            if time.monotonic() >= deadline:
                raise SubmissionTimeoutError(
                    f"no receipt for {tx_hash} after {self.receipt_timeout}s"
                )
            self._sleep(self.receipt_poll_interval)

    def write(self, service_name: str, method: str, payload: dict[str, Any]) -> Receipt:
        """Execute a service write and wait for its receipt."""
        raw = self.compose_transaction(service_name, method, payload)
        tx_hash = self.send_transaction(raw)
        receipt = self.wait_for_receipt(tx_hash)

        logger.info(
            "muta_tx_committed",
            tx_hash=receipt.tx_hash,
            height=receipt.height,
            cycles_used=receipt.cycles_used,
            service=service_name,
            method=method,
        )
        return receipt

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()


class CkbHandlerService:
    """
    Binding for the ckb_handler service on Muta.

    All three methods are writes that return a Receipt or raise.
    """

    def __init__(self, client: MutaClient, service_name: str = "ckb_handler"):
        self.client = client
        self.service_name = service_name

    def update_headers(self, headers: Sequence[BlockHeader]) -> Receipt:
        """Relay CKB headers to the handler's header store."""
        payload = {"headers": [header.to_service_dict() for header in headers]}
        return self.client.write(self.service_name, "update_headers", payload)

    def submit_message(self, message: SignedMessage) -> Receipt:
        """Submit a signed batch-mint payload."""
        return self.client.write(
            self.service_name, "submit_message", message.to_service_payload()
        )

    def burn_sudt(self, asset_id: str, receiver: str, amount: int) -> Receipt:
        """Burn on Muta to release sUDT back to a CKB receiver."""
        payload = {"asset_id": asset_id, "receiver": receiver, "amount": amount}
        return self.client.write(self.service_name, "burn_sudt", payload)
