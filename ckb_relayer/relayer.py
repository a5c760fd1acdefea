"""
Main relayer logic - follows CKB block by block, signs deposit batches and
submits them to the ckb_handler service on Muta.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog

from .batch_mint import build_batch_mint
from .ckb import CkbRpcClient
from .config import RelayerConfig
from .db import HeaderBuffer, HeightCursorStore
from .detector import find_cross_transactions
from .encoder import encode_batch_mint
from .errors import DataShapeError, RelayerHalted
from .muta import CkbHandlerService, Receipt
from .retry import ErrorKind, RetryDecision, RetryPolicy, classify_error
from .signer import MessageSigner

logger = structlog.get_logger()


def flush_header_buffer(headers: HeaderBuffer, service: CkbHandlerService) -> Optional[Receipt]:
    """
    Send all buffered headers to update_headers, then drop them.

    Headers are only cleared once the receipt is in, so a failed flush
    leaves the buffer untouched. Returns None if there was nothing to send.
    """
    buffered = headers.read_all()
    if not buffered:
        return None

    receipt = service.update_headers(buffered)
    removed = headers.clear(up_to=buffered[-1].height)

    logger.info(
        "headers_flushed",
        count=removed,
        first=buffered[0].height,
        last=buffered[-1].height,
        muta_tx_hash=receipt.tx_hash,
    )
    return receipt


@dataclass
class RelayerState:
    """Current relayer state."""

    is_running: bool = False
    last_poll_time: Optional[datetime] = None
    last_height: Optional[int] = None
    blocks_processed: int = 0
    deposits_submitted: int = 0
    consecutive_failures: int = 0


@dataclass
class BlockOutcome:
    """Result of relaying one CKB block."""

    height: int
    transactions: int
    deposits: int
    receipt: Optional[Receipt] = None
    payload: Optional[bytes] = None
    headers_flushed: bool = False


class CkbRelayer:
    """
    Sync loop that:
    1. Fetches the CKB block after the stored cursor
    2. Detects crosschain deposits and builds a batch mint
    3. Encodes, signs and submits the batch to Muta
    4. Buffers the header and advances the cursor
    5. Flushes buffered headers once the threshold is reached

    A failed block is retried at the same height; the cursor only moves
    once every step for that block has succeeded.
    """

    def __init__(
        self,
        config: RelayerConfig,
        ckb: CkbRpcClient,
        service: CkbHandlerService,
        signer: MessageSigner,
        cursor: HeightCursorStore,
        headers: HeaderBuffer,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.ckb = ckb
        self.service = service
        self.signer = signer
        self.cursor = cursor
        self.headers = headers
        self.retry_policy = retry_policy or config.retry_policy()
        self.state = RelayerState()
        self._sleep = sleep
        self._pending_height: Optional[int] = None

        settings = config.settings
        logger.info(
            "relayer_initialized",
            start_height=settings.ckb_start_height,
            cursor=cursor.get(),
            target_lock_code_hash=config.target_lock.code_hash,
            signer=signer.address,
        )

    def next_height(self) -> int:
        """Height the loop will relay next."""
        current = self.cursor.get()
        if current is None:
            return self.config.settings.ckb_start_height
        return current + 1

    def step(self) -> Optional[BlockOutcome]:
        """
        Relay the next block if CKB has it.

        Returns None when the cursor has caught up with the tip. Errors
        propagate to the caller.
        """
        height = self.next_height()
        self._pending_height = height
        tip = self.ckb.get_tip_block_number()
        self.state.last_poll_time = datetime.now()

        logger.debug("sync_position", local=height, remote=tip)

        if height > tip:
            return None
        return self.process_block(height)

    def process_block(self, height: int) -> BlockOutcome:
        """Relay a single block and advance the cursor to it."""
        block = self.ckb.get_block_by_number(height)
        if block.header.height != height:
            raise DataShapeError(
                f"requested block {height}, node returned {block.header.height}"
            )

        cross_txs = find_cross_transactions(block.transactions, self.config.target_lock)
        outcome = BlockOutcome(
            height=height,
            transactions=len(block.transactions),
            deposits=len(cross_txs),
        )

        if cross_txs:
            logger.info(
                "cross_txs_found",
                height=height,
                count=len(cross_txs),
                txs=len(block.transactions),
            )
            batch = build_batch_mint(cross_txs)
            payload = encode_batch_mint(batch)
            message = self.signer.sign(payload)
            outcome.payload = payload
            outcome.receipt = self.service.submit_message(message)

            logger.info(
                "batch_mint_submitted",
                height=height,
                instructions=len(batch),
                muta_tx_hash=outcome.receipt.tx_hash,
            )

        self.headers.append(block.header)
        self.cursor.advance(height)

        self.state.last_height = height
        self.state.blocks_processed += 1
        self.state.deposits_submitted += outcome.deposits

        threshold = self.config.settings.header_flush_threshold
        if threshold and len(self.headers) >= threshold:
            outcome.headers_flushed = self._flush_after_block(height)

        logger.info(
            "block_processed",
            height=height,
            txs=outcome.transactions,
            deposits=outcome.deposits,
        )
        return outcome

    def flush_headers(self) -> Optional[Receipt]:
        """Send all buffered headers to update_headers, then drop them."""
        return flush_header_buffer(self.headers, self.service)

    def _flush_after_block(self, height: int) -> bool:
        """
        Threshold flush, run once the block is committed.

        A failed flush leaves the buffer in place for the next block and
        never rolls back the block that triggered it.
        """
        try:
            return self.flush_headers() is not None
        except Exception as e:
            logger.error(
                "header_flush_failed",
                height=height,
                buffered=len(self.headers),
                error=str(e),
                error_type=type(e).__name__,
                kind=classify_error(e).value,
            )
            return False

    def run_once(self) -> Optional[BlockOutcome]:
        """
        Run one iteration of the relayer.

        Errors are logged and swallowed; the same height is attempted on
        the next call.
        """
        try:
            return self.step()
        except Exception as e:
            logger.error(
                "relay_iteration_failed",
                height=self._pending_height,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    def _decide(self, error: Exception) -> RetryDecision:
        """Ask the retry policy; a failing policy falls back to the capped delay."""
        attempt = self.state.consecutive_failures
        try:
            return self.retry_policy.decide(error, attempt)
        except Exception as policy_error:
            kind = classify_error(error)
            logger.error(
                "retry_policy_failed",
                attempt=attempt,
                error=str(policy_error),
                error_type=type(policy_error).__name__,
            )
            return RetryDecision(
                halt=kind is ErrorKind.FATAL,
                delay=self.config.settings.retry_max_delay_seconds,
                kind=kind,
            )

    def run(self) -> None:
        """
        Run the relayer continuously.

        Raises:
            RelayerHalted: the retry policy decided not to retry
        """
        self.state.is_running = True
        settings = self.config.settings

        logger.info(
            "relayer_starting",
            next_height=self.next_height(),
            idle_interval=settings.idle_interval_seconds,
            post_process_interval=settings.post_process_interval_seconds,
        )

        while self.state.is_running:
            try:
                outcome = self.step()
            except Exception as e:
                self.state.consecutive_failures += 1
                height = self._pending_height
                decision = self._decide(e)

                logger.error(
                    "relay_iteration_failed",
                    height=height,
                    error=str(e),
                    error_type=type(e).__name__,
                    kind=decision.kind.value,
                    attempt=self.state.consecutive_failures,
                    retry_in=None if decision.halt else decision.delay,
                )

                if decision.halt:
                    self.state.is_running = False
                    logger.critical("relayer_halted", height=height, kind=decision.kind.value)
                    raise RelayerHalted(height, f"{type(e).__name__}: {e}") from e

                self._sleep(decision.delay)
                continue

            self.state.consecutive_failures = 0
            if outcome is None:
                self._sleep(settings.idle_interval_seconds)
            else:
                self._sleep(settings.post_process_interval_seconds)

        logger.info(
            "relayer_stopped",
            blocks_processed=self.state.blocks_processed,
            deposits_submitted=self.state.deposits_submitted,
        )

    def stop(self) -> None:
        """Stop the relayer after the current iteration."""
        self.state.is_running = False
        logger.info("relayer_stopping")
