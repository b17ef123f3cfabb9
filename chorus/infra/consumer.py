"""
Stream Consumer

The read loop shared by every worker on the conversation stream (the ingress
consumer and each agent runtime). It owns one subscription and:

1. Receives raw payloads, retrying transport failures with backoff
2. Decodes them into Messages, dropping payloads that fail to decode
3. Hands each Message to the worker's handler, logging handler failures
   without stopping the loop
"""
import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from chorus.exceptions import MessageDecodeError, TransportError
from chorus.infra.bus import Subscription
from chorus.infra.error_handler import ErrorMetrics, ErrorType, RetryConfig, retry_with_backoff
from chorus.messages import Message


logger = logging.getLogger(__name__)


MessageHandler = Callable[[Message], Union[None, Awaitable[None]]]


class StreamConsumer:
    """Receive/decode/dispatch loop for one subscription."""

    def __init__(
        self,
        subscription: Subscription,
        handler: MessageHandler,
        name: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None
    ):
        self.subscription = subscription
        self.handler = handler
        self.name = name or f"{subscription.topic}/{subscription.group}"
        # Transport errors are retried until the consumer is stopped
        self.retry_config = retry_config or RetryConfig(max_attempts=0, base_delay=0.5, max_delay=10.0)
        self.metrics = ErrorMetrics()

        self.running = False
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

        self._stats = {
            'messages_received': 0,
            'messages_handled': 0,
            'decode_errors': 0,
            'handler_errors': 0,
            'transport_errors': 0,
            'last_message_time': None
        }

    def start(self) -> asyncio.Task:
        """Spawn the consume loop as a background task."""
        if self._task is None or self._task.done():
            self.running = True
            self._stop_event.clear()
            self._task = asyncio.create_task(self.run(), name=f"consumer:{self.name}")
        return self._task

    async def stop(self, timeout: float = 5.0):
        """Stop the loop and close the subscription. Idempotent."""
        self.running = False
        self._stop_event.set()
        self.subscription.close()

        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

        logger.info(f"🛑 Consumer {self.name} stopped")

    async def run(self):
        """Consume until stopped."""
        self.running = True
        logger.info(f"🎧 Consumer {self.name} started")

        try:
            while not self._stop_event.is_set():
                payload = await self._receive()
                if payload is None:
                    break
                await self.dispatch(payload)
        finally:
            self.running = False

    async def _receive(self) -> Optional[Union[str, bytes]]:
        """Next payload, or None once the consumer should exit."""
        try:
            return await retry_with_backoff(
                self._receive_once,
                retry_config=self.retry_config,
                metrics=self.metrics,
                sleep=self._backoff
            )
        except TransportError as e:
            logger.error(f"❌ Consumer {self.name} giving up after {self._stats['transport_errors']} transport errors: {e}")
            raise

    async def _receive_once(self) -> Optional[Union[str, bytes]]:
        if self._stop_event.is_set():
            return None
        try:
            return await self.subscription.receive()
        except TransportError:
            if self._stop_event.is_set() or self.subscription.closed:
                return None
            self._stats['transport_errors'] += 1
            raise

    async def _backoff(self, delay: float):
        """Sleep between receive attempts, waking early on stop."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def dispatch(self, payload: Union[str, bytes]):
        """Decode one payload and hand it to the handler."""
        self._stats['messages_received'] += 1
        self._stats['last_message_time'] = datetime.now()

        try:
            message = Message.from_json(payload)
        except MessageDecodeError as e:
            self._stats['decode_errors'] += 1
            self.metrics.record(e, ErrorType.DECODE)
            self.metrics.dropped_payloads += 1
            logger.warning(f"⚠️ Consumer {self.name} dropped undecodable payload: {e}")
            return

        try:
            result = self.handler(message)
            if inspect.isawaitable(result):
                await result
            self._stats['messages_handled'] += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats['handler_errors'] += 1
            self.metrics.record(e)
            logger.error(f"❌ Consumer {self.name} handler failed on message {message.id}: {e}", exc_info=True)

    def get_stats(self) -> Dict[str, Any]:
        stats = self._stats.copy()
        if stats['last_message_time']:
            stats['last_message_time'] = stats['last_message_time'].isoformat()
        stats['running'] = self.running
        stats['pending'] = self.subscription.pending()
        stats['errors'] = self.metrics.to_dict()
        return stats
