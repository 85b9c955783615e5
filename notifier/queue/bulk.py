"""Bulk fan-out of one template to many recipients.

Recipients are split into chunks; chunks run concurrently on a thread
pool and the recipients of a chunk are sent one after the other. A failed
recipient is recorded and never stops the batch.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from notifier.config.models import BulkConfig
from notifier.domain.models import Channel
from notifier.logging import get_logger
from notifier.utils.timestamps import format_timestamp, utc_now

logger = get_logger(__name__, component="bulk")

Recipient = Union[str, Mapping[str, Any]]

BULK_CHANNELS = (Channel.EMAIL.value, Channel.SMS.value, Channel.PUSH.value)

# Recipient dict keys holding the address for each channel
ADDRESS_KEYS = {
    Channel.EMAIL.value: ("email", "to"),
    Channel.SMS.value: ("phone_number", "phoneNumber", "phone"),
    Channel.PUSH.value: ("push_token", "pushToken", "device_token", "token"),
}
OPTION_KEYS = ("user_id", "userId")


@dataclass
class ChannelTally:
    sent: int = 0
    failed: int = 0
    skipped: int = 0


@dataclass
class BulkResult:
    """Aggregate outcome of a bulk send.

    Counts are per delivery (recipient x channel); with a single channel
    every recipient is counted exactly once. Skipped deliveries are
    included in ``sent``.
    """

    success: bool
    sent: int
    failed: int
    skipped: int
    total: int
    errors: List[Dict[str, Any]]
    processed_at: datetime
    chunks: int
    by_channel: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "total": self.total,
            "errors": self.errors,
            "processed_at": format_timestamp(self.processed_at),
            "chunks": self.chunks,
            "by_channel": self.by_channel,
        }


@dataclass
class _ChunkTally:
    by_channel: Dict[str, ChannelTally]
    errors: List[Dict[str, Any]] = field(default_factory=list)


class BulkProcessor:
    """Sends one template to a list of recipients through a send function.

    Attributes:
        send: Callable ``(channel, recipient, template, data, options) -> DeliveryResult``,
            normally ``NotificationService.send``
        config: Chunk size and chunk parallelism
    """

    def __init__(
        self,
        send: Callable[..., Any],
        bulk_config: Optional[BulkConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.send = send
        self.config = bulk_config or BulkConfig()
        self.clock = clock

    def process_bulk(
        self,
        recipients: Sequence[Recipient],
        template: str,
        data: Optional[Mapping[str, Any]] = None,
        options: Optional[Mapping[str, Any]] = None,
        channels: Sequence[str] = (Channel.EMAIL.value,),
    ) -> BulkResult:
        """Send ``template`` to every recipient on every channel.

        Args:
            recipients: Address strings or dicts (``email``, ``phone_number``,
                ``push_token``, ``user_id``; remaining keys are merged into the
                template data)
            template: Template name
            data: Template data shared by all recipients
            options: Send options shared by all recipients
            channels: Channels to deliver on

        Returns:
            BulkResult; ``success`` is True only when nothing failed

        Raises:
            ValueError: If a channel is not supported for bulk sends
        """
        channels = tuple(channels)
        for channel in channels:
            if channel not in BULK_CHANNELS:
                raise ValueError(f"Unsupported bulk channel: {channel}")

        chunk_size = self.config.chunk_size
        chunks = [list(recipients[i : i + chunk_size]) for i in range(0, len(recipients), chunk_size)]
        shared_data = dict(data or {})
        shared_options = dict(options or {})

        logger.info(
            f"Bulk send of {template} to {len(recipients)} recipient(s) in {len(chunks)} chunk(s)",
            extra={
                "event": "bulk.started",
                "template": template,
                "recipients": len(recipients),
                "chunks": len(chunks),
                "channels": list(channels),
            },
        )

        tallies: List[_ChunkTally] = []
        if chunks:
            workers = min(self.config.max_parallel_chunks, len(chunks))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bulk-chunk") as executor:
                futures = [
                    executor.submit(self._process_chunk, chunk, template, shared_data, shared_options, channels)
                    for chunk in chunks
                ]
                tallies = [future.result() for future in futures]

        result = self._merge(tallies, channels, len(chunks))
        log = logger.info if result.success else logger.warning
        log(
            f"Bulk send of {template} finished: {result.sent} sent, {result.failed} failed",
            extra={
                "event": "bulk.completed",
                "template": template,
                "sent": result.sent,
                "failed": result.failed,
                "skipped": result.skipped,
                "total": result.total,
            },
        )
        return result

    def _process_chunk(
        self,
        chunk: List[Recipient],
        template: str,
        shared_data: Dict[str, Any],
        shared_options: Dict[str, Any],
        channels: Tuple[str, ...],
    ) -> _ChunkTally:
        tally = _ChunkTally(by_channel={channel: ChannelTally() for channel in channels})

        for recipient in chunk:
            for channel in channels:
                counts = tally.by_channel[channel]
                if not isinstance(recipient, (str, Mapping)):
                    counts.failed += 1
                    tally.errors.append(
                        {"recipient": repr(recipient), "channel": channel, "error": "Invalid recipient"}
                    )
                    continue

                address = None
                try:
                    address, data, options = _expand_recipient(recipient, channel, shared_data, shared_options)
                    if not address:
                        counts.failed += 1
                        tally.errors.append(
                            {"recipient": _describe(recipient), "channel": channel, "error": f"No {channel} address"}
                        )
                        continue
                    outcome = self.send(channel, address, template, data, options)
                except Exception as e:
                    logger.error(
                        f"Bulk send to one recipient raised: {e}",
                        extra={"event": "bulk.recipient.error", "channel": channel, "error_type": type(e).__name__},
                        exc_info=True,
                    )
                    counts.failed += 1
                    tally.errors.append(
                        {"recipient": address or _describe(recipient), "channel": channel, "error": str(e)}
                    )
                    continue

                if outcome.success:
                    counts.sent += 1
                    if outcome.skipped:
                        counts.skipped += 1
                else:
                    counts.failed += 1
                    tally.errors.append({"recipient": address, "channel": channel, "error": outcome.error})

        return tally

    def _merge(self, tallies: List[_ChunkTally], channels: Tuple[str, ...], chunk_count: int) -> BulkResult:
        by_channel = {channel: ChannelTally() for channel in channels}
        errors: List[Dict[str, Any]] = []
        for tally in tallies:
            errors.extend(tally.errors)
            for channel, counts in tally.by_channel.items():
                merged = by_channel[channel]
                merged.sent += counts.sent
                merged.failed += counts.failed
                merged.skipped += counts.skipped

        sent = sum(counts.sent for counts in by_channel.values())
        failed = sum(counts.failed for counts in by_channel.values())
        skipped = sum(counts.skipped for counts in by_channel.values())
        return BulkResult(
            success=failed == 0,
            sent=sent,
            failed=failed,
            skipped=skipped,
            total=sent + failed,
            errors=errors,
            processed_at=self.clock(),
            chunks=chunk_count,
            by_channel={
                channel: {"sent": counts.sent, "failed": counts.failed, "skipped": counts.skipped}
                for channel, counts in by_channel.items()
            },
        )


def _expand_recipient(
    recipient: Recipient,
    channel: str,
    shared_data: Dict[str, Any],
    shared_options: Dict[str, Any],
) -> Tuple[Optional[str], Dict[str, Any], Dict[str, Any]]:
    """Address, template data and options for one recipient on one channel."""
    if isinstance(recipient, str):
        return recipient, shared_data, shared_options

    address = next((recipient[key] for key in ADDRESS_KEYS[channel] if recipient.get(key)), None)
    address_keys = {key for keys in ADDRESS_KEYS.values() for key in keys}

    data = dict(shared_data)
    options = dict(shared_options)
    for key, value in recipient.items():
        if key in OPTION_KEYS:
            options["user_id"] = value
        elif key not in address_keys:
            data[key] = value
    return address, data, options


def _describe(recipient: Any) -> str:
    if isinstance(recipient, str):
        return recipient
    if not isinstance(recipient, Mapping):
        return repr(recipient)
    for keys in ADDRESS_KEYS.values():
        for key in keys:
            if recipient.get(key):
                return str(recipient[key])
    return str(dict(recipient))
