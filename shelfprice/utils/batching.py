# shelfprice/utils/batching.py

"""Rate-limited concurrent batch processing.

Items are split into fixed-size chunks and the chunks are handed to an
async handler in *waves*: at most ``concurrency`` chunks run at once,
the whole wave is awaited, then the loop cools down for
``inter_batch_delay`` seconds before the next wave.  This keeps the
number of outstanding calls to a rate-limited service bounded.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger("shelfprice.batching")

T = TypeVar("T")
R = TypeVar("R")


def chunk(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into consecutive lists of at most ``size`` elements."""
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    return [
        list(items[i:i + size])
        for i in range(0, len(items), size)
    ]


async def _cooldown(seconds: float) -> None:
    """Suspend between waves."""
    await asyncio.sleep(seconds)


async def process_in_batches(
    items: Sequence[T],
    batch_size: int,
    concurrency: int,
    inter_batch_delay: float,
    handler: Callable[[list[T]], Awaitable[list[R]]],
) -> list[R]:
    """Run ``handler`` over ``items`` chunk by chunk, wave by wave.

    Results are concatenated in chunk-submission order.  An exception
    raised by any handler call propagates and aborts the remaining waves.
    """
    if concurrency <= 0:
        raise ValueError(
            f"concurrency must be positive, got {concurrency}"
        )
    if inter_batch_delay < 0:
        raise ValueError(
            f"inter_batch_delay must not be negative, got {inter_batch_delay}"
        )

    chunks = chunk(items, batch_size)
    results: list[R] = []

    for start in range(0, len(chunks), concurrency):
        wave = chunks[start:start + concurrency]
        logger.debug(
            "Running wave of %d chunk(s) (%d/%d)",
            len(wave),
            start + len(wave),
            len(chunks),
        )
        wave_results = await asyncio.gather(
            *(handler(c) for c in wave)
        )
        for chunk_result in wave_results:
            results.extend(chunk_result)

        if start + concurrency < len(chunks):
            logger.info(
                "Waiting %.1fs before next batch wave...",
                inter_batch_delay,
            )
            await _cooldown(inter_batch_delay)

    return results
