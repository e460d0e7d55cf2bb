"""
Chunk points into batches and drive them through the transport
"""

from typing import Callable, List, Optional, Sequence
from schemas.point import Point
from core.exceptions import TransportError, WriteError
import logging

logger = logging.getLogger(__name__)

# Dry-run previews show every point up to this count
FULL_PREVIEW_THRESHOLD = 20


class BatchDispatcher:
    """
    Send points to the store in fixed-size batches.

    Ensures:
    - Batches are sent sequentially, in order
    - The first failing batch aborts the rest
    - Dry-run never touches the transport
    """

    def __init__(
        self,
        transport,
        batch_size: int = 1000,
        preview_limit: int = 10,
        preview_sink: Optional[Callable[[str], None]] = None
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.transport = transport
        self.batch_size = batch_size
        self.preview_limit = preview_limit
        self.preview_sink = preview_sink or logger.info

    def batches(self, points: Sequence[Point]) -> List[Sequence[Point]]:
        return [
            points[i:i + self.batch_size]
            for i in range(0, len(points), self.batch_size)
        ]

    async def dispatch(self, points: Sequence[Point], dry_run: bool = False) -> int:
        """
        Write points, or preview them in dry-run mode.

        Args:
            points: Points to send
            dry_run: Render a preview instead of writing

        Returns:
            Number of points written (or that would have been written)

        Raises:
            TransportError: A batch failed; context carries ``batch_index``
                and ``points_sent``
        """
        if not points:
            return 0

        if dry_run:
            self.preview(points)
            return len(points)

        batches = self.batches(points)
        points_sent = 0

        logger.info(f"Writing {len(points)} points in {len(batches)} batch(es)")

        for batch_index, batch in enumerate(batches):
            try:
                await self.transport.write_batch(batch)
            except TransportError as e:
                e.context.update({"batch_index": batch_index, "points_sent": points_sent})
                logger.error(
                    f"Batch {batch_index + 1}/{len(batches)} failed after {points_sent} points: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
                raise
            except Exception as e:
                raise WriteError(
                    "Unexpected error while writing batch",
                    context={"batch_index": batch_index, "points_sent": points_sent},
                    original_exception=e
                )

            points_sent += len(batch)
            logger.debug(f"Wrote batch {batch_index + 1}/{len(batches)} ({len(batch)} points)")

        logger.info(f"Successfully wrote {points_sent} points")
        return points_sent

    def preview(self, points: Sequence[Point]) -> None:
        self.preview_sink(f"Dry-run mode: would write {len(points)} points")

        shown = points if len(points) <= FULL_PREVIEW_THRESHOLD else points[:self.preview_limit]
        for i, point in enumerate(shown, start=1):
            self.preview_sink(f"[{i}/{len(points)}] {point.to_line_protocol()}")

        if len(points) > len(shown):
            self.preview_sink(f"... and {len(points) - len(shown)} more")
