"""
Placement policy for new objects.
Chooses one backend from the capacity-eligible candidates by size and
content type.
"""

from typing import Callable, Sequence

from app.core.exceptions import CapacityExhaustedException
from app.schemas.storage import StorageSourceDescriptor

PlacementPolicy = Callable[
    [Sequence[StorageSourceDescriptor], int, str | None],
    StorageSourceDescriptor,
]

CDN_CONTENT_PREFIXES = ("image/", "video/")


def has_room(descriptor: StorageSourceDescriptor, size: int) -> bool:
    return descriptor.available_bytes >= size


class HeuristicPlacementPolicy:
    """
    Default placement heuristic.

    1. Candidates without room for the object are dropped; if none remain
       ``CapacityExhaustedException`` is raised.
    2. The highest-priority candidate is chosen.
    3. Objects larger than ``bulk_threshold`` prefer a bulk-capable backend.
    4. Images and videos prefer a CDN-capable backend. Applied after rule 3,
       so a large video lands on a CDN backend even when a different
       bulk-capable backend exists.
    """

    def __init__(self, bulk_threshold: int):
        self.bulk_threshold = bulk_threshold

    def __call__(
        self,
        candidates: Sequence[StorageSourceDescriptor],
        size: int,
        content_type: str | None = None,
    ) -> StorageSourceDescriptor:
        eligible = sorted(
            (d for d in candidates if has_room(d, size)),
            key=lambda d: d.priority,
            reverse=True,
        )
        if not eligible:
            raise CapacityExhaustedException(size)

        chosen = eligible[0]

        if size > self.bulk_threshold:
            bulk = [d for d in eligible if d.is_bulk_capable]
            if bulk:
                chosen = bulk[0]

        if content_type and content_type.startswith(CDN_CONTENT_PREFIXES):
            cdn = [d for d in eligible if d.is_cdn_capable]
            if cdn:
                chosen = cdn[0]

        return chosen
