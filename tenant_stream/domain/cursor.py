from typing import Optional


class AggregateCursor:
    """Delivery position measured in aggregate ids, not append-log ids.

    Relay retries can append the same aggregate id twice under different log
    ids, so the two orderings are compared separately.
    """

    def __init__(self, position: Optional[int] = None):
        self.position = position

    def admit(self, aggregate_id: int) -> bool:
        """Return True and advance if ``aggregate_id`` is past the cursor."""
        if self.position is not None and aggregate_id <= self.position:
            return False
        self.position = aggregate_id
        return True
