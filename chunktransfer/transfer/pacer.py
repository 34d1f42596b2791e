"""Fixed-rate pacing for outbound chunks"""

import asyncio


class Pacer:
    """Approximate N chunks per second by sleeping 1/N after each send"""

    def __init__(self, chunks_per_second: float):
        if chunks_per_second <= 0:
            raise ValueError(f"chunks_per_second must be positive, got {chunks_per_second}")
        self.chunks_per_second = chunks_per_second

    @property
    def interval(self) -> float:
        return 1.0 / self.chunks_per_second

    async def pace(self):
        # Time spent building and sending the chunk is not deducted
        await asyncio.sleep(self.interval)
