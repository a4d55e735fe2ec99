from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Dict, Optional, Tuple


BranchKey = Tuple[str, str]


class InFlightRegistry:
    """Pending branch generations of one session, keyed by ``(node_id, option_id)``.

    Shared by the orchestrator and the prefetcher so that a branch is never
    generated twice at the same time.  A key is dropped as soon as its task
    settles, whatever the outcome.
    """

    def __init__(self) -> None:
        self._tasks: Dict[BranchKey, asyncio.Task] = {}

    def get(self, key: BranchKey) -> Optional[asyncio.Task]:
        task = self._tasks.get(key)
        if task is not None and task.done():
            return None
        return task

    def __contains__(self, key: BranchKey) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    def keys(self) -> list[BranchKey]:
        return [k for k, t in self._tasks.items() if not t.done()]

    def launch(self, key: BranchKey, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Schedule *coro* as the pending operation for *key*."""
        if key in self:
            coro.close()
            raise RuntimeError(f"Branch {key} already has a pending generation")
        task = asyncio.get_running_loop().create_task(
            coro, name=f"branch:{key[0]}:{key[1]}"
        )
        self._tasks[key] = task
        task.add_done_callback(lambda t, key=key: self._settle(key, t))
        return task

    def _settle(self, key: BranchKey, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    async def drain(self) -> None:
        """Wait until every pending operation has settled."""
        while True:
            pending = [t for t in self._tasks.values() if not t.done()]
            if not pending:
                return
            await asyncio.wait(pending)
