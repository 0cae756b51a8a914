"""Durable steps — replay completed work from the execution checkpoint."""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from loguru import logger
from pydantic import BaseModel

if TYPE_CHECKING:
    from agentcron.storage.store import Store


class StepContext:
    """Checkpoint-backed step runner for one JobExecution.

    ``step(name, fn)`` runs ``fn`` at most once per execution: its output
    is persisted under ``name`` before being returned, and a re-entered
    execution gets the stored output back instead of running ``fn`` again.
    Outputs are returned in their stored (JSON) form on both paths.
    """

    def __init__(
        self,
        store: Store,
        execution_id: str,
        checkpoint: dict[str, Any] | None = None,
    ):
        self.store = store
        self.execution_id = execution_id
        self._checkpoint: dict[str, Any] = dict(checkpoint or {})

    @property
    def completed(self) -> list[str]:
        return list(self._checkpoint)

    async def step(self, name: str, fn: Callable[[], Any | Awaitable[Any]]) -> Any:
        if name in self._checkpoint:
            logger.debug(f"Step replayed: {name} (execution {self.execution_id})")
            return self._checkpoint[name]

        output = fn()
        if inspect.isawaitable(output):
            output = await output
        if isinstance(output, BaseModel):
            output = output.model_dump(mode="json")

        self.store.save_checkpoint(self.execution_id, name, output)
        self._checkpoint[name] = output
        logger.debug(f"Step done: {name} (execution {self.execution_id})")
        return output
