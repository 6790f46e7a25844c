"""
External ports consumed by the engine.

The engine only sees these interfaces; concrete adapters live in
core/analyzers.py and backend/executor.py, and tests plug in fakes.
"""
from __future__ import annotations

import abc
from typing import Any

from models.schemas import ActionRequest, ActionResult, ExecutionContext, IntentAnalysis


class IntentAnalyzer(abc.ABC):
    """Free text → intent label."""

    @abc.abstractmethod
    async def analyze(self, payload: dict[str, Any]) -> IntentAnalysis:
        """
        Analyze one inbound message.

        payload keys: content, sender, channel, timestamp.
        Only IntentAnalysis.intent is consumed by the engine.
        """
        ...


class ActionExecutor(abc.ABC):
    """Structured action → result. Implements the business actions themselves."""

    @abc.abstractmethod
    async def execute(self, request: ActionRequest, context: ExecutionContext) -> ActionResult:
        ...
