"""Reconnection policy with bounded exponential backoff."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from dateutil.tz import tzutc

from . import platforms
from .classifier import Classification
from .errors import ErrorKind

logger = logging.getLogger(__name__)


class RecoveryState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"


class ActionKind(str, Enum):
    STOP = "stop"
    FAIL = "fail"
    RETRY = "retry"


@dataclass
class RetryState:
    max_attempts: int = 4
    attempts: int = 0
    backoff_log: List[Dict[str, object]] = field(default_factory=list)

    @property
    def can_retry(self) -> bool:
        return self.attempts < self.max_attempts

    def reset(self) -> None:
        self.attempts = 0
        self.backoff_log = []


@dataclass(frozen=True)
class RecoveryAction:
    kind: ActionKind
    message: Optional[str] = None
    delay: float = 0.0


def backoff_delay(attempts: int, base: float = 1.0, cap: float = 60.0) -> float:
    return min((2 ** attempts) * base, cap)


def exhaustion_message(attempts: int, destination_url: Optional[str] = None) -> str:
    message = f"Stream disconnected after {attempts} reconnection attempts."
    hint = platforms.exhaustion_hint(destination_url)
    if hint:
        message += f" {hint}"
    return message


def plan_recovery(
    classification: Classification,
    retry: RetryState,
    destination_url: Optional[str] = None,
    base: float = 1.0,
    cap: float = 60.0,
) -> RecoveryAction:
    """Decide what to do about a classified failure. Pure."""
    if classification.kind is ErrorKind.USER_STOP:
        return RecoveryAction(ActionKind.STOP)
    if not classification.retryable:
        return RecoveryAction(ActionKind.FAIL, classification.message)
    if not retry.can_retry:
        return RecoveryAction(ActionKind.FAIL, exhaustion_message(retry.attempts, destination_url))
    return RecoveryAction(ActionKind.RETRY, classification.message, backoff_delay(retry.attempts, base, cap))


class ReconnectionController:
    """Per-broadcast retry state machine.

    ``Idle -> Attempting -> {Success | Retrying -> Attempting | Exhausted}``
    """

    def __init__(self, broadcast_id: str, max_attempts: int = 4, base_delay: float = 1.0, max_delay: float = 60.0):
        self.broadcast_id = broadcast_id
        self.retry = RetryState(max_attempts=max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.state = RecoveryState.IDLE

    def begin_attempt(self) -> None:
        self.state = RecoveryState.ATTEMPTING

    def mark_success(self) -> None:
        self.state = RecoveryState.SUCCESS

    def mark_exhausted(self) -> None:
        self.state = RecoveryState.EXHAUSTED

    def plan(self, classification: Classification, destination_url: Optional[str] = None) -> RecoveryAction:
        action = plan_recovery(classification, self.retry, destination_url, self.base_delay, self.max_delay)
        if action.kind is ActionKind.FAIL and classification.retryable:
            self.mark_exhausted()
        return action

    def reset(self) -> None:
        self.retry.reset()
        self.state = RecoveryState.IDLE

    async def wait_before_retry(self, cancel: asyncio.Event) -> bool:
        """Sleep out the backoff. Returns ``False`` if ``cancel`` fired first."""
        self.state = RecoveryState.RETRYING
        delay = backoff_delay(self.retry.attempts, self.base_delay, self.max_delay)
        logger.info(
            "Broadcast %s: retry attempt %d/%d, waiting %.1fs",
            self.broadcast_id,
            self.retry.attempts + 1,
            self.retry.max_attempts,
            delay,
        )
        self.retry.backoff_log.append(
            {
                "attempt": self.retry.attempts + 1,
                "delay": delay,
                "timestamp": dt.datetime.now(tzutc()).isoformat(),
            }
        )
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except asyncio.TimeoutError:
            self.retry.attempts += 1
            return True
        logger.info("Broadcast %s: backoff interrupted by stop request", self.broadcast_id)
        return False
