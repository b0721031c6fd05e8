"""
Bounded, cancellable polling of provider resource state.
"""
import logging
import threading
import time
from typing import Callable, Dict, FrozenSet, Optional, Tuple

from ..core.config import DEFAULT_MAX_WAIT, DEFAULT_POLL_INTERVAL
from ..core.exceptions import OperationCancelled, ValidationError, WaitTerminalState, WaitTimeout
from ..providers.base import ComputeProvider
from ..providers.models import (
    ImageState,
    InstanceState,
    ResourceKind,
    SnapshotState,
    VolumeState,
)


logger = logging.getLogger(__name__)

_INSTANCE_GONE = frozenset({InstanceState.SHUTTING_DOWN, InstanceState.TERMINATED})
_IMAGE_BROKEN = frozenset({
    ImageState.FAILED, ImageState.INVALID, ImageState.DEREGISTERED, ImageState.ERROR,
})
_VOLUME_BROKEN = frozenset({VolumeState.ERROR, VolumeState.DELETING, VolumeState.DELETED})

# (kind, target) -> states from which the target can no longer be reached
TERMINAL_STATES: Dict[Tuple[str, str], FrozenSet[str]] = {
    (ResourceKind.INSTANCE, InstanceState.RUNNING): _INSTANCE_GONE,
    (ResourceKind.INSTANCE, InstanceState.STOPPED): _INSTANCE_GONE,
    (ResourceKind.IMAGE, ImageState.AVAILABLE): _IMAGE_BROKEN,
    (ResourceKind.SNAPSHOT, SnapshotState.COMPLETED): frozenset({SnapshotState.ERROR}),
    (ResourceKind.VOLUME, VolumeState.AVAILABLE): _VOLUME_BROKEN,
    (ResourceKind.VOLUME, VolumeState.IN_USE): _VOLUME_BROKEN,
}


def _event_wait(event: threading.Event, timeout: float) -> bool:
    return event.wait(timeout)


class Waiter:
    """Polls a provider until a resource reaches a target state.

    Polling is linear: one describe call every ``poll_interval`` seconds until
    the target state, a terminal state, the deadline, or cancellation.
    """

    def __init__(
        self,
        provider: ComputeProvider,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_wait: float = DEFAULT_MAX_WAIT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        wait: Callable[[threading.Event, float], bool] = _event_wait,
    ):
        """Initialize the waiter.

        Args:
            provider: Provider whose get_* calls are polled
            poll_interval: Default seconds between polls
            max_wait: Default upper bound in seconds for a single wait
            clock: Monotonic clock, injectable for tests
            sleep: Sleep used between polls when no cancel event is supplied
            wait: Pause used between polls when a cancel event is supplied.
                Returns True if the event was set during the pause.
        """
        if poll_interval <= 0:
            raise ValidationError(f"poll_interval must be positive, got {poll_interval}")
        if max_wait < 0:
            raise ValidationError(f"max_wait must not be negative, got {max_wait}")

        self.provider = provider
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self._clock = clock
        self._sleep = sleep
        self._wait = wait

        self._getters = {
            ResourceKind.INSTANCE: provider.get_instance,
            ResourceKind.IMAGE: provider.get_image,
            ResourceKind.SNAPSHOT: provider.get_snapshot,
            ResourceKind.VOLUME: provider.get_volume,
        }

    def wait_until(
        self,
        kind: str,
        resource_id: str,
        target_state: str,
        poll_interval: Optional[float] = None,
        max_wait: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Block until a resource reports ``target_state``.

        Args:
            kind: One of ResourceKind
            resource_id: Provider id of the resource
            target_state: State to wait for
            poll_interval: Overrides the default interval for this wait
            max_wait: Overrides the default deadline for this wait. 0 checks once.
            cancel_event: Setting this event aborts the wait immediately

        Returns:
            The record observed in the target state (None when waiting for an
            instance to terminate and it has already disappeared)

        Raises:
            WaitTimeout: If the deadline passes first
            WaitTerminalState: If the resource can no longer reach the target
            OperationCancelled: If cancel_event is set
            ProviderError: If a describe call fails
        """
        if kind not in self._getters:
            raise ValidationError(f"Unsupported resource kind: {kind}")

        interval = self.poll_interval if poll_interval is None else poll_interval
        limit = self.max_wait if max_wait is None else max_wait
        if interval <= 0:
            raise ValidationError(f"poll_interval must be positive, got {interval}")

        getter = self._getters[kind]
        terminal = TERMINAL_STATES.get((kind, target_state), frozenset())
        deadline = self._clock() + max(limit, 0)
        last_state = None
        polls = 0

        logger.info(f"Waiting up to {limit}s for {kind} {resource_id} to become {target_state}")

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelled(
                    f"Cancelled while waiting for {kind} {resource_id} to become {target_state}"
                )

            record = getter(resource_id)
            polls += 1

            if record is None:
                if kind == ResourceKind.INSTANCE and target_state == InstanceState.TERMINATED:
                    return None
                logger.debug(f"{kind} {resource_id} not visible yet (poll {polls})")
            else:
                last_state = record.state
                if last_state == target_state:
                    logger.info(f"{kind} {resource_id} reached {target_state} after {polls} poll(s)")
                    return record
                if last_state in terminal:
                    raise WaitTerminalState(
                        f"{kind} {resource_id} reached {last_state} while waiting for {target_state}",
                        resource_kind=kind,
                        resource_id=resource_id,
                        target_state=target_state,
                        last_state=last_state,
                    )
                logger.debug(f"{kind} {resource_id} is {last_state} (poll {polls})")

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise WaitTimeout(
                    f"Timed out after {limit}s waiting for {kind} {resource_id} "
                    f"to become {target_state} (last state: {last_state or 'unknown'})",
                    resource_kind=kind,
                    resource_id=resource_id,
                    target_state=target_state,
                    last_state=last_state,
                )

            delay = min(interval, remaining)
            if cancel_event is not None:
                if self._wait(cancel_event, delay):
                    raise OperationCancelled(
                        f"Cancelled while waiting for {kind} {resource_id} to become {target_state}"
                    )
            else:
                self._sleep(delay)
