"""Client-side controller that drives one watch session.

States::

    idle -> starting -> active -> {limit_reached | ended | error}

The heartbeat loop is an explicit single-slot scheduler rather than a
sleeping coroutine. The controller holds at most one armed timer
(``next_fire_at``) and at most one outstanding request (``in_flight``),
and the next tick is only armed after the current one has settled.
Arming while either slot is occupied is a bug and raises.

Each controller owns a fresh CancellationToken. Teardown cancels it, so
stale responses are dropped, and hands a termination request to the
BeaconSender, which does not depend on this controller's loop or client.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Callable

import httpx

from watchbudget.client.backoff import BackoffPolicy
from watchbudget.client.beacon import BeaconSender
from watchbudget.client.token import CancellationToken, OperationCancelled
from watchbudget.domain.models import StoppedReason

logger = logging.getLogger(__name__)

CONNECT_ERROR_MESSAGE = "Failed to connect to server. Please check your internet connection."
START_ERROR_MESSAGE = "Failed to start watch session"
TICK_ERROR_MESSAGE = "Oops! Something went wrong. Please try again!"
LIMIT_MESSAGE = "Daily watch time limit reached"


class ControllerState(str, enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    LIMIT_REACHED = "limit_reached"
    ENDED = "ended"
    ERROR = "error"


TERMINAL_STATES = frozenset({ControllerState.LIMIT_REACHED, ControllerState.ENDED, ControllerState.ERROR})


class SessionController:
    """Starts a session, keeps it alive with heartbeats and ends it.

    Example usage::

        async with SessionController(profile_id, video_id, chip_id,
                                     base_url="http://kiosk:8080") as controller:
            await controller.activate()
            controller.update_position(12)
            ...
            await controller.end_session(StoppedReason.COMPLETED)
    """

    def __init__(
        self,
        profile_id: str | None,
        video_id: str,
        nfc_chip_id: str | None = None,
        *,
        base_url: str | None = None,
        api_prefix: str = "/api/sessions",
        client: httpx.AsyncClient | None = None,
        policy: BackoffPolicy | None = None,
        beacon: BeaconSender | None = None,
        request_timeout: float = 10.0,
        auto_end_on_limit: bool = True,
        on_state_change: Callable[[ControllerState], None] | None = None,
        on_tick: Callable[[dict], None] | None = None,
    ) -> None:
        self._profile_id = profile_id
        self._video_id = video_id
        self._nfc_chip_id = nfc_chip_id
        self._prefix = api_prefix.rstrip("/")
        self._policy = policy or BackoffPolicy()
        self._beacon = beacon or BeaconSender()
        self._auto_end_on_limit = auto_end_on_limit
        self._on_state_change = on_state_change
        self._on_tick = on_tick

        if client is None:
            self._base_url = (base_url or "http://localhost:8080").rstrip("/")
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=request_timeout)
            self._owns_client = True
        else:
            self._base_url = (base_url or str(client.base_url)).rstrip("/")
            self._client = client
            self._owns_client = False

        self._token = CancellationToken(name=f"{video_id[:8]}")
        self._state = ControllerState.IDLE
        self._terminal = asyncio.Event()
        self._session_id: str | None = None
        self._remaining_minutes: int | None = None
        self._elapsed_seconds = 0
        self._position: int | None = None
        self._error: str | None = None
        self._end_confirmed = False
        self._pending_end: StoppedReason | None = None
        self._torn_down = False

        # Scheduler slot
        self._timer: asyncio.TimerHandle | None = None
        self._next_fire_at: float | None = None
        self._in_flight = False
        self._tick_task: asyncio.Task | None = None
        self._consecutive_failures = 0

    # ------------------------------------------------------------------
    # Public state
    # ------------------------------------------------------------------

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def remaining_minutes(self) -> int | None:
        return self._remaining_minutes

    @property
    def elapsed_seconds(self) -> int:
        return self._elapsed_seconds

    @property
    def position(self) -> int | None:
        return self._position

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def next_fire_at(self) -> float | None:
        return self._next_fire_at

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def update_position(self, seconds: int) -> None:
        """Record the playback position to report with the next heartbeat."""
        self._position = max(0, int(seconds))

    async def wait_terminal(self) -> ControllerState:
        await self._terminal.wait()
        return self._state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def activate(self) -> ControllerState:
        """Start the session and arm the first heartbeat."""
        if self._state is not ControllerState.IDLE:
            raise RuntimeError(f"Controller already activated (state={self._state.value})")
        self._set_state(ControllerState.STARTING)

        path = f"{self._prefix}/start/public" if self._nfc_chip_id else f"{self._prefix}/start"
        payload = {
            k: v
            for k, v in {
                "profile_id": self._profile_id,
                "video_id": self._video_id,
                "nfc_chip_id": self._nfc_chip_id,
            }.items()
            if v is not None
        }

        try:
            resp = await self._token.run(self._client.post(path, json=payload))
        except OperationCancelled:
            return self._state
        except httpx.HTTPError as e:
            logger.warning("Session start failed: %s", e)
            if self._pending_end is not None:
                return self._state
            self._fail(CONNECT_ERROR_MESSAGE)
            return self._state

        data = _json(resp)
        if self._pending_end is not None:
            return await self._finish_pending_end(resp.status_code, data)

        if resp.status_code == 201:
            self._session_id = data["session_id"]
            self._remaining_minutes = data.get("remaining_minutes")
            self._error = None
            logger.info("Session %s active (remaining=%s)", self._session_id, self._remaining_minutes)
            self._set_state(ControllerState.ACTIVE)
            self._arm(self._policy.base_interval)
        elif resp.status_code == 403 and data.get("limit_reached"):
            self._remaining_minutes = 0
            self._error = data.get("message") or LIMIT_MESSAGE
            logger.info("Start refused: daily limit already reached")
            self._set_state(ControllerState.LIMIT_REACHED)
        else:
            logger.warning("Session start rejected with %d", resp.status_code)
            self._fail(data.get("message") or START_ERROR_MESSAGE)
        return self._state

    async def end_session(self, reason: StoppedReason = StoppedReason.MANUAL) -> dict | None:
        """Cancel the pending heartbeat and end the session.

        Safe to call more than once; the server answers a repeated end with
        the originally recorded outcome.
        Called while the start request is still outstanding, the controller
        ends at once and the end call is sent as soon as the session id is
        known; no heartbeat is ever armed for it.
        """
        self._cancel_timer()
        if self._session_id is None:
            if self._state is ControllerState.STARTING and self._pending_end is None:
                self._pending_end = StoppedReason(reason)
                self._set_state(ControllerState.ENDED)
            return None
        if self._state is not ControllerState.LIMIT_REACHED:
            self._set_state(ControllerState.ENDED)

        payload: dict[str, Any] = {"stopped_reason": StoppedReason(reason).value}
        if self._position is not None:
            payload["final_position_seconds"] = self._position

        try:
            resp = await self._token.run(
                self._client.post(f"{self._prefix}/{self._session_id}/end", json=payload)
            )
        except OperationCancelled:
            return None
        except httpx.HTTPError as e:
            logger.error("Failed to end session %s: %s", self._session_id, e)
            return None

        if resp.status_code != 200:
            logger.warning("End of session %s answered %d", self._session_id, resp.status_code)
            return None
        self._end_confirmed = True
        self._remaining_minutes = 0 if self._state is ControllerState.LIMIT_REACHED else self._remaining_minutes
        return _json(resp)

    async def _finish_pending_end(self, status_code: int, data: dict) -> ControllerState:
        if status_code == 201:
            self._session_id = data["session_id"]
            logger.info("Session %s ended before its first heartbeat", self._session_id)
            await self.end_session(self._pending_end)
        else:
            logger.debug("Start answered %d after the session was already ended", status_code)
        return self._state

    def teardown(self, reason: StoppedReason = StoppedReason.SWIPE_EXIT) -> None:
        """Retire this controller. Synchronous and idempotent.

        Cancels the token (aborting in-flight requests), drops the armed
        timer, and sends a best-effort end beacon if the session may still
        be open on the server.
        """
        if self._torn_down:
            return
        self._torn_down = True

        self._token.cancel()
        self._cancel_timer()
        if self._tick_task is not None and not self._tick_task.done():
            self._tick_task.cancel()

        if self._session_id is not None and not self._end_confirmed:
            payload: dict[str, Any] = {"stopped_reason": StoppedReason(reason).value}
            if self._position is not None:
                payload["final_position_seconds"] = self._position
            self._beacon.send(f"{self._base_url}{self._prefix}/{self._session_id}/end", payload)
            logger.debug("Teardown beacon sent for session %s", self._session_id)

        if self._state in (ControllerState.IDLE, ControllerState.STARTING, ControllerState.ACTIVE):
            self._set_state(ControllerState.ENDED)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> SessionController:
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.teardown()
        await self.aclose()

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    def _arm(self, delay: float) -> None:
        if self._in_flight:
            raise RuntimeError("Cannot arm a heartbeat while one is in flight")
        if self._timer is not None:
            raise RuntimeError("A heartbeat is already scheduled")
        if self._token.cancelled or self._state is not ControllerState.ACTIVE:
            return
        loop = asyncio.get_running_loop()
        self._next_fire_at = loop.time() + delay
        self._timer = loop.call_at(self._next_fire_at, self._fire)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._next_fire_at = None

    def _fire(self) -> None:
        self._timer = None
        self._next_fire_at = None
        if self._token.cancelled or self._state is not ControllerState.ACTIVE:
            return
        self._in_flight = True
        self._tick_task = asyncio.ensure_future(self._tick())

    async def _tick(self) -> None:
        try:
            next_delay = await self._heartbeat_once()
        except Exception:
            logger.exception("Heartbeat tick for session %s failed", self._session_id)
            next_delay = None
            self._fail(TICK_ERROR_MESSAGE)
        finally:
            self._in_flight = False
        if next_delay is not None:
            self._arm(next_delay)

    async def _heartbeat_once(self) -> float | None:
        """Send one heartbeat; return the delay before the next, or None to stop."""
        payload = {}
        if self._position is not None:
            payload["current_position_seconds"] = self._position

        try:
            resp = await self._token.run(
                self._client.post(f"{self._prefix}/{self._session_id}/heartbeat", json=payload)
            )
        except OperationCancelled:
            return None
        except httpx.HTTPError as e:
            if self._state is not ControllerState.ACTIVE:
                return None
            return self._on_failure(str(e))

        if self._state is not ControllerState.ACTIVE:
            # Settled after end_session(); the session is already terminal here.
            return None

        data = _json(resp)
        if resp.status_code == 200:
            self._consecutive_failures = 0
            self._remaining_minutes = data.get("remaining_minutes")
            self._elapsed_seconds = data.get("elapsed_seconds", self._elapsed_seconds)
            if self._on_tick is not None:
                self._on_tick(data)
            return self._policy.base_interval

        if resp.status_code == 403 and data.get("limit_reached"):
            self._consecutive_failures = 0
            self._remaining_minutes = 0
            self._elapsed_seconds = data.get("elapsed_seconds", self._elapsed_seconds)
            self._error = data.get("message") or LIMIT_MESSAGE
            logger.info("Session %s hit the daily limit", self._session_id)
            self._set_state(ControllerState.LIMIT_REACHED)
            if self._auto_end_on_limit:
                await self.end_session(StoppedReason.DAILY_LIMIT)
            return None

        if resp.status_code == 404:
            logger.info("Session %s no longer active on the server", self._session_id)
            self._error = data.get("message") or "Session ended"
            self._end_confirmed = True
            self._set_state(ControllerState.ENDED)
            return None

        if resp.status_code == 400:
            # Not transient and not fatal: drop the rejected position.
            logger.warning("Heartbeat position %s rejected for session %s", self._position, self._session_id)
            self._position = None
            return self._policy.base_interval

        return self._on_failure(f"HTTP {resp.status_code}")

    def _on_failure(self, reason: str) -> float | None:
        self._consecutive_failures += 1
        if self._policy.exhausted(self._consecutive_failures):
            logger.error(
                "Heartbeat for session %s failed %d times, giving up: %s",
                self._session_id, self._consecutive_failures, reason,
            )
            self._fail(CONNECT_ERROR_MESSAGE)
            return None
        delay = self._policy.delay_for(self._consecutive_failures)
        logger.warning(
            "Heartbeat failed (%d in a row), retrying in %.1fs: %s",
            self._consecutive_failures, delay, reason,
        )
        return delay

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _fail(self, message: str) -> None:
        self._error = message
        self._set_state(ControllerState.ERROR)

    def _set_state(self, state: ControllerState) -> None:
        if state is self._state:
            return
        self._state = state
        if state in TERMINAL_STATES:
            self._terminal.set()
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                logger.exception("State change callback failed on %s", state.value)


class PlaybackHost:
    """Holds the one live controller and retires it when playback switches.

    Starting a new session tears down the previous controller first, so
    timers and tokens of overlapping sessions never mix.
    """

    def __init__(self, factory: Callable[..., SessionController]) -> None:
        self._factory = factory
        self._current: SessionController | None = None

    @property
    def current(self) -> SessionController | None:
        return self._current

    async def play(
        self,
        profile_id: str | None,
        video_id: str,
        nfc_chip_id: str | None = None,
    ) -> SessionController:
        await self.close()
        controller = self._factory(profile_id, video_id, nfc_chip_id)
        self._current = controller
        await controller.activate()
        return controller

    async def close(self) -> None:
        previous, self._current = self._current, None
        if previous is not None:
            previous.teardown()
            await previous.aclose()


def _json(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
