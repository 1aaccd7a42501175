"""Client-side session controller.

Public API:
    SessionController -- Drives one watch session from start to end
    PlaybackHost -- Keeps exactly one live controller per player
    BackoffPolicy -- Retry schedule for failed heartbeats
    BeaconSender -- Best-effort termination request on teardown
"""

from watchbudget.client.backoff import BackoffPolicy
from watchbudget.client.beacon import BeaconSender
from watchbudget.client.controller import ControllerState, PlaybackHost, SessionController
from watchbudget.client.token import CancellationToken, OperationCancelled

__all__ = [
    "BackoffPolicy",
    "BeaconSender",
    "CancellationToken",
    "ControllerState",
    "OperationCancelled",
    "PlaybackHost",
    "SessionController",
]
