"""watchbudget -- Watch session lifecycle and daily time-budget enforcement.

Children start playback from an NFC chip or the kiosk UI; parents cap how
many minutes each profile may watch per day. This package opens watch
sessions, measures them with server-side heartbeats, projects the daily
total against the profile's limit, and terminates each session exactly
once no matter how many stop signals race each other.
"""

__version__ = "0.1.0"
