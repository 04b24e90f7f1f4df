"""
Signaling core: two-party rooms relaying WebRTC offers, answers and ICE candidates.

Frames are JSON over one WebSocket per client. Heartbeat every 30s by default;
no forced disconnect unless HEARTBEAT_MAX_MISSED is set.
"""

from duolink.core.signaling.relay import SignalingRelay

__all__ = ["SignalingRelay"]
