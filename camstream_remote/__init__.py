"""
camstream_remote - Remote multimodal analysis

An independently paced pipeline forwarding frames to an external multimodal
endpoint and streaming back observations.

- RemoteClient: httpx client (describe / contrastive classify)
- RemoteSessionManager: sequential request loop with liveness watchdog
"""

from camstream_remote.client import RemoteClient, RemoteReply, RemoteRequestError
from camstream_remote.session import RemoteSessionManager, RemoteState

__all__ = [
    "RemoteClient",
    "RemoteReply",
    "RemoteRequestError",
    "RemoteSessionManager",
    "RemoteState",
]
