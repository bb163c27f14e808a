"""
GCProbe: staged soft-ban diagnostic harness.

Logs in, brings up a game session, waits for the game coordinator
handshake and issues one profile request, racing every step against its
own deadline so that a remote which silently stops answering can be told
apart from one that rejects us outright.
"""

__version__ = "0.1.0"
