"""
QUIC control channel: payloads, TLS credentials, client and server.
"""
