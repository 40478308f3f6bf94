"""
moqrelay - random live-TV channel relay over Media over QUIC.

Clients pick a random channel from a locally cached playlist catalog and ask
the server, over a QUIC control channel, for a publisher name. The server
starts an ffmpeg | moq-pub pipeline under that name; the client subscribes
to it with moq-sub | ffmpeg and records the result.
"""

__version__ = "0.1.0"
