"""
The OS2L wire protocol: splitting the inbound byte stream into frames, decoding frames into commands,
and encoding outbound feedback.
"""
