"""
The connector package holds the server side of a client connection: the handle that reads from and
writes to one accepted socket, and the registry of live handles used for broadcast.
"""
