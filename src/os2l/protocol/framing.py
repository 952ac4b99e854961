"""
Splits the inbound byte stream into frames.

OS2L clients send JSON objects back to back with no length prefix or separator. A frame ends at the
next closing brace that is not escaped with a backslash. This is a textual heuristic rather than a JSON
tokenizer: a closing brace inside a string value ends the frame early, and that frame then fails to parse.
Scanning resumes after it, so the stream resynchronizes at the next real message boundary.
"""
import codecs
import json

from os2l.errors import OS2LError
from os2l.protocol.command import Command

FRAME_END = '}'
ESCAPE = '\\'


class BadFrameError(OS2LError, ValueError):
    """ A frame could not be decoded as a JSON object. The connection is not affected. """
    def __init__(self, frame, reason):
        super().__init__("Bad OS2L package received: %s" % reason)
        self.frame = frame
        self.reason = reason


class FrameTooLargeError(OS2LError, IOError):
    """ The unterminated frame exceeded the configured maximum buffer size. The connection is closed. """
    def __init__(self, size, limit):
        super().__init__("OS2L frame of %d characters exceeds the limit of %d" % (size, limit))
        self.size = size
        self.limit = limit


def find_frame_end(text, start=0):
    """
    Finds the index of the next closing brace that is not escaped by an odd run of backslashes.

    >>> find_frame_end('{"a":1}')
    6
    >>> find_frame_end('{"a":"\\\\}"}')
    9
    >>> find_frame_end('{"a":')
    -1
    """
    index = text.find(FRAME_END, start)
    while index != -1:
        escapes = 0
        i = index - 1
        while i >= 0 and text[i] == ESCAPE:
            escapes += 1
            i -= 1
        if not escapes % 2:
            return index
        index = text.find(FRAME_END, index + 1)
    return -1


class FrameDecoder:
    """
    Accumulates the bytes received on one connection and yields the candidate frames they contain.
    Bytes left after the last frame are kept until more data arrives.

    :param max_buffer: when positive, the largest number of characters allowed to wait for a frame end.
        Exceeding it raises FrameTooLargeError. The default of 0 leaves the buffer unbounded.
    """

    def __init__(self, max_buffer=0, encoding='utf-8'):
        self.max_buffer = max_buffer
        self.encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors='replace')
        self._buffer = ''

    @property
    def pending(self):
        """ the text received that is not yet part of a frame """
        return self._buffer

    def reset(self):
        self._decoder.reset()
        self._buffer = ''

    def feed(self, data: bytes):
        """
        Appends data to the buffer and returns an iterator over each complete candidate frame, in order.
        The frames are removed from the buffer as they are iterated, so frames not consumed are
        returned again from the next call.
        """
        self._buffer += self._decoder.decode(data)
        return self._frames()

    def _frames(self):
        while True:
            end = find_frame_end(self._buffer)
            if end == -1:
                break
            frame = self._buffer[:end + 1]
            self._buffer = self._buffer[end + 1:]
            yield frame
        self._check_size()

    def _check_size(self):
        size = len(self._buffer)
        if 0 < self.max_buffer < size:
            self.reset()
            raise FrameTooLargeError(size, self.max_buffer)

    def decode(self, data: bytes):
        """
        Feeds the data and parses each frame. Yields a Command for each good frame and a BadFrameError
        for each frame that could not be parsed, so the caller sees both in stream order.
        """
        for frame in self.feed(data):
            try:
                yield parse_frame(frame)
            except BadFrameError as e:
                yield e


def parse_frame(frame: str) -> Command:
    """
    Parses a frame into a Command.
    :raises BadFrameError: if the frame is not a JSON object.

    >>> parse_frame('{"evt":"beat","change":false}').evt
    'beat'
    """
    try:
        value = json.loads(frame)
    except (ValueError, RecursionError) as e:
        raise BadFrameError(frame, str(e)) from e
    if not isinstance(value, dict):
        raise BadFrameError(frame, "expected a JSON object, got %s" % type(value).__name__)
    return Command(value)
