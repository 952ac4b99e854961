"""
The decoded form of an OS2L message, and the encoding of the feedback message sent back to clients.
"""
import json
from collections.abc import Mapping

FEEDBACK_EVT = "feedback"


class Command(Mapping):
    """
    A read-only mapping holding the fields of one decoded OS2L message.
    No schema is enforced: the fields are whatever the client sent. The common fields are available as
    properties, which are None when the client did not send them.

    >>> c = Command({"evt": "btn", "name": "Strobe", "state": "on"})
    >>> c.evt, c.name, c.state, c.page
    ('btn', 'Strobe', 'on', None)
    >>> c == {"evt": "btn", "name": "Strobe", "state": "on"}
    True
    """

    __slots__ = ('_fields',)

    def __init__(self, fields=()):
        self._fields = dict(fields)

    def __getitem__(self, key):
        return self._fields[key]

    def __iter__(self):
        return iter(self._fields)

    def __len__(self):
        return len(self._fields)

    def __repr__(self):
        return 'Command(%r)' % self._fields

    @property
    def evt(self):
        return self._fields.get('evt')

    @property
    def name(self):
        return self._fields.get('name')

    @property
    def state(self):
        return self._fields.get('state')

    @property
    def page(self):
        return self._fields.get('page')

    def to_dict(self):
        """ a mutable copy of the fields """
        return dict(self._fields)


def encode_feedback(name, state, page=None) -> bytes:
    """
    Encodes a feedback message. The page is left out when not given.

    >>> encode_feedback("Fog", True, "Main")
    b'{"evt":"feedback","name":"Fog","state":true,"page":"Main"}'
    >>> encode_feedback("Fog", False)
    b'{"evt":"feedback","name":"Fog","state":false}'
    """
    message = {"evt": FEEDBACK_EVT, "name": name, "state": state}
    if page is not None:
        message["page"] = page
    return json.dumps(message, separators=(',', ':'), ensure_ascii=False).encode('utf-8')
