import json
import unittest

from hamcrest import assert_that, calling, equal_to, is_, is_not, raises

from os2l.protocol.command import Command, encode_feedback


class CommandTest(unittest.TestCase):

    def test_fields(self):
        sut = Command({"evt": "btn", "name": "Strobe", "state": "on", "page": "Main", "id": 5})
        assert_that(sut.evt, is_("btn"))
        assert_that(sut.name, is_("Strobe"))
        assert_that(sut.state, is_("on"))
        assert_that(sut.page, is_("Main"))
        assert_that(sut["id"], is_(5))
        assert_that(len(sut), is_(5))

    def test_missing_fields_are_none(self):
        sut = Command()
        assert_that(sut.evt, is_(None))
        assert_that(sut.name, is_(None))
        assert_that(sut.get("state"), is_(None))

    def test_is_read_only(self):
        sut = Command({"evt": "beat"})

        def assign():
            sut["evt"] = "btn"

        assert_that(calling(assign), raises(TypeError))

    def test_constructed_from_a_copy(self):
        fields = {"evt": "beat"}
        sut = Command(fields)
        fields["evt"] = "btn"
        assert_that(sut.evt, is_("beat"))

    def test_to_dict_is_a_copy(self):
        sut = Command({"evt": "beat"})
        d = sut.to_dict()
        d["evt"] = "btn"
        assert_that(sut.evt, is_("beat"))

    def test_equality(self):
        assert_that(Command({"evt": "beat"}), equal_to({"evt": "beat"}))
        assert_that(Command({"evt": "beat"}), equal_to(Command({"evt": "beat"})))
        assert_that(Command({"evt": "beat"}), is_not(equal_to({"evt": "btn"})))

    def test_repr(self):
        assert_that(repr(Command({"evt": "beat"})), is_("Command({'evt': 'beat'})"))


class EncodeFeedbackTest(unittest.TestCase):

    def test_with_page(self):
        assert_that(encode_feedback("Fog", True, "Main"),
                    is_(b'{"evt":"feedback","name":"Fog","state":true,"page":"Main"}'))

    def test_without_page(self):
        assert_that(encode_feedback("Fog", "off"), is_(b'{"evt":"feedback","name":"Fog","state":"off"}'))

    def test_any_state(self):
        payload = json.loads(encode_feedback("Dimmer", 0.5).decode())
        assert_that(payload["state"], is_(0.5))

    def test_non_ascii_is_utf8(self):
        assert_that(encode_feedback("☀", True), is_('{"evt":"feedback","name":"☀","state":true}'.encode('utf-8')))


if __name__ == '__main__':  # pragma: no cover
    unittest.main()
