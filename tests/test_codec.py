"""
Tests for the typed JSON codec.

Covers the wire shape of tagged nodes, type resolution and the values the
encoder refuses.
"""

import collections
import importlib
from decimal import Decimal
from fractions import Fraction

import numpy as np
import orjson
import pytest

from preserve.codec import (
    Decoder,
    Encoder,
    split_type_identifier,
    type_identifier,
)
from preserve.compat import MappingBinder, SurrogateSelector
from preserve.error_handling import SerializationError

from geometry_models import Circle, CircleSurrogate, Color, Point, Rectangle


def roundtrip(value, **decoder_kwargs):
    return Decoder(**decoder_kwargs).decode(Encoder().encode(value))


class Tagged(collections.OrderedDict):
    pass


class Meters(int):
    pass


class Ratio(float):
    pass


class Label(str):
    pass


class Blob(bytes):
    pass


class History(collections.deque):
    pass


class TestWireFormat:
    """The JSON shape written for each kind of value."""

    def test_json_native_values_are_untagged(self):
        value = {"a": [1, 2.5, "x", None, True]}
        assert orjson.loads(Encoder().encode(value)) == value

    def test_object_node(self):
        tree = Encoder().to_tree(Rectangle(1.0, 2.0))
        assert tree == {
            "$type": "geometry_models:Rectangle",
            "$state": {"width": 1.0, "height": 2.0},
        }

    def test_enum_node(self):
        assert Encoder().to_tree(Color.GREEN) == {
            "$type": "geometry_models:Color",
            "$value": "green",
        }

    def test_namedtuple_node(self):
        assert Encoder().to_tree(Point(1.0, 2.0)) == {
            "$type": "geometry_models:Point",
            "$items": [1.0, 2.0],
        }

    def test_set_items_are_sorted(self):
        assert Encoder().to_tree({3, 1, 2})["$items"] == [1, 2, 3]

    def test_bytes_are_base64(self):
        assert Encoder().to_tree(b"hi") == {"$type": "builtins:bytes", "$b64": "aGk="}

    def test_large_int_is_tagged(self):
        assert Encoder().to_tree(2**64) == {"$type": "builtins:int", "$value": str(2**64)}
        assert Encoder().to_tree(2**63) == 2**63

    def test_stamped_identifier(self):
        tree = Encoder(stamp_module_versions=True).to_tree(Circle(1.0))
        assert tree["$type"] == "geometry_models, version=2.1:Circle"
        assert tree["$state"]["color"]["$type"] == "geometry_models, version=2.1:Color"

    def test_stamping_skips_unversioned_modules(self):
        assert type_identifier(Tagged, stamp_version=True) == f"{__name__}:Tagged"


class TestTypeIdentifiers:
    def test_type_identifier(self):
        assert type_identifier(Circle) == "geometry_models:Circle"

    def test_split(self):
        assert split_type_identifier("shapes, version=1.2:Outer.Inner") == (
            "shapes, version=1.2",
            "Outer.Inner",
        )

    @pytest.mark.parametrize("identifier", ["Circle", ":Circle", "shapes:"])
    def test_split_malformed(self, identifier):
        with pytest.raises(SerializationError):
            split_type_identifier(identifier)


class TestRoundTrips:
    @pytest.mark.parametrize(
        "value",
        [
            Fraction(3, 7),
            Decimal("-0.000001"),
            complex(0, -1),
            collections.OrderedDict([("b", 1), ("a", 2)]),
            {"nested": {(1, 2): {frozenset({1}): "deep"}}},
        ],
    )
    def test_values(self, value):
        assert roundtrip(value) == value

    def test_collection_subclass_keeps_type_and_attributes(self):
        value = Tagged(x=1)
        value.label = "extra"
        loaded = roundtrip(value)
        assert type(loaded) is Tagged
        assert loaded == value
        assert loaded.label == "extra"

    def test_object_array(self):
        value = np.array([Circle(1.0), None, "s"], dtype=object)
        loaded = roundtrip(value)
        assert loaded.dtype == object
        assert list(loaded) == list(value)

    def test_empty_array_keeps_shape(self):
        value = np.zeros((0, 3), dtype=np.int64)
        loaded = roundtrip(value)
        assert loaded.shape == (0, 3)
        assert loaded.dtype == np.int64

    @pytest.mark.parametrize(
        "value",
        [Meters(5), Meters(2**70), Ratio(0.25), Ratio(float("inf")), Label("north"), Blob(b"\x00ab")],
    )
    def test_scalar_subclass_keeps_type_and_value(self, value):
        loaded = roundtrip(value)
        assert type(loaded) is type(value)
        assert loaded == value

    def test_nested_scalar_subclass(self):
        loaded = roundtrip({"distance": Meters(5), Label("key"): [Ratio(0.5)]})
        assert loaded == {"distance": 5, "key": [0.5]}
        assert type(loaded["distance"]) is Meters
        assert type(next(k for k in loaded if k == "key")) is Label
        assert type(loaded["key"][0]) is Ratio

    def test_scalar_subclass_attributes(self):
        value = Meters(12)
        value.source = "survey"
        tree = Encoder().to_tree(value)
        assert tree == {
            "$type": f"{__name__}:Meters",
            "$value": 12,
            "$state": {"source": "survey"},
        }
        loaded = roundtrip(value)
        assert loaded == 12
        assert loaded.source == "survey"

    def test_numpy_string_scalars(self):
        text = roundtrip(np.str_("abc"))
        assert type(text) is np.str_
        assert text == "abc"

        raw = roundtrip(np.bytes_(b"xyz"))
        assert type(raw) is np.bytes_
        assert raw == b"xyz"


class TestEncoderRejections:
    def test_lambda(self):
        with pytest.raises(SerializationError):
            Encoder().encode(lambda: None)

    def test_module(self):
        with pytest.raises(SerializationError):
            Encoder().encode({"module": np})

    def test_generator(self):
        with pytest.raises(SerializationError):
            Encoder().encode(x for x in range(3))

    def test_local_class(self):
        class Local:
            pass

        with pytest.raises(SerializationError, match="locally defined"):
            Encoder().encode(Local())

    def test_native_container_subclass(self):
        with pytest.raises(SerializationError, match="subclasses of deque"):
            Encoder().encode(History([1, 2, 3]))

    def test_nested_native_container_subclass(self):
        with pytest.raises(SerializationError):
            Encoder().encode({"log": History([1])})

    def test_circular_dict(self):
        value = {}
        value["self"] = value
        with pytest.raises(SerializationError, match="Circular reference"):
            Encoder().encode(value)

    def test_shared_reference_is_not_circular(self):
        shared = [1, 2]
        assert roundtrip([shared, shared]) == [[1, 2], [1, 2]]

    def test_depth_limit(self):
        value = []
        for _ in range(20):
            value = [value]
        with pytest.raises(SerializationError):
            Encoder(max_depth=10).encode(value)


class TestDecoder:
    def test_invalid_json(self):
        with pytest.raises(SerializationError, match="not valid JSON"):
            Decoder().decode(b"{not json")

    def test_malformed_builtin_node(self):
        with pytest.raises(SerializationError, match="Malformed node"):
            Decoder().decode(b'{"$type":"decimal:Decimal"}')

    def test_non_string_tag(self):
        with pytest.raises(SerializationError):
            Decoder().decode(b'{"$type":5}')

    def test_unknown_attribute(self):
        with pytest.raises(SerializationError, match="has no type"):
            Decoder().decode(b'{"$type":"geometry_models:Hexagon","$state":{}}')

    def test_non_type_attribute(self):
        with pytest.raises(SerializationError, match="does not name a type"):
            Decoder().decode(b'{"$type":"geometry_models:__version__","$state":{}}')

    def test_unknown_module_without_fallback(self):
        with pytest.raises(SerializationError, match="Cannot resolve module"):
            Decoder().decode(b'{"$type":"no_such_module_here:X","$state":{}}')

    def test_binder_takes_precedence(self):
        payload = b'{"$type":"legacy:Box","$state":{"width":1,"height":2}}'
        decoder = Decoder(binder=MappingBinder({"legacy:Box": Rectangle}))
        assert decoder.decode(payload) == Rectangle(1, 2)

    def test_selector_builds_objects(self):
        payload = b'{"$type":"geometry_models:Circle","$state":{"diameter":3}}'
        decoder = Decoder(selector=SurrogateSelector({Circle: CircleSurrogate()}))
        assert decoder.decode(payload) == Circle(1.5)

    def test_custom_import_module(self):
        requested = []

        def importer(name):
            requested.append(name)
            return importlib.import_module("geometry_models")

        payload = b'{"$type":"renamed.package:Rectangle","$state":{"width":1,"height":1}}'
        assert Decoder(import_module=importer).decode(payload) == Rectangle(1, 1)
        assert requested == ["renamed.package"]

    def test_plain_dict_with_dollar_keys_survives(self):
        assert roundtrip({"$state": 1, "$type": "x"}) == {"$state": 1, "$type": "x"}
