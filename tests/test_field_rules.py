import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from modgraph.config_schema import ConfigSchemaTypeError, parse_config_schema, schema_dumps
from modgraph.semver import is_code, is_version


class TestConfigSchema(unittest.TestCase):
    def test_accepts_json_text(self) -> None:
        schema = parse_config_schema('{"type": "object", "properties": {"seats": {"type": "integer"}}}')
        self.assertEqual(schema["properties"]["seats"]["type"], "integer")

    def test_none_is_empty(self) -> None:
        self.assertEqual(parse_config_schema(None), {})

    def test_rejects_non_objects(self) -> None:
        for value in ("[1, 2]", "{broken", '"text"', [1], 3):
            with self.subTest(value=value):
                with self.assertRaises(ConfigSchemaTypeError):
                    parse_config_schema(value)

    def test_errors_name_the_schema_location(self) -> None:
        schema = {"properties": {"seats": {"type": "integer", "default": float("nan")}}}
        with self.assertRaises(ConfigSchemaTypeError) as ctx:
            parse_config_schema(schema)
        self.assertIn("config_schema.properties.seats.default", str(ctx.exception))
        with self.assertRaises(ConfigSchemaTypeError) as ctx:
            parse_config_schema({"enum": [1, {2}]})
        self.assertIn("config_schema.enum[1]", str(ctx.exception))

    def test_dumps_is_stable(self) -> None:
        self.assertEqual(schema_dumps({"b": 1, "a": "é"}), '{"a":"é","b":1}')
        with self.assertRaises(ConfigSchemaTypeError):
            schema_dumps({"x": float("inf")})
        with self.assertRaises(ConfigSchemaTypeError):
            schema_dumps({1: "numeric key"})


class TestFieldFormats(unittest.TestCase):
    def test_versions(self) -> None:
        for value in ("1.0.0", "10.20.30", "0.0.1"):
            self.assertTrue(is_version(value), value)
        for value in ("1.0", "1.0.0.0", "v1.0.0", "1.0.0-rc1", " 1.0.0", "1.0.0\n", None, 100):
            self.assertFalse(is_version(value), value)

    def test_codes(self) -> None:
        for value in ("crm", "video_calls", "m2"):
            self.assertTrue(is_code(value), value)
        for value in ("c", "CRM", "video-calls", "video calls", "", None):
            self.assertFalse(is_code(value), value)


if __name__ == "__main__":
    unittest.main()
