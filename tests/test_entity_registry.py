import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from entity_registry import (
    EntityDefinition,
    EntityRegistry,
    FieldDefinition,
    FieldType,
    load_entity_definitions,
)
from spark.errors import (
    EntityAlreadyRegisteredError,
    EntityNotFoundInRegistryError,
    InvalidEntityDefinitionError,
)


def _customers() -> dict:
    return {
        "slug": "customers",
        "fields": [
            {"name": "name", "type": "text", "required": True, "searchable": True},
            {"name": "email", "type": "email", "api": {"searchable": True}},
            {"name": "tier", "type": "select", "options": ["free", {"value": "pro", "label": "Pro"}]},
        ],
    }


class TestEntityRegistry(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = EntityRegistry()

    def test_register_from_mapping(self) -> None:
        definition = self.registry.register(_customers())
        self.assertEqual(definition.table, "customers")
        self.assertEqual(definition.field_names(), ["name", "email", "tier"])
        self.assertEqual(definition.searchable_fields(), ["name", "email"])
        self.assertEqual(definition.get_field("tier").option_values(), ["free", "pro"])
        self.assertEqual(definition.get_field("email").type, FieldType.EMAIL)
        self.assertIn("customers", self.registry)
        self.assertIs(self.registry.require("customers"), definition)

    def test_explicit_table_name(self) -> None:
        definition = self.registry.register({**_customers(), "tableName": "crm_customers"})
        self.assertEqual(definition.table, "crm_customers")

    def test_register_definition_object(self) -> None:
        definition = EntityDefinition(slug="notes", fields=(FieldDefinition(name="body"),))
        self.assertIs(self.registry.register(definition), definition)

    def test_duplicate_slug(self) -> None:
        self.registry.register(_customers())
        with self.assertRaises(EntityAlreadyRegisteredError):
            self.registry.register(_customers())

    def test_unsafe_names_are_rejected(self) -> None:
        for bad in (
            {"slug": "x; drop", "fields": []},
            {"slug": "ok", "tableName": "t; drop", "fields": []},
            {"slug": "ok", "fields": [{"name": "a b"}]},
        ):
            with self.assertRaises(InvalidEntityDefinitionError):
                self.registry.register(bad)
        self.assertEqual(self.registry.list(), [])

    def test_system_column_collision(self) -> None:
        with self.assertRaises(InvalidEntityDefinitionError) as cm:
            self.registry.register({"slug": "ok", "fields": [{"name": "userId"}]})
        self.assertIn("system column", cm.exception.errors[0])

    def test_duplicate_field(self) -> None:
        with self.assertRaises(InvalidEntityDefinitionError):
            self.registry.register({"slug": "ok", "fields": [{"name": "a"}, {"name": "a"}]})

    def test_unknown_field_type(self) -> None:
        with self.assertRaises(InvalidEntityDefinitionError):
            self.registry.register({"slug": "ok", "fields": [{"name": "a", "type": "hologram"}]})

    def test_field_validator_is_parsed(self) -> None:
        def check(value):
            return None

        definition = self.registry.register({"slug": "ok", "fields": [{"name": "a", "validator": check}]})
        self.assertIs(definition.get_field("a").validator, check)
        self.assertEqual(definition.get_field("a"), FieldDefinition(name="a"))

    def test_non_callable_validator(self) -> None:
        with self.assertRaises(InvalidEntityDefinitionError):
            self.registry.register({"slug": "ok", "fields": [{"name": "a", "validator": "^[a-z]+$"}]})

    def test_require_missing(self) -> None:
        self.assertIsNone(self.registry.get("ghosts"))
        with self.assertRaises(EntityNotFoundInRegistryError) as cm:
            self.registry.require("ghosts")
        self.assertEqual(cm.exception.slug, "ghosts")

    def test_list_unregister_clear(self) -> None:
        self.registry.register(_customers())
        self.registry.register({"slug": "accounts", "fields": []})
        self.assertEqual([d.slug for d in self.registry.list()], ["accounts", "customers"])
        self.assertTrue(self.registry.unregister("accounts"))
        self.assertFalse(self.registry.unregister("accounts"))
        self.registry.clear()
        self.assertEqual(self.registry.list(), [])

    def test_load_entity_definitions_from_slug_map(self) -> None:
        config = {
            "projects": {
                "fields": {
                    "title": {"type": "text", "required": True},
                    "budget": {"type": "number"},
                }
            }
        }
        (definition,) = load_entity_definitions(config)
        self.assertEqual(definition.slug, "projects")
        self.assertEqual(definition.field_names(), ["title", "budget"])
        self.assertTrue(definition.get_field("title").required)
        registry = EntityRegistry(load_entity_definitions([_customers()]))
        self.assertIn("customers", registry)

    def test_load_entity_definitions_rejects_scalars(self) -> None:
        with self.assertRaises(InvalidEntityDefinitionError):
            load_entity_definitions("customers")


if __name__ == "__main__":
    unittest.main()
