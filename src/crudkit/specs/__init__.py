"""
crudkit specifications.

Schema-level types: field variants, entity definitions and the linker that
wires definitions into a back-reference graph.
"""

from crudkit.specs.entity import (
    INTERNAL_FIELDS,
    READ_ONLY_FIELDS,
    ChildReference,
    EntityDefinition,
)
from crudkit.specs.fields import (
    BoolField,
    DateField,
    DateTimeField,
    FieldKind,
    FieldSpec,
    FileField,
    FixedField,
    FloatField,
    IntField,
    ReferenceField,
    ReferenceSpec,
    SetField,
    TextField,
    parse_field,
)
from crudkit.specs.linker import build_definition, build_definitions, link_definitions

__all__ = [
    "BoolField",
    "ChildReference",
    "DateField",
    "DateTimeField",
    "EntityDefinition",
    "FieldKind",
    "FieldSpec",
    "FileField",
    "FixedField",
    "FloatField",
    "INTERNAL_FIELDS",
    "IntField",
    "READ_ONLY_FIELDS",
    "ReferenceField",
    "ReferenceSpec",
    "SetField",
    "TextField",
    "build_definition",
    "build_definitions",
    "link_definitions",
    "parse_field",
]
