"""sargen model attribute parser.

Turns the ``--model-attributes`` string of ``gen:module`` into validated
attribute descriptors.

Usage::

    from sargen.parser import parse_attributes

    attributes = parse_attributes("title:string,status:enum(open|closed)")
    print([a.storage_type for a in attributes])
"""

from sargen.parser.attributes import (
    ParseError,
    format_attribute,
    format_attributes,
    parse_attributes,
)
from sargen.parser.models import (
    STORAGE_TYPES,
    AttributeDescriptor,
    AttributeKind,
    ReferenceTarget,
)

__all__ = [
    "parse_attributes",
    "format_attribute",
    "format_attributes",
    "ParseError",
    "AttributeDescriptor",
    "AttributeKind",
    "ReferenceTarget",
    "STORAGE_TYPES",
]
