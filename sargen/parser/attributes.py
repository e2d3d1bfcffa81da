"""Model attribute string parser.

Grammar::

    attributes := segment ("," segment)*
    segment    := name ":" type
    type       := "string" | "number" | "integer" | "bool" | "boolean"
                | "float" | "date"
                | "ref(" identifier ")"
                | "enum(" value ("|" value)* ")"

Commas are only treated as separators outside parentheses, so arguments of
``ref(...)`` / ``enum(...)`` never split a segment.
"""

from __future__ import annotations

import re

from .models import AttributeDescriptor, AttributeKind, ReferenceTarget

MAX_INPUT_LENGTH = 2000
MAX_ATTRIBUTES = 30
MAX_ENUM_VALUES = 10

IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_REF_RE = re.compile(r"^ref\((?P<arg>.*)\)$", re.IGNORECASE | re.DOTALL)
_ENUM_RE = re.compile(r"^enum\((?P<arg>.*)\)$", re.IGNORECASE | re.DOTALL)

# Input spelling -> kind.  ``bool`` is accepted as an alias of ``boolean``.
SIMPLE_TYPES: dict[str, AttributeKind] = {
    "string": AttributeKind.STRING,
    "number": AttributeKind.NUMBER,
    "integer": AttributeKind.INTEGER,
    "bool": AttributeKind.BOOLEAN,
    "boolean": AttributeKind.BOOLEAN,
    "float": AttributeKind.FLOAT,
    "date": AttributeKind.DATE,
}

# Columns every generated table already has.
RESERVED_NAMES = frozenset({"id", "createdAt", "updatedAt"})


class ParseError(ValueError):
    """Raised when an attribute string is malformed or exceeds its limits."""

    def __init__(self, message: str, segment: str = "") -> None:
        self.segment = segment
        super().__init__(message)


def split_top_level(raw: str, separator: str = ",") -> list[str]:
    """Split *raw* on *separator* characters that sit outside parentheses.

    Raises:
        ParseError: On an unmatched ``(`` or ``)``.
    """
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in raw:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise ParseError(f"Unbalanced ')' in attributes: {raw!r}")
        if char == separator and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    if depth != 0:
        raise ParseError(f"Unbalanced '(' in attributes: {raw!r}")
    parts.append("".join(current))
    return parts


def parse_attributes(raw: str | None) -> list[AttributeDescriptor]:
    """Parse a model attribute string.

    Args:
        raw: Attribute string, e.g. ``"name:string,status:enum(open|closed)"``.

    Returns:
        One descriptor per non-empty segment, in input order.  Empty or
        whitespace-only input yields an empty list.

    Raises:
        ParseError: On malformed segments, unsupported types, invalid or
            duplicate names, and when the size limits are exceeded.
    """
    if raw is None or not raw.strip():
        return []

    if len(raw) > MAX_INPUT_LENGTH:
        raise ParseError(
            f"Input too large. Maximum {MAX_INPUT_LENGTH} characters allowed."
        )

    segments = split_top_level(raw)
    if len(segments) > MAX_ATTRIBUTES:
        raise ParseError(
            f"Too many attributes. Maximum {MAX_ATTRIBUTES} attributes allowed."
        )

    attributes: list[AttributeDescriptor] = []
    seen: set[str] = set()
    for segment in segments:
        segment = segment.strip()
        if not segment:
            continue
        attribute = parse_segment(segment)
        if attribute.name in seen:
            raise ParseError(f"Duplicate attribute name: {attribute.name!r}", segment)
        seen.add(attribute.name)
        attributes.append(attribute)

    return attributes


def parse_segment(segment: str) -> AttributeDescriptor:
    """Parse one ``name:type`` segment."""
    name, sep, type_spec = segment.partition(":")
    name = name.strip()
    type_spec = type_spec.strip()
    if not sep or not name or not type_spec:
        raise ParseError(
            f'Invalid attribute format: "{segment}". Expected format: "columnName:dataType"',
            segment,
        )

    if not IDENTIFIER_RE.match(name):
        raise ParseError(
            f'Invalid column name: "{name}". Use only letters, numbers, and underscores.',
            segment,
        )
    if name in RESERVED_NAMES:
        raise ParseError(
            f'Column name "{name}" is reserved; it is generated for every table.',
            segment,
        )

    ref_match = _REF_RE.match(type_spec)
    if ref_match:
        target = ref_match.group("arg").strip()
        if not IDENTIFIER_RE.match(target):
            raise ParseError(f'Invalid reference target: "{target}"', segment)
        return AttributeDescriptor(
            name=name,
            kind=AttributeKind.REFERENCE,
            reference=ReferenceTarget(model=target),
        )

    enum_match = _ENUM_RE.match(type_spec)
    if enum_match:
        values = [value.strip() for value in enum_match.group("arg").split("|")]
        if len(values) > MAX_ENUM_VALUES:
            raise ParseError(
                f'Too many enum values for "{name}". Maximum {MAX_ENUM_VALUES} allowed.',
                segment,
            )
        if any(not value for value in values):
            raise ParseError(f'Empty enum value for "{name}".', segment)
        if len(set(values)) != len(values):
            raise ParseError(f'Duplicate enum values for "{name}".', segment)
        return AttributeDescriptor(
            name=name,
            kind=AttributeKind.ENUM,
            enum_values=tuple(values),
        )

    kind = SIMPLE_TYPES.get(type_spec.lower())
    if kind is None:
        supported = ", ".join([*SIMPLE_TYPES, "ref(model)", "enum(a|b)"])
        raise ParseError(
            f'Unsupported data type: "{type_spec.lower()}". Supported types: {supported}',
            segment,
        )
    return AttributeDescriptor(name=name, kind=kind)


def format_attribute(attribute: AttributeDescriptor) -> str:
    """Serialise a descriptor back to its ``name:type`` form."""
    if attribute.kind is AttributeKind.REFERENCE and attribute.reference:
        return f"{attribute.name}:ref({attribute.reference.model})"
    if attribute.kind is AttributeKind.ENUM:
        return f"{attribute.name}:enum({'|'.join(attribute.enum_values)})"
    return f"{attribute.name}:{attribute.kind.value}"


def format_attributes(attributes: list[AttributeDescriptor]) -> str:
    """Serialise a descriptor list back to an attribute string."""
    return ",".join(format_attribute(attribute) for attribute in attributes)
