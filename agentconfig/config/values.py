"""Value types stored by the config layer

Plain values form a closed set: string, integer, float, boolean, or a
structured document (mapping / list of plain values). Secret values are
opaque strings or bytes.
"""

import json
from enum import Enum
from typing import Any, Dict, List, Union

from agentconfig.config.exceptions import InvalidValue


PlainValue = Union[str, int, float, bool, Dict[str, Any], List[Any]]
SecretValue = Union[str, bytes]


class Namespace(str, Enum):
    """Where a key lives"""
    PLAIN = "plain"
    SECRET = "secret"


class _Missing:
    """Sentinel for 'no default supplied' (None is a legitimate default)"""

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


class ValueKind(str, Enum):
    """Variant tag of a plain value"""
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DOCUMENT = "document"

    @classmethod
    def of(cls, value: Any, *, key: str = None) -> "ValueKind":
        """Classify a top-level plain value

        Only the exact builtin types qualify. Subclasses such as str-based
        enums or OrderedDict are rejected, as YAML cannot store them safely.

        Raises:
            InvalidValue: value is not one of the supported variants
        """
        kind = _SCALAR_KINDS.get(type(value))
        if kind is not None:
            return cls(kind)
        if type(value) in (dict, list):
            _check_document(value, key)
            return cls.DOCUMENT
        raise InvalidValue(
            f"Unsupported value type {type(value).__name__} for key '{key}'",
            key=key,
            namespace=Namespace.PLAIN,
        )

    def accepts(self, value: Any) -> bool:
        """Whether value may be stored under a key declared with this kind"""
        kind = ValueKind.of(value)
        if kind is self:
            return True
        # integers are valid floats
        return self is ValueKind.FLOAT and kind is ValueKind.INTEGER


_SCALAR_KINDS = {
    bool: "boolean",
    int: "integer",
    float: "float",
    str: "string",
}


def _check_document(value: Any, key: str) -> None:
    if value is None or type(value) in _SCALAR_KINDS:
        return
    if type(value) is list:
        for item in value:
            _check_document(item, key)
        return
    if type(value) is dict:
        for k, v in value.items():
            if type(k) is not str:
                raise InvalidValue(
                    f"Document keys must be strings, got {type(k).__name__} in '{key}'",
                    key=key,
                    namespace=Namespace.PLAIN,
                )
            _check_document(v, key)
        return
    raise InvalidValue(
        f"Unsupported value type {type(value).__name__} inside document '{key}'",
        key=key,
        namespace=Namespace.PLAIN,
    )


def validate_plain(key: str, value: Any, declared: ValueKind = None) -> ValueKind:
    """Check a plain value before it is stored

    Args:
        key: Config key (for error context)
        value: Candidate value
        declared: Kind the key is declared with, if any

    Returns:
        The value's kind

    Raises:
        InvalidValue: Unsupported type, or mismatch with the declared kind
    """
    kind = ValueKind.of(value, key=key)
    if declared is not None and not declared.accepts(value):
        raise InvalidValue(
            f"Key '{key}' expects {declared.value}, got {kind.value}",
            key=key,
            namespace=Namespace.PLAIN,
        )
    return kind


def validate_secret(key: str, value: Any) -> SecretValue:
    """Secrets are opaque strings or bytes"""
    if not isinstance(value, (str, bytes)):
        raise InvalidValue(
            f"Secret '{key}' must be str or bytes, got {type(value).__name__}",
            key=key,
            namespace=Namespace.SECRET,
        )
    return value


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def coerce_env_value(key: str, raw: str, declared: ValueKind = None) -> PlainValue:
    """Turn an environment override string into a plain value

    With a declared kind the string is converted to that kind. Without one it
    is parsed as JSON (so ``42``, ``true`` or ``{"a": 1}`` keep their type),
    falling back to the raw string.

    Raises:
        InvalidValue: raw cannot be converted to the declared kind
    """
    if declared is None:
        try:
            value = json.loads(raw)
        except ValueError:
            return raw
        try:
            ValueKind.of(value, key=key)
        except InvalidValue:
            # JSON null and friends stay strings
            return raw
        return value

    try:
        if declared is ValueKind.STRING:
            return raw
        if declared is ValueKind.INTEGER:
            return int(raw)
        if declared is ValueKind.FLOAT:
            return float(raw)
        if declared is ValueKind.BOOLEAN:
            lowered = raw.strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
            raise ValueError(f"not a boolean: {raw!r}")
        value = json.loads(raw)
        if not isinstance(value, (dict, list)):
            raise ValueError("not a JSON object or array")
        ValueKind.of(value, key=key)
        return value
    except ValueError as e:
        raise InvalidValue(
            f"Environment override for '{key}' is not a valid {declared.value}: {e}",
            key=key,
            namespace=Namespace.PLAIN,
        ) from e
