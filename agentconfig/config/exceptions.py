"""Exception classes for the configuration layer

Every error carries the key, namespace and/or extension it concerns so a
caller can render a precise message without re-deriving context.
"""

from typing import Any, Dict, Optional


def _namespace_name(namespace: Any) -> Optional[str]:
    # Accepts the Namespace enum or its plain string value
    if namespace is None:
        return None
    return getattr(namespace, "value", namespace)


class ConfigError(Exception):
    """Base exception for all configuration errors"""

    def __init__(
        self,
        message: str,
        *,
        key: Optional[str] = None,
        namespace: Optional[str] = None,
        extension: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.key = key
        self.namespace = _namespace_name(namespace)
        self.extension = extension

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization"""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "key": self.key,
            "namespace": self.namespace,
            "extension": self.extension,
        }


class NotFound(ConfigError):
    """Raised when a key or extension is absent and no default was given"""

    def __init__(
        self,
        *,
        key: Optional[str] = None,
        namespace: Optional[str] = None,
        extension: Optional[str] = None,
    ):
        if extension is not None and key is None:
            message = f"Extension '{extension}' not found"
        else:
            message = f"Key '{key}' not found in {_namespace_name(namespace)} namespace"
        super().__init__(message, key=key, namespace=namespace, extension=extension)


class Conflict(ConfigError):
    """Raised when adding an extension whose name is already registered"""

    def __init__(self, extension: str):
        super().__init__(
            f"Extension '{extension}' is already registered",
            extension=extension,
        )


class UnknownKey(ConfigError):
    """Raised when a settings key is not declared by the extension"""

    def __init__(self, extension: str, key: str):
        super().__init__(
            f"Extension '{extension}' does not declare setting '{key}'",
            key=key,
            extension=extension,
        )


class ProtectedExtension(ConfigError):
    """Raised when removing or disabling the last required built-in"""

    def __init__(self, extension: str, action: str):
        self.action = action
        super().__init__(
            f"Cannot {action} '{extension}': it is the last required built-in extension",
            extension=extension,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["action"] = self.action
        return data


class PersistenceError(ConfigError):
    """Raised on I/O, parse or lock failure; on-disk state is left unchanged"""
    pass


class InvalidValue(ConfigError, ValueError):
    """Raised when a value is not a supported type or does not match the declared kind"""
    pass


class DegradedSecretStorage(UserWarning):
    """Warning: platform keyring unavailable, secrets use the encrypted file fallback

    Issued through ``warnings.warn``; the operation still succeeds.
    """
    pass
