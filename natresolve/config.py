"""
Configuration management for natresolve.

Handles:
- Key/value settings read by the address resolver
- Vetoable change listeners consulted before a value is committed
- JSON persistence under ~/.natresolve
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import PropertyVetoError

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_DATA_DIR = Path.home() / ".natresolve"

# Recognized keys
STUN_SERVER_ADDRESS = "STUN_SERVER_ADDRESS"
STUN_SERVER_PORT = "STUN_SERVER_PORT"
BIND_RETRIES = "BIND_RETRIES"

KNOWN_KEYS = (STUN_SERVER_ADDRESS, STUN_SERVER_PORT, BIND_RETRIES)

# listener(key, old_value, new_value); raises PropertyVetoError to abort
VetoableChangeListener = Callable[[str, Optional[str], Optional[str]], None]


class ConfigurationStore:
    """
    String-valued configuration with vetoable changes.

    Stored at ~/.natresolve/config.json
    """

    def __init__(self, properties: Optional[Dict[str, str]] = None, data_dir: Optional[Path] = None):
        self.data_dir = data_dir or DEFAULT_DATA_DIR
        self._properties: Dict[str, str] = dict(properties or {})
        self._listeners: Dict[str, List[VetoableChangeListener]] = {}
        self._lock = threading.RLock()

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"

    def get_string(self, key: str) -> Optional[str]:
        """Get a property value, or None if unset."""
        with self._lock:
            return self._properties.get(key)

    def get_int(self, key: str, default: int) -> int:
        """Get a property as an integer, falling back to ``default``."""
        value = self.get_string(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.error(f"{key}={value!r} does not appear to be an integer. Defaulting to {default}")
            return default

    def as_dict(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._properties)

    def add_vetoable_change_listener(self, key: str, listener: VetoableChangeListener) -> None:
        with self._lock:
            listeners = self._listeners.setdefault(key, [])
            if listener not in listeners:
                listeners.append(listener)

    def remove_vetoable_change_listener(self, key: str, listener: VetoableChangeListener) -> None:
        with self._lock:
            listeners = self._listeners.get(key, [])
            if listener in listeners:
                listeners.remove(listener)

    def listeners_for(self, key: str) -> List[VetoableChangeListener]:
        with self._lock:
            return list(self._listeners.get(key, []))

    def set_property(self, key: str, value: Any) -> None:
        """
        Set a property after every vetoable listener for ``key`` accepted it.

        Raises:
            PropertyVetoError: a listener rejected the value (nothing is changed)
        """
        new_value = None if value is None else str(value)
        with self._lock:
            old_value = self._properties.get(key)
            for listener in list(self._listeners.get(key, [])):
                listener(key, old_value, new_value)

            if new_value is None:
                self._properties.pop(key, None)
            else:
                self._properties[key] = new_value

        logger.debug(f"Property {key} changed: {old_value!r} -> {new_value!r}")

    def remove_property(self, key: str) -> None:
        """Remove a property (listeners see a proposed value of None)."""
        self.set_property(key, None)

    def save(self) -> None:
        """Save configuration to disk."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w') as f:
            json.dump(self.as_dict(), f, indent=2)

        logger.debug(f"Configuration saved to {self.config_path}")

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> "ConfigurationStore":
        """Load configuration from disk."""
        data_dir = data_dir or DEFAULT_DATA_DIR
        config_path = data_dir / "config.json"

        if not config_path.exists():
            return cls(data_dir=data_dir)

        with open(config_path, 'r') as f:
            data = json.load(f)

        properties = {k: str(v) for k, v in data.items() if v is not None}
        return cls(properties=properties, data_dir=data_dir)

    @classmethod
    def exists(cls, data_dir: Optional[Path] = None) -> bool:
        """Check if configuration exists."""
        data_dir = data_dir or DEFAULT_DATA_DIR
        return (data_dir / "config.json").exists()


__all__ = [
    "ConfigurationStore",
    "PropertyVetoError",
    "VetoableChangeListener",
    "STUN_SERVER_ADDRESS",
    "STUN_SERVER_PORT",
    "BIND_RETRIES",
    "KNOWN_KEYS",
    "DEFAULT_DATA_DIR",
]
