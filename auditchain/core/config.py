import os
import yaml
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

CONFIG_ENV = "AUDITCHAIN_CONFIG"
SEARCH_PATHS = ("config.yaml", "config.yml", "config.example.yaml")

_MISSING = object()

@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None

    def get(self, path: str, default=None):
        node: Any = self.raw
        for key in path.split("."):
            node = node.get(key, _MISSING) if isinstance(node, dict) else _MISSING
            if node is _MISSING:
                return default
        return node

    def number(self, path: str, default: float) -> float:
        value = self.get(path, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValueError(f"config {path} must be a number, got {value!r}") from None

def find_config(explicit: Optional[str] = None) -> Optional[str]:
    """An explicit path must exist; otherwise the env var, then the search paths."""
    if explicit:
        if not os.path.isfile(explicit):
            raise FileNotFoundError(f"config file not found: {explicit}")
        return explicit
    for p in (os.environ.get(CONFIG_ENV), *SEARCH_PATHS):
        if p and os.path.isfile(p):
            return p
    return None

def load_config(path: Optional[str] = None) -> Config:
    src = find_config(path)
    if src is None:
        return Config()
    with open(src, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{src}: top level of the config must be a mapping")
    return Config(raw=data, source=os.path.abspath(src))
