from typing import Any, Dict
import json
import logging
import os

from .constants import CONFIG_FILE, MIMES_FILE
from .models import BasicAuth, Config, RedirectEntry

logger = logging.getLogger(__name__)


class ProxyConfig:
    """Loads the redirect map and the MIME table for the proxy."""

    def __init__(self, config_path: str = CONFIG_FILE, mimes_path: str = MIMES_FILE):
        """
        Initialize configuration from the two JSON files.

        Args:
            config_path: Path to the JSON file holding the ``Redirects`` map
            mimes_path: Path to the JSON file mapping extensions to MIME types

        Raises:
            ValueError: If either file is missing or malformed
        """
        self.config_path = config_path
        self.mimes_path = mimes_path
        self.config = self._build(
            self._load_json_file(config_path),
            self._load_json_file(mimes_path)
        )

    def _load_json_file(self, path: str) -> Dict[str, Any]:
        """Load a JSON object from disk."""
        if not os.path.exists(path):
            raise ValueError(f"Config file not found: {path}")
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except Exception as e:
            raise ValueError(f"Error loading config file {path}: {e}")
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must hold a JSON object")
        return data

    def _build(self, raw_config: Dict[str, Any], raw_mimes: Dict[str, Any]) -> Config:
        redirects = {}
        for host, raw_entry in (_field(raw_config, 'Redirects') or {}).items():
            redirects[host] = _redirect_entry(host, raw_entry)

        mimes = {}
        for ext, mime in raw_mimes.items():
            if not isinstance(mime, str):
                raise ValueError(f"MIME type for {ext!r} must be a string")
            mimes[ext] = mime

        logger.info(f"Loaded {len(redirects)} redirects and {len(mimes)} MIME types")
        return Config(redirects=redirects, mimes=mimes)

    @property
    def redirects(self):
        return self.config.redirects

    @property
    def mimes(self):
        return self.config.mimes


def _field(obj: Dict[str, Any], name: str) -> Any:
    """Look a JSON field up case-insensitively, ``Scheme`` and ``scheme`` alike."""
    if name in obj:
        return obj[name]
    for key, value in obj.items():
        if key.lower() == name.lower():
            return value
    return None


def _redirect_entry(host: str, raw: Any) -> RedirectEntry:
    if not isinstance(raw, dict):
        raise ValueError(f"Redirect for {host!r} must be an object")
    scheme = _field(raw, 'Scheme')
    if not scheme or not isinstance(scheme, str):
        raise ValueError(f"Redirect for {host!r} has no scheme")

    auth = None
    raw_auth = _field(raw, 'Auth')
    if isinstance(raw_auth, dict):
        auth = BasicAuth(
            username=_field(raw_auth, 'Username') or "",
            password=_field(raw_auth, 'Password') or ""
        )
    return RedirectEntry(scheme=scheme, auth=auth)
