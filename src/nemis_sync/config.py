from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, model_validator


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")
_INSTITUTION_CODE_RE = re.compile(r"^[A-Za-z0-9-]+$")

DEFAULT_BASE_URL = "http://nemis.education.go.ke"


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _default_config_from_env() -> dict:
    """
    Env-only config so a single-institution setup only needs `.env`.

    YAML stays an optional override (e.g. for several institutions or phrase overrides).
    """
    cfg: dict = {
        "portal": {
            "base_url": os.getenv("NEMIS_BASE_URL", DEFAULT_BASE_URL),
            "timeout_s": _env_float("NEMIS_TIMEOUT_S", 60.0),
            "records_per_page": os.getenv("NEMIS_RECORDS_PER_PAGE", "10000"),
            "debug_dir": os.getenv("DEBUG_DIR", "data/debug"),
        },
        "state": {
            "db_path": os.getenv("STATE_DB_PATH", "data/state.db"),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", "data/sync.log"),
        },
    }
    username = os.getenv("NEMIS_USERNAME", "")
    if username:
        cfg["institutions"] = [
            {
                "code": os.getenv("NEMIS_INSTITUTION", "") or username,
                "username": username,
                "password": os.getenv("NEMIS_PASSWORD", ""),
            }
        ]
    return cfg


class PortalConfig(BaseModel):
    base_url: str = DEFAULT_BASE_URL
    timeout_s: float = 60.0
    # The portal accepts any page size; a large one returns the whole grid on one page.
    records_per_page: str = "10000"
    # Optional client-side session lifetime; when set, sessions older than this are re-logged in.
    session_ttl_s: Optional[float] = None
    debug_dir: str = "data/debug"

    @model_validator(mode="after")
    def _normalize(self) -> "PortalConfig":
        base_url = (self.base_url or "").strip().rstrip("/")
        parsed = urlparse(base_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("portal.base_url must be a full URL like 'http://nemis.education.go.ke'")
        if self.timeout_s <= 0:
            raise ValueError("portal.timeout_s must be positive")
        if not str(self.records_per_page).strip().isdigit():
            raise ValueError("portal.records_per_page must be a number")
        self.base_url = base_url
        self.records_per_page = str(self.records_per_page).strip()
        return self


class InstitutionAccount(BaseModel):
    """
    One institution login. `code` is only an identity for logs and the state DB; the
    portal itself only knows the username.
    """

    code: str
    username: str
    password: str = Field(repr=False)

    @model_validator(mode="after")
    def _validate(self) -> "InstitutionAccount":
        self.code = (self.code or "").strip().lower()
        if not self.code or not _INSTITUTION_CODE_RE.match(self.code):
            raise ValueError("institution code must be letters, numbers or hyphens")
        if not (self.username or "").strip():
            raise ValueError(f"institution {self.code!r}: username is required")
        if not self.password:
            raise ValueError(f"institution {self.code!r}: password is required")
        return self


class StateConfig(BaseModel):
    db_path: str = "data/state.db"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = "data/sync.log"


class PhraseOverrides(BaseModel):
    """
    Per-operation phrase lists that replace the built-in ones, e.g.

        phrases:
          operations:
            request_placement:
              business: ["School Vacacies are exhausted!!"]
    """

    operations: dict[str, dict[str, list[str]]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _known_sets(self) -> "PhraseOverrides":
        for op, sets in self.operations.items():
            unknown = set(sets) - {"success", "business", "conflict"}
            if unknown:
                raise ValueError(f"phrases.operations.{op}: unknown phrase set(s) {sorted(unknown)}")
        return self


class AppConfig(BaseModel):
    portal: PortalConfig = PortalConfig()
    institutions: list[InstitutionAccount] = Field(default_factory=list)
    state: StateConfig = StateConfig()
    logging: LoggingConfig = LoggingConfig()
    phrases: PhraseOverrides = PhraseOverrides()

    def institution(self, code: Optional[str] = None) -> InstitutionAccount:
        if not self.institutions:
            raise ValueError("No institutions configured (set NEMIS_USERNAME/NEMIS_PASSWORD or config.yaml)")
        if not code:
            return self.institutions[0]
        wanted = code.strip().lower()
        for inst in self.institutions:
            if inst.code == wanted:
                return inst
        raise ValueError(f"Unknown institution: {code!r}")


def load_config(path: Union[str, Path]) -> AppConfig:
    p = Path(path)
    raw: dict = {}
    if p.exists():
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    return AppConfig.model_validate(merged)
