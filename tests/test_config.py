from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from nemis_sync.config import load_config


_ENV_VARS = (
    "NEMIS_BASE_URL",
    "NEMIS_TIMEOUT_S",
    "NEMIS_RECORDS_PER_PAGE",
    "NEMIS_USERNAME",
    "NEMIS_PASSWORD",
    "NEMIS_INSTITUTION",
    "DEBUG_DIR",
    "STATE_DB_PATH",
    "LOG_LEVEL",
    "LOG_FILE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path: Path, name: str, text: str) -> Path:
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return p


def test_env_only_config_builds_single_institution(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NEMIS_USERNAME", "20404007")
    monkeypatch.setenv("NEMIS_PASSWORD", "secret")
    monkeypatch.setenv("NEMIS_TIMEOUT_S", "not-a-number")

    cfg = load_config(tmp_path / "missing.yaml")

    assert cfg.portal.base_url == "http://nemis.education.go.ke"
    assert cfg.portal.timeout_s == 60.0
    assert cfg.portal.records_per_page == "10000"
    assert len(cfg.institutions) == 1
    inst = cfg.institution()
    assert inst.code == "20404007"
    assert inst.username == "20404007"
    assert "secret" not in repr(inst)


def test_yaml_overrides_env_and_expands_vars(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SCHOOL_B_PASSWORD", "pw-b")
    cfg_path = _write(
        tmp_path,
        "cfg.yaml",
        """
portal:
  base_url: "http://portal.test/"
  session_ttl_s: 900
institutions:
  - code: "School-A"
    username: "a-user"
    password: "pw-a"
  - code: "school-b"
    username: "b-user"
    password: "${SCHOOL_B_PASSWORD}"
""",
    )

    cfg = load_config(cfg_path)

    assert cfg.portal.base_url == "http://portal.test"
    assert cfg.portal.session_ttl_s == 900
    assert [i.code for i in cfg.institutions] == ["school-a", "school-b"]
    assert cfg.institution("SCHOOL-B").password == "pw-b"
    with pytest.raises(ValueError):
        cfg.institution("school-c")


def test_phrase_overrides_are_validated(tmp_path: Path) -> None:
    good = _write(
        tmp_path,
        "good.yaml",
        """
phrases:
  operations:
    request_placement:
      business: ["School Vacancies are exhausted"]
""",
    )
    cfg = load_config(good)
    assert cfg.phrases.operations["request_placement"]["business"] == ["School Vacancies are exhausted"]

    bad = _write(
        tmp_path,
        "bad.yaml",
        """
phrases:
  operations:
    admit:
      warnings: ["x"]
""",
    )
    with pytest.raises(ValidationError):
        load_config(bad)


@pytest.mark.parametrize(
    "portal_block",
    [
        'base_url: "nemis.education.go.ke"',
        "timeout_s: 0",
        'records_per_page: "all"',
    ],
)
def test_invalid_portal_settings_rejected(tmp_path: Path, portal_block: str) -> None:
    cfg_path = _write(tmp_path, "cfg.yaml", f"portal:\n  {portal_block}\n")
    with pytest.raises(ValidationError):
        load_config(cfg_path)


def test_institution_requires_credentials(tmp_path: Path) -> None:
    cfg_path = _write(
        tmp_path,
        "cfg.yaml",
        """
institutions:
  - code: "school a"
    username: "u"
    password: "p"
""",
    )
    with pytest.raises(ValidationError):
        load_config(cfg_path)

    cfg_path = _write(
        tmp_path,
        "cfg2.yaml",
        """
institutions:
  - code: "school-a"
    username: "u"
    password: ""
""",
    )
    with pytest.raises(ValidationError):
        load_config(cfg_path)


def test_no_institutions_configured(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "missing.yaml")
    assert cfg.institutions == []
    with pytest.raises(ValueError):
        cfg.institution()
