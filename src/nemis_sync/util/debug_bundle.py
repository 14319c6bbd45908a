from __future__ import annotations

import json
import logging
import re
import time
import zipfile
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")

# Hidden token values and password inputs are blanked before a page leaves the machine.
_SCRUB_RES = (
    re.compile(r'(<input[^>]*\bname="(?:__VIEWSTATE|__EVENTVALIDATION)"[^>]*\bvalue=")[^"]*(")', re.I),
    re.compile(r'(<input[^>]*\btype="password"[^>]*\bvalue=")[^"]*(")', re.I),
    re.compile(r"(\|hiddenField\|(?:__VIEWSTATE|__EVENTVALIDATION)\|)[^|]*(\|)"),
)


def save_debug_html(debug_dir: Optional[str], name: str, body: str) -> Optional[Path]:
    """
    Write a raw portal response to `<debug_dir>/<stamp>_<name>.html` for later diagnosis.

    Best-effort: a failed write is logged and never masks the failure being diagnosed.
    """
    if not debug_dir:
        return None
    safe = _UNSAFE_NAME_RE.sub("_", name).strip("_") or "response"
    stamp = time.strftime("%Y%m%d_%H%M%S")
    out = Path(debug_dir) / f"{stamp}_{safe}.html"
    try:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(body or "", encoding="utf-8")
    except OSError:
        logger.debug("Failed to write debug html path=%s", out, exc_info=True)
        return None
    return out


def scrub_response(text: str) -> str:
    for pattern in _SCRUB_RES:
        text = pattern.sub(r"\1\2", text)
    return text


def create_debug_bundle(
    *,
    debug_dir: str,
    log_file: str,
    out_dir: str = "data",
    institution: str = "",
) -> Path:
    """
    Create a shareable zip of saved portal responses + the log file, with a manifest.

    Saved responses are scrubbed of view-state tokens and password values. Secrets such
    as .env, config.yaml and the state DB are never included.
    """
    out_root = Path(out_dir)
    out_root.mkdir(parents=True, exist_ok=True)

    stamp = time.strftime("%Y%m%d_%H%M%S")
    inst = _UNSAFE_NAME_RE.sub("_", (institution or "").strip().lower())
    inst_part = f"_{inst}" if inst else ""
    out_path = out_root / f"debug_bundle{inst_part}_{stamp}.zip"

    dbg = Path(debug_dir)
    log = Path(log_file)
    manifest: dict = {"institution": institution, "created": stamp, "files": []}

    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
        if log.is_file():
            z.write(log, arcname=log.name)
            manifest["files"].append(log.name)

        if dbg.is_dir():
            for p in sorted(dbg.rglob("*")):
                if not p.is_file():
                    continue
                arcname = str(Path("debug") / p.relative_to(dbg))
                try:
                    text = p.read_text(encoding="utf-8", errors="replace")
                except OSError:
                    # best-effort; don't fail bundling because a file disappeared
                    continue
                z.writestr(arcname, scrub_response(text))
                manifest["files"].append(arcname)

        z.writestr("manifest.json", json.dumps(manifest, indent=2))

    return out_path
