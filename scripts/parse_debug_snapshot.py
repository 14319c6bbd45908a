#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path


def _ensure_src_on_path() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src = repo_root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))


def _read_text(path: str) -> str:
    p = Path(path)
    if not p.exists():
        raise SystemExit(f"File not found: {p}")
    return p.read_text(encoding="utf-8", errors="replace")


def _emit(payload: object, out: str) -> None:
    out_json = json.dumps(payload, indent=2, sort_keys=False, default=str)
    if out:
        Path(out).write_text(out_json, encoding="utf-8")
    else:
        print(out_json)


def main(argv: list[str] | None = None) -> int:
    _ensure_src_on_path()

    from nemis_sync.models import AdmittedLearner, ContinuingLearner, PlacementRecord, SelectedLearner
    from nemis_sync.portal.phrases import DEFAULT_PHRASES
    from nemis_sync.portal.selectors import SELECTORS
    from nemis_sync.portal.session import ViewStateTokens
    from nemis_sync.portal.tables import AnchorRule, extract, find_table
    from nemis_sync.portal.viewstate import extract_tokens, page_redirect_target

    p = argparse.ArgumentParser(
        prog="parse_debug_snapshot",
        description=(
            "Parse portal responses saved under data/debug/*.html into structured JSON.\n"
            "This is intended for debugging extraction regressions offline (no network, no secrets)."
        ),
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    tokens = sub.add_parser("tokens", help="Show the view state tokens, redirect target and known phrases")
    tokens.add_argument("--file", required=True, help="Path to a saved portal response")
    tokens.add_argument("--out", default="", help="Optional output JSON path (otherwise prints to stdout)")

    grid = sub.add_parser("grid", help="Extract the learners grid into rows")
    grid.add_argument("--file", required=True, help="Path to a saved portal response")
    grid.add_argument(
        "--model",
        default="raw",
        choices=["raw", "admitted", "selected", "placement", "continuing"],
        help="Map rows onto a result model (default: raw cells)",
    )
    grid.add_argument("--anchors", action="store_true", help="Require a row action anchor per row (Listlearners)")
    grid.add_argument("--out", default="", help="Optional output JSON path (otherwise prints to stdout)")

    args = p.parse_args(argv)
    body = _read_text(args.file)

    if args.cmd == "tokens":
        found = extract_tokens(body) or ViewStateTokens()
        haystack = (found.decoded_text() + "\n" + body).lower()
        hits = {}
        for op, phrases in DEFAULT_PHRASES.by_operation.items():
            known = (*phrases.success, *phrases.business, *phrases.conflict)
            matched = [x for x in known if x.lower() in haystack]
            if matched:
                hits[op] = matched
        _emit(
            {
                "has_view_state": bool(found.view_state),
                "view_state_length": len(found.view_state),
                "event_validation_length": len(found.event_validation),
                "view_state_generator": found.view_state_generator,
                "redirect_target": page_redirect_target(body),
                "phrases": hits,
            },
            args.out,
        )
        return 0

    if args.cmd == "grid":
        fragment = find_table(body, SELECTORS.grid_id)
        if fragment is None:
            raise SystemExit("No grid found in snapshot.")
        rows = extract(fragment, anchor=AnchorRule() if args.anchors else None)
        models = {
            "admitted": AdmittedLearner,
            "selected": SelectedLearner,
            "placement": PlacementRecord,
            "continuing": ContinuingLearner,
        }
        if args.model == "raw":
            payload = [{"index": r.index, "cells": r.cells, "action_id": r.action_id, "controls": list(r.controls)} for r in rows]
        else:
            model = models[args.model]
            payload = [model.from_row(r).model_dump(mode="json") for r in rows]
        _emit({"rows": payload}, args.out)
        return 0

    raise AssertionError("Unhandled command")


if __name__ == "__main__":
    raise SystemExit(main())
