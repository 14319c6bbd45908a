from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from .config import AppConfig, InstitutionAccount, load_config
from .logging_config import configure_logging
from .outcome import Outcome, Success, outcome_to_dict
from .portal.client import PortalClient
from .portal.operations import OPERATIONS, OperationKind
from .state import StateStore
from .util.debug_bundle import create_debug_bundle


logger = logging.getLogger("nemis_sync")

# Operations whose request carries a single value taken from the command line.
_POSITIONAL: dict[OperationKind, tuple[str, str]] = {
    OperationKind.LIST_LEARNERS: ("grade", "Grade or form, e.g. 'form 1' or 'grade 7'"),
    OperationKind.SEARCH_LEARNER: ("identifier", "Learner UPI or birth certificate number"),
}

_RECORD_KEYS = ("upi", "index_no", "adm", "birth_certificate_no", "code")


def _command_name(kind: OperationKind) -> str:
    return kind.value.replace("_", "-")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="nemis_sync")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    for kind, spec in OPERATIONS.items():
        op = sub.add_parser(_command_name(kind), help=f"Run '{spec.name}' against the portal")
        op.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
        op.add_argument("--institution", default="", help="Institution code from config (default: the first one)")
        op.add_argument(
            "--all-institutions",
            action="store_true",
            help="Run the operation for every configured institution concurrently (one session each).",
        )
        op.add_argument("--no-state", action="store_true", help="Do not record the run or results in the state DB")
        if kind in _POSITIONAL:
            name, help_text = _POSITIONAL[kind]
            op.add_argument(name, help=help_text)
        elif spec.writes:
            op.add_argument(
                "--payload",
                required=True,
                help="YAML/JSON file with the request fields ('-' reads stdin).",
            )

    preflight = sub.add_parser("preflight", help="Validate configuration and log in once per institution")
    preflight.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")

    bundle = sub.add_parser(
        "debug-bundle",
        help="Zip saved portal responses + the log file for sharing (excludes .env, config and the state DB).",
    )
    bundle.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    bundle.add_argument("--out-dir", default="data", help="Directory for the zip (default: data)")
    bundle.add_argument("--institution", default="", help="Institution code to tag the bundle name with")
    return p


def _load_payload(path: str) -> Any:
    text = sys.stdin.read() if path == "-" else Path(path).read_text(encoding="utf-8")
    # JSON is valid YAML, so one loader covers both.
    data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise SystemExit(f"--payload must contain a mapping of request fields (got {type(data).__name__})")
    return data


def _request_from_args(kind: OperationKind, args: argparse.Namespace) -> Optional[dict]:
    if kind in _POSITIONAL:
        name = _POSITIONAL[kind][0]
        return {name: getattr(args, name)}
    if OPERATIONS[kind].writes:
        return _load_payload(args.payload)
    return None


def _record_key(item: Any) -> str:
    for attr in _RECORD_KEYS:
        value = getattr(item, attr, "")
        if value:
            return str(value)
    return ""


def _persist(state: StateStore, kind: OperationKind, outcome: Outcome) -> int:
    """
    Cache successful results by their natural key. Returns the number of records written.
    """
    if not isinstance(outcome, Success):
        return 0
    items = outcome.data if isinstance(outcome.data, list) else [outcome.data]
    written = 0
    for item in items:
        key = _record_key(item)
        if not key:
            continue
        dump = getattr(item, "model_dump", None)
        state.upsert_record(kind.value, key, dump(mode="json") if callable(dump) else item)
        written += 1
    return written


async def _run_one(
    client: PortalClient,
    cfg: AppConfig,
    account: InstitutionAccount,
    kind: OperationKind,
    request: Optional[BaseModel],
    *,
    use_state: bool,
) -> Outcome:
    state = StateStore(cfg.state.db_path, institution=account.code) if use_state else None
    run_id = state.record_run_start(kind.value) if state else None
    t0 = time.time()
    session = PortalClient.new_session(account.username, account.password, institution=account.code)
    outcome: Optional[Outcome] = None
    try:
        if kind is not OperationKind.LOGIN:
            outcome = await client.login(session)
            if not outcome.ok:
                return outcome
        outcome = await client.run(session, kind, request)
        if state is not None:
            written = _persist(state, kind, outcome)
            logger.info("Cached %d %s record(s) institution=%s", written, kind.value, account.code)
        return outcome
    finally:
        if state is not None and run_id is not None:
            ok = outcome is not None and outcome.ok
            message = None if ok or outcome is None else getattr(outcome, "message", None)
            state.record_run_finish(run_id, ok=ok, message=message)
            state.close()
        logger.info("%s finished institution=%s seconds=%.2f", kind.value, account.code, time.time() - t0)


async def run_many(
    cfg: AppConfig,
    accounts: List[InstitutionAccount],
    kind: OperationKind,
    request: Optional[BaseModel],
    *,
    use_state: bool = True,
) -> dict[str, Outcome]:
    """
    One session per institution, all running concurrently over a shared connection pool.
    """
    async with PortalClient.from_config(cfg) as client:
        outcomes = await asyncio.gather(
            *(_run_one(client, cfg, a, kind, request, use_state=use_state) for a in accounts)
        )
    return {a.code: o for a, o in zip(accounts, outcomes)}


async def _preflight(cfg: AppConfig) -> bool:
    results = await run_many(cfg, list(cfg.institutions), OperationKind.LOGIN, None, use_state=False)
    ok = True
    for code, outcome in results.items():
        if outcome.ok:
            logger.info("Login OK institution=%s", code)
        else:
            ok = False
            logger.error("Login failed institution=%s: %s", code, outcome.message)
    return ok


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    cfg = load_config(args.config)
    configure_logging(level=cfg.logging.level, file_path=cfg.logging.file_path)

    if args.cmd == "debug-bundle":
        out_zip = create_debug_bundle(
            debug_dir=cfg.portal.debug_dir,
            log_file=cfg.logging.file_path,
            out_dir=args.out_dir,
            institution=args.institution,
        )
        print(f"Debug bundle written: {out_zip}")
        return 0

    if not cfg.institutions:
        raise SystemExit("No institutions configured. Set NEMIS_USERNAME/NEMIS_PASSWORD in .env, or add 'institutions:' to config.yaml.")

    if args.cmd == "preflight":
        logger.info("Starting preflight checks")
        if not asyncio.run(_preflight(cfg)):
            return 1
        logger.info("Preflight OK")
        return 0

    kind = OperationKind(args.cmd.replace("-", "_"))
    try:
        request = OPERATIONS[kind].request_model.model_validate(_request_from_args(kind, args) or {})
    except ValidationError as e:
        raise SystemExit(f"Invalid {kind.value} request:\n{e}")
    try:
        accounts = list(cfg.institutions) if args.all_institutions else [cfg.institution(args.institution or None)]
    except ValueError as e:
        raise SystemExit(str(e))

    logger.info("Starting %s for %d institution(s)", kind.value, len(accounts))
    results = asyncio.run(run_many(cfg, accounts, kind, request, use_state=not args.no_state))

    if args.all_institutions:
        payload: Any = {code: outcome_to_dict(o) for code, o in results.items()}
    else:
        payload = outcome_to_dict(next(iter(results.values())))
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))
    return 0 if all(o.ok for o in results.values()) else 1
