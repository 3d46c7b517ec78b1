from __future__ import annotations

import os
from dataclasses import asdict
from datetime import datetime, timezone
from importlib import metadata as importlib_metadata
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, FeatureNotFound
from bs4.builder import ParserRejectedMarkup
from dotenv import find_dotenv

from .fetcher_config import FetchConfig, load_fetch_config
from .fetcher_utils import collect_environment_warnings

_VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def _distribution_version(name: str) -> Optional[str]:
    try:
        return importlib_metadata.version(name)
    except importlib_metadata.PackageNotFoundError:
        return None


def _check_lxml_parser() -> bool:
    try:
        soup = BeautifulSoup("<p>ok</p>", "lxml")
    except (FeatureNotFound, ParserRejectedMarkup):
        return False
    return soup.p is not None and soup.p.get_text() == "ok"


def build_doctor_report(*, config: Optional[FetchConfig] = None) -> Dict[str, Any]:
    cfg = config or load_fetch_config()
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
        "config": asdict(cfg),
        "environment_warnings": collect_environment_warnings(cfg),
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
        value: Optional[str] = None,
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        if value is not None:
            entry["value"] = value
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    lxml_ok = _check_lxml_parser()
    add_check(
        "lxml",
        lxml_ok,
        detail="BeautifulSoup lxml parser available" if lxml_ok else "BeautifulSoup cannot load the lxml parser",
        remedy="pip install lxml",
        value=_distribution_version("lxml"),
    )

    for dist, purpose in (
        ("aiohttp", "HTTP client and web adapter"),
        ("charset-normalizer", "encoding detection"),
        ("ftfy", "text repair"),
    ):
        version = _distribution_version(dist)
        add_check(dist, version is not None, detail=purpose, remedy=f"pip install {dist}", value=version)

    dotenv_path = find_dotenv(usecwd=True)
    add_check(
        ".env",
        bool(dotenv_path),
        detail=dotenv_path or "No .env file found; using process environment only",
        level="info",
    )

    log_level = (os.getenv("NOVELFETCH_LOG_LEVEL") or "INFO").upper()
    add_check(
        "NOVELFETCH_LOG_LEVEL",
        log_level in _VALID_LOG_LEVELS,
        detail=f"Logging at {log_level}",
        remedy="Use one of CRITICAL, ERROR, WARNING, INFO, DEBUG.",
        value=log_level,
    )

    add_check(
        "NOVELFETCH_USER_AGENT",
        cfg.user_agent is None,
        detail="User-Agent rotates per session" if cfg.user_agent is None else "User-Agent pinned",
        level="info",
        value=cfg.user_agent,
    )

    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("novelfetch doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("")
    for check in report.get("checks", []):
        name = check.get("name", "check")
        status = check.get("status", "unknown")
        level = check.get("level", "info")
        detail = check.get("detail")
        value = check.get("value")
        label = f"{name}: {status}"
        if value:
            label = f"{label} ({value})"
        lines.append(f"- [{level}] {label}")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy and status != "ok":
            lines.append(f"  remedy: {remedy}")
    config = report.get("config") or {}
    if config:
        lines.append("")
        lines.append("Effective configuration:")
        for key in sorted(config):
            lines.append(f"  {key} = {config[key]}")
    warnings = report.get("environment_warnings") or []
    if warnings:
        lines.append("")
        lines.append("Environment warnings:")
        for warning in warnings:
            code = warning.get("code", "warning")
            message = warning.get("message", "")
            remedy = warning.get("remedy", "")
            lines.append(f"- {code}: {message}")
            if remedy:
                lines.append(f"  remedy: {remedy}")
    return "\n".join(lines).rstrip() + "\n"


__all__ = ["build_doctor_report", "format_doctor_report"]
