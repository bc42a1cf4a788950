"""
devcoach.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for the scoring and gamification tuning values that
are deployment decisions rather than code (pass threshold, XP debit policy,
certificate validity, area thresholds).  Secrets and connection strings are
*not* here — they come from the environment (``.env``).

Usage::

    from devcoach.config import load_config

    cfg = load_config()             # reads ./config.yaml by default
    print(cfg.pass_threshold)       # 70.0
    print(cfg.xp_negative_policy)   # "reject"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

NEGATIVE_POLICIES: frozenset[str] = frozenset({"reject", "clamp"})


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class DevCoachConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every field has a default so tests can build one directly.
    """

    # Identity
    app_name: str = "DevCoach"

    # Scoring
    pass_threshold: float = 70.0            # PR needed for an attempt to pass
    strong_area_threshold: float = 75.0     # category score >= this → strong
    weak_area_threshold: float = 50.0       # category score < this → weak

    # Ledger
    xp_negative_policy: str = "reject"      # "reject" or "clamp"
    ledger_max_retries: int = 3

    # Certificates
    certificate_code_prefix: str = "DEVC"
    certificate_validity_days: int = 730
    verification_base_url: str = "https://devcoach.local/verify"

    # Calendar
    timezone: str = "UTC"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> DevCoachConfig:
    """Read *path* and return a :class:`DevCoachConfig` instance.

    Keys that are absent keep their defaults.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If ``xp_negative_policy`` is not one of ``reject`` / ``clamp`` or a
        threshold is out of range.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = DevCoachConfig()
    policy = str(raw.get("xp_negative_policy", defaults.xp_negative_policy)).lower()
    if policy not in NEGATIVE_POLICIES:
        raise ValueError(
            f"xp_negative_policy must be one of {sorted(NEGATIVE_POLICIES)}, got {policy!r}"
        )

    cfg = DevCoachConfig(
        app_name=raw.get("app_name", defaults.app_name),
        pass_threshold=float(raw.get("pass_threshold", defaults.pass_threshold)),
        strong_area_threshold=float(
            raw.get("strong_area_threshold", defaults.strong_area_threshold)
        ),
        weak_area_threshold=float(
            raw.get("weak_area_threshold", defaults.weak_area_threshold)
        ),
        xp_negative_policy=policy,
        ledger_max_retries=int(raw.get("ledger_max_retries", defaults.ledger_max_retries)),
        certificate_code_prefix=str(
            raw.get("certificate_code_prefix", defaults.certificate_code_prefix)
        ).upper(),
        certificate_validity_days=int(
            raw.get("certificate_validity_days", defaults.certificate_validity_days)
        ),
        verification_base_url=str(
            raw.get("verification_base_url", defaults.verification_base_url)
        ).rstrip("/"),
        timezone=raw.get("timezone", defaults.timezone),
    )

    for name in ("pass_threshold", "strong_area_threshold", "weak_area_threshold"):
        value = getattr(cfg, name)
        if not 0.0 <= value <= 100.0:
            raise ValueError(f"{name} must be within [0, 100], got {value}")

    return cfg
