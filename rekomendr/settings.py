# settings.py
#
# Environment-driven configuration. Missing credentials are allowed at start-up;
# the routes that need them answer 503 instead.
#
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv


CHARGE_AT_END = "end"
CHARGE_AT_START = "start"


def _env_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(value: Optional[str], default: int) -> int:
    try:
        return int(str(value).strip())
    except Exception:
        return default


@dataclass(frozen=True)
class Settings:
    openai_api_key: Optional[str] = None
    model: str = "gpt-4o-mini"

    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    cookie_name: str = "rex_id"
    cookie_max_age_days: int = 180

    chain_charge: str = CHARGE_AT_END
    dev_tools: bool = False

    global_daily_cap: int = 900
    admin_window_days: int = 14

    extra: Dict[str, str] = field(default_factory=dict)

    @property
    def has_openai(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        if environ is None:
            load_dotenv()
            environ = os.environ

        charge = (environ.get("REKOMENDR_CHAIN_CHARGE") or CHARGE_AT_END).strip().lower()
        if charge not in (CHARGE_AT_END, CHARGE_AT_START):
            charge = CHARGE_AT_END

        return cls(
            openai_api_key=environ.get("OPENAI_API_KEY") or None,
            model=(environ.get("REKOMENDR_MODEL") or "gpt-4o-mini").strip(),
            supabase_url=environ.get("SUPABASE_URL") or None,
            supabase_key=(
                environ.get("SUPABASE_SERVICE_ROLE_KEY")
                or environ.get("SUPABASE_ANON_KEY")
                or None
            ),
            cookie_name=(environ.get("REKOMENDR_COOKIE_NAME") or "rex_id").strip(),
            cookie_max_age_days=_env_int(environ.get("REKOMENDR_COOKIE_MAX_AGE_DAYS"), 180),
            chain_charge=charge,
            dev_tools=_env_bool(environ.get("REKOMENDR_DEV_TOOLS")),
            global_daily_cap=_env_int(environ.get("GLOBAL_DAILY_CAP"), 900),
            admin_window_days=max(1, _env_int(environ.get("REKOMENDR_ADMIN_WINDOW_DAYS"), 14)),
            extra={
                "NEXT_PUBLIC_REKOMENDR_API": environ.get("NEXT_PUBLIC_REKOMENDR_API", ""),
                "REKOMENDR_BACKEND_URL": environ.get("REKOMENDR_BACKEND_URL", ""),
            },
        )

    def envcheck(self) -> Dict[str, str]:
        """Masked presence report; secrets are never echoed."""
        return {
            "OPENAI_API_KEY": "present (masked)" if self.openai_api_key else "missing",
            "SUPABASE_URL": self.supabase_url or "missing",
            "SUPABASE_SERVICE_ROLE_KEY": "present (masked)" if self.supabase_key else "missing",
            "REKOMENDR_MODEL": self.model,
            "REKOMENDR_CHAIN_CHARGE": self.chain_charge,
            "NEXT_PUBLIC_REKOMENDR_API": self.extra.get("NEXT_PUBLIC_REKOMENDR_API") or "missing",
            "REKOMENDR_BACKEND_URL": self.extra.get("REKOMENDR_BACKEND_URL") or "(empty)",
        }
