import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .profile_client import DEFAULT_API_URL
from .registry import CHAIN_ID

DEFAULT_RPC_URL = "https://rpc.mainnet.taiko.xyz"


@dataclass(frozen=True)
class Settings:
    tg_token: str
    keystore: Path
    password: str
    contract: str
    rpc_url: str = DEFAULT_RPC_URL
    chain_id: int = CHAIN_ID
    api_url: str = DEFAULT_API_URL
    http_timeout: float = 15.0
    messages_path: Optional[Path] = None


def _int(raw: Optional[str], default: int, name: str) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise SystemExit(f"{name} must be an integer, got {raw!r}") from None


def _float(raw: Optional[str], default: float, name: str) -> float:
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise SystemExit(f"{name} must be a number, got {raw!r}") from None


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    *,
    tg_token: Optional[str] = None,
    keystore: Optional[str] = None,
    password: Optional[str] = None,
    contract: Optional[str] = None,
) -> Settings:
    """Build settings from the environment; explicit arguments win."""
    env = os.environ if env is None else env
    tg_token = tg_token or env.get("DUOPOW_TG_TOKEN")
    keystore = keystore or env.get("DUOPOW_KEYSTORE")
    contract = contract or env.get("DUOPOW_CONTRACT")
    if password is None:
        password = env.get("DUOPOW_PASSWORD", "")

    missing = [
        name
        for name, value in (
            ("DUOPOW_TG_TOKEN", tg_token),
            ("DUOPOW_KEYSTORE", keystore),
            ("DUOPOW_CONTRACT", contract),
        )
        if not value
    ]
    if missing:
        raise SystemExit(f"Missing required settings: {', '.join(missing)}")

    messages_raw = env.get("DUOPOW_MESSAGES")
    return Settings(
        tg_token=tg_token,
        keystore=Path(keystore),
        password=password,
        contract=contract,
        rpc_url=env.get("DUOPOW_RPC_URL") or DEFAULT_RPC_URL,
        chain_id=_int(env.get("DUOPOW_CHAIN_ID"), CHAIN_ID, "DUOPOW_CHAIN_ID"),
        api_url=env.get("DUOPOW_API_URL") or DEFAULT_API_URL,
        http_timeout=_float(env.get("DUOPOW_HTTP_TIMEOUT"), 15.0, "DUOPOW_HTTP_TIMEOUT"),
        messages_path=Path(messages_raw) if messages_raw else None,
    )
