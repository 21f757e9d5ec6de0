import json
import logging
from pathlib import Path
from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

log = logging.getLogger(__name__)


def generate_keystore(
    directory: Path,
    password: str,
    *,
    kdf: Optional[str] = None,
    iterations: Optional[int] = None,
) -> Path:
    """Create a fresh signing key and store it encrypted in ``directory``."""
    directory.mkdir(parents=True, exist_ok=True)
    account = Account.create()
    keystore = Account.encrypt(account.key, password, kdf=kdf, iterations=iterations)
    path = directory / f"{account.address.lower()[2:]}.json"
    path.write_text(json.dumps(keystore), encoding="utf-8")
    log.info("keystore for %s written to %s", account.address, path)
    return path


def load_signer(path: Path, password: str) -> LocalAccount:
    try:
        keystore = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise SystemExit(f"cannot read keystore {path}: {exc}") from exc
    try:
        key = Account.decrypt(keystore, password)
    except ValueError as exc:
        raise SystemExit(f"cannot decrypt keystore {path}: {exc}") from exc
    account = Account.from_key(key)
    log.info("signing as %s", account.address)
    return account
