"""Agent identity helpers: wallet signer, database key, start-up details."""

import logging
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct

log = logging.getLogger(__name__)

ENCRYPTION_KEY_BYTES = 32
XMTP_ENVS = ("local", "dev", "production")


def _strip_hex_prefix(value: str) -> str:
    value = value.strip()
    if value[:2].lower() == "0x":
        return value[2:]
    return value


class WalletSigner:
    """Signs identity challenges on behalf of an EOA wallet."""

    def __init__(self, private_key: str):
        self._account = Account.from_key("0x" + _strip_hex_prefix(private_key))
        self.address: str = self._account.address

    @property
    def identifier(self) -> str:
        return self.address.lower()

    def sign_message(self, message: str) -> str:
        signed = self._account.sign_message(encode_defunct(text=message))
        return "0x" + bytes(signed.signature).hex()


def create_signer(wallet_key: str) -> WalletSigner:
    return WalletSigner(wallet_key)


def get_encryption_key_from_hex(hex_key: str) -> bytes:
    """Decode the local database encryption key.

    Raises ``ValueError`` unless the value is 32 bytes of hex.
    """

    key = bytes.fromhex(_strip_hex_prefix(hex_key))
    if len(key) != ENCRYPTION_KEY_BYTES:
        raise ValueError(
            f"encryption key must be {ENCRYPTION_KEY_BYTES} bytes, got {len(key)}"
        )
    return key


def validate_xmtp_env(env: Optional[str]) -> str:
    value = (env or "").strip().lower()
    if value not in XMTP_ENVS:
        raise ValueError(f"XMTP_ENV must be one of {', '.join(XMTP_ENVS)}, got {env!r}")
    return value


def log_agent_details(address: str, inbox_id: str, env: str) -> None:
    url = f"https://xmtp.chat/dm/{address}?env={env}"
    log.info("Agent address: %s", address)
    log.info("Agent inbox id: %s", inbox_id)
    log.info("XMTP env: %s", env)
    log.info("Chat with the agent: %s", url)
