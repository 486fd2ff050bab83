"""
Device-authorization login.

The CLI registers a random device code with the relay, opens the
browser on the approval page and polls until the user approves it. On
the very first login of a machine an identity keypair is generated and
its public half registered; the secret half stays in the local key
store.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .config import ConfigStore
from .crypto import generate_identity
from .errors import EnvRelayError, NotFound, RelayError
from .keystore import KeyStore
from .relay import Relay

logger = logging.getLogger("envrelay.auth")

POLL_INTERVAL = 2.0


@dataclass(frozen=True)
class LoginResult:
    user_id: Optional[str]
    email: Optional[str]
    identity_created: bool


def new_device_code() -> str:
    """32 hex characters of randomness."""
    return secrets.token_hex(16)


def approval_url(base_url: str, code: str) -> str:
    return f"{base_url.rstrip('/')}/auth/device?code={code}"


def device_login(
    relay: Relay,
    config_store: ConfigStore,
    keystore: KeyStore,
    open_browser: Callable[[str], object],
    relay_for_token: Optional[Callable[[str], Relay]] = None,
    sleep: Callable[[float], None] = time.sleep,
    poll_interval: float = POLL_INTERVAL,
    max_wait: Optional[float] = None,
) -> LoginResult:
    """Run the device flow to completion.

    Args:
        relay: Unauthenticated relay used for the device endpoints.
        config_store: Receives the token and user on approval.
        keystore: Checked for (and given) the identity.
        open_browser: Called with the approval URL.
        relay_for_token: Builds an authenticated relay for key
            registration; defaults to ``relay`` itself.
        sleep: Wait between polls.
        poll_interval: Seconds between status polls.
        max_wait: Give up after this many seconds (None waits forever).

    Raises:
        NotFound: The device code expired before approval.
        EnvRelayError: ``max_wait`` elapsed.
    """
    code = new_device_code()
    relay.start_device_login(code)

    config = config_store.load()
    url = approval_url(config.api_base_url, code)
    logger.info("Opening %s", url)
    open_browser(url)

    waited = 0.0
    while True:
        sleep(poll_interval)
        waited += poll_interval
        try:
            status = relay.device_status(code)
        except NotFound as exc:
            raise NotFound("Device code expired. Please try again.") from exc
        except RelayError as exc:
            logger.debug("Device status poll failed, retrying: %s", exc)
        else:
            if status.status == "approved" and status.token:
                break
        if max_wait is not None and waited >= max_wait:
            raise EnvRelayError("Timed out waiting for authorization.")

    config_store.ensure_dirs()
    config_store.save(auth_token=status.token, user_id=status.user_id, email=status.email)

    identity_created = False
    if not keystore.has_identity():
        identity = generate_identity()
        keystore.save_identity(identity)
        authed = relay_for_token(status.token) if relay_for_token else relay
        authed.register_public_key(identity.public_b64)
        identity_created = True
        logger.info("Registered new identity %s", identity.public_b64)

    return LoginResult(
        user_id=status.user_id, email=status.email, identity_created=identity_created,
    )
