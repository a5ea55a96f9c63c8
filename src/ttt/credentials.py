"""
Credential store for the remote todo service.

Credentials are written by the login flow (or `ttt auth set-token`) to
config.json inside the config directory. TTT_TOKEN and TTT_ORG_ID override the
file, which is what `ttt auth export` prints for use in CI shells.
"""

import json
import logging
import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

TOKEN_ENV = "TTT_TOKEN"
ORG_ID_ENV = "TTT_ORG_ID"


class Credentials(BaseModel):
    """Session token and organisation for the remote store."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    session_token: Optional[str] = Field(None, alias="sessionToken")
    org_id: Optional[str] = Field(None, alias="orgId")
    user_id: Optional[str] = Field(None, alias="userId")

    @property
    def is_complete(self) -> bool:
        return bool(self.session_token and self.org_id)


def _read_file(settings: Settings) -> Credentials:
    path = settings.credentials_path
    if not path.exists():
        return Credentials()
    try:
        with open(path, "r", encoding="utf-8") as f:
            return Credentials.model_validate(json.load(f))
    except (OSError, ValueError, ValidationError) as e:
        logger.debug(f"Ignoring unreadable credentials file {path}: {e}")
        return Credentials()


def load_credentials(settings: Optional[Settings] = None) -> Optional[Credentials]:
    """
    Load credentials from the environment or config.json.

    Returns:
        Complete credentials, or None when the token or org id is missing.
    """
    settings = settings or default_settings
    creds = _read_file(settings)

    token = os.environ.get(TOKEN_ENV)
    org_id = os.environ.get(ORG_ID_ENV)
    if token and org_id:
        creds = Credentials(session_token=token, org_id=org_id, user_id=creds.user_id)

    return creds if creds.is_complete else None


def save_credentials(creds: Credentials, settings: Optional[Settings] = None) -> None:
    """Write credentials to config.json, readable only by the current user."""
    settings = settings or default_settings
    settings.ensure_config_dir()
    path = settings.credentials_path
    with open(path, "w", encoding="utf-8") as f:
        json.dump(creds.model_dump(by_alias=True, exclude_none=True), f, indent=2)
    os.chmod(path, 0o600)


def clear_credentials(settings: Optional[Settings] = None) -> bool:
    """Remove config.json. Returns True if a file was removed."""
    settings = settings or default_settings
    path = settings.credentials_path
    if not path.exists():
        return False
    path.unlink()
    return True


def masked_token(token: str) -> str:
    """Show only the ends of a session token."""
    if len(token) <= 20:
        return token[:4] + "..."
    return f"{token[:10]}...{token[-10:]}"
