from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .model import Contact, Phone, VCardVersion

logger = logging.getLogger(__name__)


@dataclass
class Paths:
    root: Path
    var_dir: Path
    out_dir: Path
    local_dir: Path
    conf_file: Path


@dataclass
class Settings:
    local_phone_name: str = "My Phone"
    local_phone_number: str = ""
    include_photos: bool = True
    use_profile_for_owner: bool = False
    profile: dict[str, Any] = field(default_factory=dict)
    unknown_name: str = "Unknown"
    unknown_number: str = "Unknown"
    default_version: str = "2.1"
    database: str = "var/phonebook.db"

    @property
    def version(self) -> VCardVersion:
        return VCardVersion(self.default_version)

    def profile_contact(self) -> Contact | None:
        """The owner's profile card, when one is configured with a name."""
        p = self.profile
        name = p.get("display_name") or p.get("name")
        if not name:
            return None
        return Contact(
            display_name=name,
            family=p.get("family"),
            given=p.get("given"),
            nickname=p.get("nickname"),
            phones=[Phone(n, "CELL") for n in p.get("phones", [])],
            emails=list(p.get("emails", [])),
            org=p.get("org"),
            title=p.get("title"),
            note=p.get("note"),
            bday=p.get("bday"),
            urls=list(p.get("urls", [])),
            ims=list(p.get("ims", [])),
        )


DEFAULT_CONF = """# pbap-vcard local config (TOML)
local_phone_name = "My Phone"
local_phone_number = ""
include_photos = true
use_profile_for_owner = false
unknown_name = "Unknown"
unknown_number = "Unknown"
default_version = "2.1"
database = "var/phonebook.db"

# Owner profile used for the owner vCard when use_profile_for_owner = true
# [profile]
# display_name = "Jane Doe"
# family = "Doe"
# given = "Jane"
# phones = ["+15551234567"]
"""

_FIELDS = (
    "local_phone_name", "local_phone_number", "include_photos",
    "use_profile_for_owner", "unknown_name", "unknown_number",
    "default_version", "database",
)


def load_settings(conf: Path) -> Settings:
    """Read settings from ``conf``; missing keys keep their defaults."""
    settings = Settings()
    if not conf.exists():
        return settings
    try:
        data = tomllib.loads(conf.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", conf, exc)
        return settings

    for name in _FIELDS:
        if name in data:
            default = getattr(settings, name)
            value = data[name]
            setattr(settings, name, bool(value) if isinstance(default, bool) else str(value))
    if isinstance(data.get("profile"), dict):
        settings.profile = dict(data["profile"])

    if settings.default_version not in {v.value for v in VCardVersion}:
        logger.warning("Unsupported default_version %r, using 2.1", settings.default_version)
        settings.default_version = "2.1"
    return settings


def ensure_workspace(base: Path | None = None) -> tuple[Paths, Settings]:
    root = Path(base or os.getcwd())
    var = root / "var"
    out = root / "exports"
    local = root / "local"
    conf = local / "pbap.conf"

    for d in (var, out, local):
        d.mkdir(parents=True, exist_ok=True)

    if not conf.exists():
        conf.write_text(DEFAULT_CONF, encoding="utf-8")

    settings = load_settings(conf)
    db = Path(settings.database)
    if not db.is_absolute():
        settings.database = str(root / db)

    return (
        Paths(root=root, var_dir=var, out_dir=out, local_dir=local, conf_file=conf),
        settings,
    )
