from __future__ import annotations

import json
import os
import pathlib
from dataclasses import dataclass, fields, replace

from s3bin.errors import FormatError, ReadError

DEFAULT_CONFIG_FILE = ".s3bin.json"


@dataclass(frozen=True)
class Config:
    """Where envelopes are stored.

    Attributes:
        bucket: Name of the S3 bucket
        region: The bucket's AWS region
        endpoint_url: Optional S3 endpoint override
    """

    bucket: str | None = None
    region: str | None = None
    endpoint_url: str | None = None

    def merge(self, **overrides: str | None) -> Config:
        """Return a copy with every non-empty value of `overrides` applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v})

    @property
    def missing(self) -> list[str]:
        """Names of the required settings that are unset."""
        return [name for name in ("bucket", "region") if not getattr(self, name)]


def load_config_file(path: str | os.PathLike[str]) -> Config:
    """Load a JSON config file such as `{"bucket": "...", "region": "..."}`.

    Raises:
        ReadError: If the file cannot be read.
        FormatError: If the file is not a JSON object of known string settings.
    """
    config_file = pathlib.Path(path)
    try:
        raw = config_file.read_text(encoding="utf-8")
    except OSError as exc:
        raise ReadError(f"failed to read config file {str(config_file)!r}") from exc

    try:
        settings = json.loads(raw)
    except ValueError as exc:
        raise FormatError(f"config file {str(config_file)!r} is not valid JSON") from exc

    if not isinstance(settings, dict):
        raise FormatError(f"config file {str(config_file)!r} is not a JSON object")

    known = {field.name for field in fields(Config)}
    unknown = sorted(set(settings) - known)
    if unknown:
        raise FormatError(
            f"unknown settings in config file {str(config_file)!r}: {', '.join(unknown)}"
        )

    for name, value in settings.items():
        if value is not None and not isinstance(value, str):
            raise FormatError(f"setting {name!r} must be a string")

    return Config(**settings)


def load_config(path: str | os.PathLike[str] | None = None) -> Config:
    """Load `path`, or `.s3bin.json` from the working directory if it exists.

    Returns an empty `Config` when no file is given and none is found.
    """
    if path is not None:
        return load_config_file(path)

    if pathlib.Path(DEFAULT_CONFIG_FILE).is_file():
        return load_config_file(DEFAULT_CONFIG_FILE)

    return Config()
