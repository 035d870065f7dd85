"""
Client-side input validation, applied before any remote call.
"""

from __future__ import annotations

import re
from typing import Optional

from authsession.core.config import ValidationConfig
from authsession.core.errors import ValidationError
from authsession.core.types import Err, Ok, ProfilePatch, Result


class InputValidator:
    """Checks registration, login and profile-update input."""

    __slots__ = ("_config", "_identifier_re")

    def __init__(self, config: Optional[ValidationConfig] = None) -> None:
        self._config = config or ValidationConfig()
        self._identifier_re = re.compile(self._config.identifier_pattern)

    def check_login(self, identifier: str, secret: str) -> Result[None, ValidationError]:
        return self._require(identifier=identifier, secret=secret)

    def check_registration(
        self,
        identifier: str,
        secret: str,
        full_name: str,
        phone_number: str,
    ) -> Result[None, ValidationError]:
        """
        All fields required, identifier email-shaped, secret long enough.

        Checks run in that order; the first failure is reported.
        """
        missing = self._require(
            identifier=identifier,
            secret=secret,
            full_name=full_name,
            phone_number=phone_number,
        )
        if missing.is_err():
            return missing
        if not self._identifier_re.fullmatch(identifier):
            return Err(ValidationError.malformed_identifier(identifier))
        if len(secret) < self._config.min_secret_length:
            return Err(ValidationError.weak_secret(self._config.min_secret_length))
        return Ok(None)

    def check_patch(self, patch: ProfilePatch) -> Result[None, ValidationError]:
        if patch.is_empty:
            return Err(ValidationError.empty_patch())
        for name, value in patch.changes().items():
            if not value.strip():
                return Err(ValidationError.missing_field(name))
        return Ok(None)

    @staticmethod
    def _require(**fields: str) -> Result[None, ValidationError]:
        for name, value in fields.items():
            if not value:
                return Err(ValidationError.missing_field(name))
        return Ok(None)
