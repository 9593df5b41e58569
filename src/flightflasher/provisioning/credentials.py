"""SHA-512 crypt hashing for the account seed file.

The plaintext password only ever exists in memory; userconf.txt receives
`username:$6$...`, which the Raspberry Pi OS first-boot loader accepts.
"""

import logging
import re
import shutil
import subprocess
from collections.abc import Callable
from dataclasses import dataclass

from passlib.context import CryptContext

from flightflasher.errors import HashingUnavailableError

logger = logging.getLogger(__name__)

SHA512_CRYPT = re.compile(r"^\$6\$(rounds=\d+\$)?[./0-9A-Za-z]{1,16}\$[./0-9A-Za-z]{86}$")

# 5000 rounds keeps the "$6$salt$hash" shape glibc and openssl produce
pwd_context = CryptContext(schemes=["sha512_crypt"], sha512_crypt__rounds=5000)


@dataclass(frozen=True)
class CredentialHash:
    value: str

    def __post_init__(self) -> None:
        if not SHA512_CRYPT.match(self.value):
            raise ValueError("Not a SHA-512 crypt hash")

    def seed_line(self, username: str) -> str:
        """The single userconf.txt line."""
        return f"{username}:{self.value}\n"


def _passlib_backend() -> Callable[[str], str] | None:
    handler = pwd_context.handler("sha512_crypt")
    if not handler.has_backend():
        return None
    return pwd_context.hash


def _openssl_backend() -> Callable[[str], str] | None:
    openssl = shutil.which("openssl")
    if openssl is None:
        return None

    def hash_with_openssl(password: str) -> str:
        result = subprocess.run(
            [openssl, "passwd", "-6", "-stdin"],
            input=password,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()

    return hash_with_openssl


class PasswordHasher:
    """Derives the credential hash from the first backend that is available."""

    def __init__(self, backends: list[Callable[[], Callable[[str], str] | None]] | None = None):
        self.backends = backends if backends is not None else [_passlib_backend, _openssl_backend]

    def _select(self) -> Callable[[str], str]:
        for factory in self.backends:
            backend = factory()
            if backend is not None:
                return backend
        raise HashingUnavailableError(
            "Cannot hash password: no SHA-512 crypt backend (passlib or openssl) is available"
        )

    def ensure_available(self) -> None:
        """Fail early if no backend can produce a hash."""
        self._select()

    def hash(self, password: str) -> CredentialHash:
        backend = self._select()
        try:
            value = backend(password)
        except (subprocess.CalledProcessError, OSError, ValueError) as e:
            raise HashingUnavailableError(f"Cannot hash password: {e}") from e
        try:
            return CredentialHash(value)
        except ValueError as e:
            raise HashingUnavailableError(
                "Cannot hash password: backend did not produce a SHA-512 crypt hash"
            ) from e
