import logging

from passlib.context import CryptContext
from passlib.utils import getrandstr, has_urandom, rng

logger = logging.getLogger(__name__)

# Password digests: hex SHA-256 over password + salt, stored as "salt:digest".
pwd_context = CryptContext(schemes=["hex_sha256"])

SALT_BYTES = 16
SALT_CHARSET = "0123456789abcdef"
SEPARATOR = ":"


def _generate_salt() -> str:
    """16 random bytes, hex encoded."""
    if not has_urandom:
        logger.warning("Secure randomness unavailable; password salt generated from a weak source.")
    return getrandstr(rng, SALT_CHARSET, SALT_BYTES * 2)


def hash_password(password: str) -> str:
    """Hash a password as ``salt:sha256(password + salt)``."""
    salt = _generate_salt()
    return f"{salt}{SEPARATOR}{pwd_context.hash(password + salt)}"


def verify_password(plain_password: str, stored_hash: str) -> bool:
    """Verify a password against a ``salt:hash`` value. Malformed values never verify."""
    if not stored_hash or SEPARATOR not in stored_hash:
        return False
    salt, _, expected = stored_hash.partition(SEPARATOR)
    if not salt or pwd_context.identify(expected) is None:
        return False
    return pwd_context.verify(plain_password + salt, expected)
