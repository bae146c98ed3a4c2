"""Password hashing for admin panel accounts. Uses bcrypt directly."""
import bcrypt


def _to_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return str(password).encode("utf-8")[:72]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_to_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Check a plain password against a stored bcrypt hash; malformed hashes never match."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(_to_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        return False
