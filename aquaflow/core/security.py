import secrets

from passlib.context import CryptContext

# PBKDF2 avoids bcrypt backend/version issues and the 72-byte bcrypt input limit.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    # Rows written before hashing was introduced hold the secret in clear text.
    if pwd_context.identify(password_hash) is None:
        return secrets.compare_digest(password.strip(), password_hash.strip())
    return pwd_context.verify(password, password_hash)


def make_reset_code() -> str:
    return str(100000 + secrets.randbelow(900000))
