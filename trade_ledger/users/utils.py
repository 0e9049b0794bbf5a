import secrets

from passlib.context import CryptContext


pwd_context = CryptContext(schemes=['pbkdf2_sha256'], deprecated='auto')


def generate_session_token() -> str:
    # 32 random bytes, 43 urlsafe characters
    return secrets.token_urlsafe(32)

def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        return False
