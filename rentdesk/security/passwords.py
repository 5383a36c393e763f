from pwdlib import PasswordHash

from rentdesk.errors import ValidationError


MIN_PASSWORD_LENGTH = 6

password_hash = PasswordHash.recommended()


def clean_new_password(raw_password: str | None, field: str = 'password') -> str:
    clean = (raw_password or '').strip()
    if len(clean) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters', field=field)
    return clean


def hash_password(raw_password: str) -> str:
    return password_hash.hash(raw_password)


def verify_password(raw_password: str, hashed_password: str | None) -> bool:
    if not hashed_password:
        return False
    return password_hash.verify(raw_password, hashed_password)
