import secrets


ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
SIZE = 12


def nanoid(prefix: str = "", size: int = SIZE) -> str:
    body = "".join(secrets.choice(ALPHABET) for _ in range(size))
    return f"{prefix}_{body}" if prefix else body
