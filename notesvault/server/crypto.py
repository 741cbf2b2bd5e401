"""Password obfuscation for individual notes.

The scheme XORs the UTF-8 bytes of the note with the cycled UTF-8 bytes of the
password and stores the base64 result behind ``ENCRYPTED:``. It keeps notes
readable by older vault builds; it offers no integrity check and no key
derivation.
"""

from __future__ import annotations

import base64
import binascii
import logging
from itertools import cycle
from pathlib import Path
from typing import Tuple

from .adapters import files

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "ENCRYPTED:"


def _xor(data: bytes, key: bytes) -> bytes:
    return bytes(b ^ k for b, k in zip(data, cycle(key)))


def encrypt(text: str, password: str) -> str:
    if not password:
        raise ValueError("Password must not be empty")
    cipher = _xor(text.encode("utf-8"), password.encode("utf-8"))
    return base64.b64encode(cipher).decode("ascii")


def decrypt(payload: str, password: str) -> str:
    """Reverse :func:`encrypt`; returns ``""`` when the payload is unusable."""
    if not password:
        return ""
    try:
        cipher = base64.b64decode(payload.strip(), validate=True)
    except (binascii.Error, ValueError):
        return ""
    return _xor(cipher, password.encode("utf-8")).decode("utf-8", errors="replace")


def is_encrypted(content: str) -> bool:
    return content.startswith(ENCRYPTED_PREFIX)


def looks_decrypted(text: str) -> bool:
    return bool(text) and "\0" not in text


def wrap(text: str, password: str) -> str:
    return f"{ENCRYPTED_PREFIX}{encrypt(text, password)}"


def unwrap(content: str, password: str) -> str:
    if not is_encrypted(content):
        return ""
    return decrypt(content[len(ENCRYPTED_PREFIX):], password)


def encrypt_note(root: Path, path: str, password: str) -> Tuple[bool, str]:
    if not password:
        return False, "Password must not be empty"
    content = files.read_file(root, path)
    if is_encrypted(content):
        return False, "Note is already encrypted"
    if not files.write_file(root, path, wrap(content, password)):
        return False, "Could not write encrypted note"
    logger.info("Encrypted note %s", path)
    return True, ""


def open_encrypted_note(root: Path, path: str, password: str) -> Tuple[bool, str]:
    """Decrypt for reading only; the file on disk stays encrypted."""
    content = files.read_file(root, path)
    if not is_encrypted(content):
        return False, "Note is not encrypted"
    text = unwrap(content, password)
    if not looks_decrypted(text):
        return False, "Wrong password or damaged note"
    return True, text


def decrypt_note(root: Path, path: str, password: str) -> Tuple[bool, str]:
    """Decrypt and write the plain text back."""
    ok, text = open_encrypted_note(root, path, password)
    if not ok:
        return ok, text
    if not files.write_file(root, path, text):
        return False, "Could not write decrypted note"
    logger.info("Decrypted note %s", path)
    return True, text
