"""Provider API key encryption using Fernet (symmetric encryption)"""

from functools import lru_cache
import logging

from cryptography.fernet import Fernet, InvalidToken

from convai_relay.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache()
def _cipher() -> Fernet:
    key = get_settings().ENCRYPTION_KEY
    try:
        return Fernet(key.encode())
    except (ValueError, TypeError) as e:
        logger.error(f"Failed to initialize Fernet cipher: {e}")
        logger.error("ENCRYPTION_KEY must be a valid Fernet key. Generate with: Fernet.generate_key().decode()")
        raise


def encrypt_api_key(api_key: str) -> str:
    """
    Encrypt a widget's provider API key for storage.

    Args:
        api_key: Plain text provider key

    Returns:
        Fernet token (base64 encoded string)
    """
    return _cipher().encrypt(api_key.encode()).decode()


def decrypt_api_key(encrypted: str) -> str:
    """
    Decrypt a stored provider API key.

    Raises:
        InvalidToken: ciphertext was tampered with or encrypted under another key
    """
    try:
        return _cipher().decrypt(encrypted.encode()).decode()
    except InvalidToken:
        logger.error("Decryption failed: token invalid for the configured ENCRYPTION_KEY")
        raise


def generate_encryption_key() -> str:
    """
    Generate a new Fernet key for ENCRYPTION_KEY in .env:
        python -c "from convai_relay.services.encryption import generate_encryption_key; print(generate_encryption_key())"
    """
    return Fernet.generate_key().decode()
