import logging

from cryptography.fernet import Fernet, InvalidToken

from mailsync.config import settings

logger = logging.getLogger(__name__)

# Refresh tokens are stored Fernet-encrypted with ENCRYPTION_KEY
try:
    cipher_suite = Fernet(settings.ENCRYPTION_KEY)
except (ValueError, TypeError) as e:
    logger.warning(f"Encryption key invalid or missing. Token decryption will fail. Error: {e}")
    cipher_suite = None

def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a token retrieved from the database"""
    if not encrypted_token:
        return None
    if not cipher_suite:
        raise ValueError("Encryption key not configured")
    try:
        return cipher_suite.decrypt(encrypted_token.encode()).decode()
    except InvalidToken as e:
        raise ValueError("Stored token could not be decrypted") from e
