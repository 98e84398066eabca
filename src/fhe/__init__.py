"""
Encryption side of voting: engine lifecycle, ballot encoding, decryption.
"""

from .ballot import BallotEncoder
from .decrypt import TallyDecryptor
from .session import EncryptionSession, EncryptionSessionManager

__all__ = [
    "BallotEncoder",
    "EncryptionSession",
    "EncryptionSessionManager",
    "TallyDecryptor",
]
