from .signature_service import SignatureLedger
from .token import generate_signature_token, token_checksum_matches

__all__ = ['SignatureLedger', 'generate_signature_token', 'token_checksum_matches']
