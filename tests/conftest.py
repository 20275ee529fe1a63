import os

# Must be set before `config` is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PIN_HASH_ROUNDS", "4")
os.environ.setdefault("SIGNATURE_TOKEN_SECRET", "test-secret")
