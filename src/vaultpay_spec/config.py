"""VaultPay protocol configuration constants.

Keep this file aligned with the on-chain program constants and the
encrypted-instruction struct layouts.
"""

# Units
LAMPORTS_PER_SOL = 1_000_000_000
U64_MAX = (1 << 64) - 1
U128_MAX = (1 << 128) - 1

# Key / field sizes
ADDRESS_SIZE = 32
ZERO_ADDRESS = bytes(ADDRESS_SIZE)  # unset authority; also the callback signer
X25519_PUBKEY_SIZE = 32
ED25519_PUBKEY_SIZE = 32
ED25519_SIGNATURE_SIZE = 64
NONCE_SIZE = 16  # u128, little-endian
ENCRYPTED_FIELD_SIZE = 32  # one ciphertext per scalar field
SEAL_NONCE_SIZE = 12  # ChaCha20-Poly1305
SEAL_TAG_SIZE = 16

# Escrow custody
ESCROW_PDA_SEED = b"vaultpay_escrow"
ESCROW_AUTHORITY_SEED = b"vaultpay_escrow_authority"
BATCH_RECIPIENT_SEED = b"vaultpay_batch"

# Encrypted instruction (circuit) names
CIRCUIT_VALIDATE_TRANSFER = "validate_confidential_transfer"
CIRCUIT_VALIDATE_AUDITABLE = "validate_auditable_transfer"
CIRCUIT_VALIDATE_BATCH = "validate_batch_payroll"

# Batch payroll
MAX_BATCH_ENTRIES = 10
MIN_BATCH_ENTRIES = 1

# Decrypted result layouts (bytes)
TRANSFER_RESULT_SIZE = 8 + 1
AUDITABLE_RESULT_SIZE = 8 + 1 + 8 + 8 + 1
BATCH_RESULT_SIZE = 2 + 8 + 1 + 8

# Auditable reason codes
REASON_SUCCESS = 0
REASON_INSUFFICIENT_BALANCE = 1

# Computation lifecycle
COMPUTATION_TIMEOUT_SLOTS = 1_500  # ~10 minutes at 400ms slots
