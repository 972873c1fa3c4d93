"""Program ids, record layouts and runtime limits for the vesting program."""

from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.sysvar import CLOCK as SYSVAR_CLOCK_ID
from solders.sysvar import RENT as SYSVAR_RENT_ID
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID


# Deployed vesting program (localnet/devnet v0).
DEFAULT_PROGRAM_ID = "SoLi39YzAM2zEXcecy77VGbxLB5yHryNckY9Jx7yBKM"
DEFAULT_PROGRAM_PUBKEY = Pubkey.from_string(DEFAULT_PROGRAM_ID)

SEEDS_LEN = 32
PUBKEY_LEN = 32

# Vesting record layout: [header][schedule 0]..[schedule n-1].
SCHEDULE_LEN = 16
HEADER_LEN = 65
HEADER_DESTINATION_OFFSET = 0
HEADER_MINT_OFFSET = 32
HEADER_INITIALIZED_OFFSET = 64

# Instruction tags.
TAG_INIT = 0
TAG_CREATE = 1
TAG_UNLOCK = 2
TAG_CHANGE_DESTINATION = 3
TAG_EMPTY = 4

INIT_PAYLOAD_LEN = SEEDS_LEN + 4
CREATE_FIXED_LEN = SEEDS_LEN + 2 * PUBKEY_LEN
EMPTY_PAYLOAD_LEN = 4

# Fungible-token account layout offsets (165 bytes).
TOKEN_ACCOUNT_LEN = 165
TOKEN_MINT_OFFSET = 0
TOKEN_OWNER_OFFSET = 32
TOKEN_AMOUNT_OFFSET = 64
TOKEN_DELEGATE_OFFSET = 72
TOKEN_STATE_OFFSET = 108
TOKEN_IS_NATIVE_OFFSET = 109
TOKEN_DELEGATED_AMOUNT_OFFSET = 121
TOKEN_CLOSE_AUTHORITY_OFFSET = 129

TOKEN_STATE_UNINITIALIZED = 0
TOKEN_STATE_INITIALIZED = 1
TOKEN_STATE_FROZEN = 2

U64_MAX = 2**64 - 1
U32_MAX = 2**32 - 1

# Runtime limits mirrored by the in-memory bank.
MAX_ACCOUNT_DATA_LEN = 10 * 1024 * 1024
ACCOUNT_STORAGE_OVERHEAD = 128
LAMPORTS_PER_BYTE_YEAR = 3480
RENT_EXEMPTION_YEARS = 2

DEFAULT_RPC_URL = "http://127.0.0.1:8899"
