# Wire constants for the chunked annotation protocol (canonical values live here)

# Budgeting estimate per serialized stroke point; not an exact byte count.
ESTIMATED_SIZE_PER_POINT = 1024

# Estimated size a single signal is allowed to carry before chunking kicks in.
TARGET_ESTIMATED_SIZE = 8000

# Hard per-message ceiling of the signaling channel (UTF-8 bytes).
MAX_SIGNAL_BYTES = 8192

# Position of the inline chunk carried by a single (unchunked) message.
SINGLE_CHUNK_POSITION = 0

# Chunk positions of a split annotation start here.
FIRST_CHUNK_POSITION = 1

# Server -> client error frame
T_ERROR = "error"
