from collections import Counter
from dataclasses import dataclass
from typing import List, Optional, Sequence
from auditchain.chain.linker import block_digest
from auditchain.core.models import GENESIS_PREVIOUS_HASH, Block

HASH_MISMATCH = "HashMismatch"
LINKAGE_MISMATCH = "LinkageMismatch"
EMPTY_CHAIN = "EmptyChain"


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    index: Optional[int] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "VerificationResult":
        return cls(valid=True)

    @classmethod
    def invalid(cls, index: int, reason: str) -> "VerificationResult":
        return cls(valid=False, index=index, reason=reason)

    def to_dict(self):
        return {"valid": self.valid, "index": self.index, "reason": self.reason}


def verify(chain: Sequence[Block], allow_empty: bool = True) -> VerificationResult:
    """Walk ``chain`` in ascending order and report the first broken block.

    Linkage is checked before the digest, so a block whose ``previous_hash``
    was rewritten is reported as a linkage break rather than a hash break.
    """
    if not chain:
        return VerificationResult.ok() if allow_empty else VerificationResult.invalid(0, EMPTY_CHAIN)
    expected_prev = GENESIS_PREVIOUS_HASH
    for i, block in enumerate(chain):
        if block.previous_hash != expected_prev:
            return VerificationResult.invalid(i, LINKAGE_MISMATCH)
        if block_digest(block) != block.hash:
            return VerificationResult.invalid(i, HASH_MISMATCH)
        expected_prev = block.hash
    return VerificationResult.ok()


def find_forks(chain: Sequence[Block]) -> List[str]:
    """Previous-hash values claimed by more than one block."""
    counts = Counter(b.previous_hash for b in chain)
    return [h for h, n in counts.items() if n > 1]
