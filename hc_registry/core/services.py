import json
import threading
from contextlib import contextmanager
from typing import Any, Iterator

from pydantic import BaseModel
from web3 import Web3


def create_metadata_hash(metadata: BaseModel | dict[str, Any]) -> str:
    """
    Return the keccak-256 hash binding a credit to its detailed metadata.

    To ensure that the same metadata always yields the same hash, the JSON
    form is canonicalised: keys are sorted, whitespace is removed and unset
    optional fields are dropped. The hash is stored on the ledger at issue
    and is what ``verify_credit`` compares against.

    Args:
        metadata (BaseModel | dict): The detailed metadata of the credit

    Returns:
        str: The 0x-prefixed hex digest
    """
    if isinstance(metadata, BaseModel):
        metadata = metadata.model_dump(mode="json", by_alias=True, exclude_none=True)

    canonical = json.dumps(metadata, sort_keys=True, separators=(",", ":"), default=str)
    return Web3.to_hex(Web3.keccak(text=canonical))


class CreditLockRegistry:
    """Per-credit mutual exclusion for the validate, ledger call, write sequence.

    Only serialises requests within one process; writers in other processes
    are caught by the optimistic version check on the credit record.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # credit id -> (lock, number of holders and waiters)
        self._locks: dict[int, tuple[threading.Lock, int]] = {}

    def _acquire_ref(self, credit_id: int) -> threading.Lock:
        with self._guard:
            lock, users = self._locks.get(credit_id, (threading.Lock(), 0))
            self._locks[credit_id] = (lock, users + 1)
            return lock

    def _release_ref(self, credit_id: int) -> None:
        with self._guard:
            lock, users = self._locks[credit_id]
            if users == 1:
                del self._locks[credit_id]
            else:
                self._locks[credit_id] = (lock, users - 1)

    def __len__(self) -> int:
        return len(self._locks)

    @contextmanager
    def hold(self, credit_id: int) -> Iterator[None]:
        lock = self._acquire_ref(credit_id)
        try:
            with lock:
                yield
        finally:
            self._release_ref(credit_id)


credit_locks = CreditLockRegistry()
