from fastapi import Request

from hc_registry.core.exceptions import LedgerUnavailableError
from hc_registry.ledger.client import LedgerClient
from hc_registry.ledger.memory_client import InMemoryLedgerClient
from hc_registry.ledger.web3_client import Web3LedgerClient
from hc_registry.settings import Settings


def build_ledger_client(settings: Settings) -> LedgerClient:
    """Construct, but do not connect, the ledger client selected by ``LEDGER_BACKEND``."""
    backend = settings.LEDGER_BACKEND.lower()

    if backend == "memory":
        return InMemoryLedgerClient()

    if backend == "web3":
        if not settings.LEDGER_RPC_URL or not settings.LEDGER_CONTRACT_ADDRESS:
            raise ValueError(
                "LEDGER_RPC_URL and LEDGER_CONTRACT_ADDRESS are required for the web3 ledger backend"
            )
        return Web3LedgerClient(
            rpc_url=settings.LEDGER_RPC_URL,
            contract_address=settings.LEDGER_CONTRACT_ADDRESS,
            abi_path=settings.LEDGER_ABI_PATH,
            private_key=settings.LEDGER_PRIVATE_KEY,
            rpc_timeout=settings.LEDGER_RPC_TIMEOUT_SECONDS,
            confirmation_timeout=settings.LEDGER_CONFIRMATION_TIMEOUT_SECONDS,
        )

    raise ValueError(f"Unknown LEDGER_BACKEND '{settings.LEDGER_BACKEND}'")


def get_ledger_client(request: Request) -> LedgerClient:
    """FastAPI dependency returning the ledger client created in the app lifespan."""
    client: LedgerClient | None = getattr(request.app.state, "ledger_client", None)
    if client is None or not client.is_connected:
        raise LedgerUnavailableError("Ledger client is not connected")
    return client
