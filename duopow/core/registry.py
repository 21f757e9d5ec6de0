import asyncio
import logging
from typing import Any, Callable, TypeVar

from eth_account.signers.local import LocalAccount
from web3 import Web3

from .errors import RemoteTransportError
from .models import Address, Registration, SubmittedTx

log = logging.getLogger(__name__)

CHAIN_ID = 167000  # Taiko mainnet

_T = TypeVar("_T")


def _fn(name: str, inputs, outputs=None, mutability: str = "nonpayable") -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": arg, "type": kind} for arg, kind in inputs],
        "outputs": [{"name": arg, "type": kind} for arg, kind in (outputs or [])],
        "stateMutability": mutability,
    }


REGISTRY_ABI = [
    _fn("users", [("id", "uint256")], [("addr", "address"), ("xp", "uint256")], "view"),
    _fn("userRegister", [("id", "uint256"), ("addr", "address"), ("xp", "uint256")]),
    _fn("userUpdateAddress", [("id", "uint256"), ("addr", "address")]),
    _fn("userUnregister", [("id", "uint256")]),
    _fn("reportXp", [("id", "uint256"), ("xp", "uint256")]),
]


class RegistryClient:
    """Typed access to the on-chain XP registry.

    Writes are signed with the process key and return once the node accepts
    the raw transaction; nothing here waits for a receipt.
    """

    def __init__(
        self,
        *,
        web3: Web3,
        contract_address: str,
        account: LocalAccount,
        chain_id: int = CHAIN_ID,
    ) -> None:
        self.web3 = web3
        self.contract = web3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=REGISTRY_ABI
        )
        self.chain_id = chain_id
        self._account = account
        self._send_lock = asyncio.Lock()

    @classmethod
    def from_rpc(
        cls,
        rpc_url: str,
        *,
        contract_address: str,
        account: LocalAccount,
        chain_id: int = CHAIN_ID,
    ) -> "RegistryClient":
        web3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))
        log.debug("registry client initialised for %s", rpc_url)
        return cls(web3=web3, contract_address=contract_address, account=account, chain_id=chain_id)

    @property
    def signer_address(self) -> str:
        return self._account.address

    async def _run(self, label: str, func: Callable[[], _T]) -> _T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func)
        except Exception as exc:
            log.error("registry %s failed: %s", label, exc)
            raise RemoteTransportError(f"registry {label} failed: {exc}") from exc

    async def lookup(self, external_id: int) -> Registration:
        def _call() -> Any:
            return self.contract.functions.users(external_id).call()

        addr, xp = await self._run("users", _call)
        return Registration(address=Address.from_hex(str(addr)), xp_reported=int(xp))

    async def _submit(self, function_name: str, external_id: int, *args: Any) -> SubmittedTx:
        account = self._account

        def _send() -> str:
            function = getattr(self.contract.functions, function_name)
            nonce = self.web3.eth.get_transaction_count(account.address, "pending")
            tx = function(external_id, *args).build_transaction(
                {"from": account.address, "nonce": nonce, "chainId": self.chain_id}
            )
            signed = account.sign_transaction(tx)
            tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
            return Web3.to_hex(tx_hash)

        # One in-flight submission per signer, otherwise pending nonces collide.
        async with self._send_lock:
            tx_hash = await self._run(function_name, _send)
        log.info("submitted %s for user %s (tx=%s)", function_name, external_id, tx_hash)
        return SubmittedTx(operation=function_name, tx_hash=tx_hash, external_id=external_id)

    async def register(self, external_id: int, address: Address, initial_xp: int) -> SubmittedTx:
        return await self._submit("userRegister", external_id, address.checksum, int(initial_xp))

    async def update_address(self, external_id: int, address: Address) -> SubmittedTx:
        return await self._submit("userUpdateAddress", external_id, address.checksum)

    async def report_xp(self, external_id: int, new_total: int) -> SubmittedTx:
        return await self._submit("reportXp", external_id, int(new_total))

    async def unregister(self, external_id: int) -> SubmittedTx:
        return await self._submit("userUnregister", external_id)
