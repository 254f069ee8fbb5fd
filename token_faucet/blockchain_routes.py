# blockchain_routes.py
from fastapi import APIRouter

from .amounts import format_amount, format_gas_price
from .api_models import BalanceOut, BlockchainInfoOut, GasPriceOut, NetworkStatusOut, TxStatusOut
from .token_gateway import TokenGateway


def create_blockchain_router(gateway: TokenGateway, token_decimals: int = 18) -> APIRouter:
    """
    Thin read-only views of the gateway. A NetworkError raised here is
    turned into a 500 by the app-level FaucetError handler.
    """
    router = APIRouter()

    @router.get("/info", response_model=BlockchainInfoOut)
    def blockchain_info():
        info = gateway.network_info()
        return BlockchainInfoOut(
            network_id=info["chain_id"],
            block_number=info["block_number"],
            gas_price=format_gas_price(info["fee_rate"]),
            rpc_url=info.get("rpc_url", ""),
            chain_name=info.get("chain_name", ""),
        )

    @router.get("/balance", response_model=BalanceOut)
    def faucet_balance():
        balance = gateway.current_balance()
        return BalanceOut(balance=str(balance), formatted=format_amount(balance, token_decimals))

    @router.get("/tx/{tx_hash}", response_model=TxStatusOut)
    def tx_status(tx_hash: str):
        st = gateway.transaction_status(tx_hash)
        return TxStatusOut(
            status=st.state.value,
            message=st.message,
            block_number=st.block_number,
            gas_used=st.gas_used,
        )

    @router.get("/gas-price", response_model=GasPriceOut)
    def gas_price():
        wei = gateway.current_fee_rate()
        return GasPriceOut(gas_price=str(wei), formatted=format_gas_price(wei))

    @router.get("/network-status", response_model=NetworkStatusOut)
    def network_status():
        st = gateway.network_status()
        if not st.get("is_connected"):
            return NetworkStatusOut(is_connected=False, error=st.get("error"))
        fee = st.get("fee_rate")
        return NetworkStatusOut(
            is_connected=True,
            block_number=st.get("block_number"),
            gas_price=format_gas_price(fee) if fee is not None else None,
            peer_count=st.get("peer_count"),
            network_id=st.get("network_id"),
        )

    return router
