"""
Uniswap V3 client for interacting with the managed pool.
Reads pool price, positions and wallet balances, and submits position transactions.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

from eth_account import Account
from hexbytes import HexBytes
from web3 import Web3

from config import Config
from utils import GatewayError, TxError, UniswapV3Utils, Logger

logger = logging.getLogger(__name__)

MAX_UINT128 = 2 ** 128 - 1
MAX_UINT256 = 2 ** 256 - 1
DEADLINE_SECONDS = 1800


@dataclass
class TokenInfo:
    """ERC20 token metadata"""
    address: str
    symbol: str
    decimals: int


@dataclass
class PoolInfo:
    """Static metadata of the managed pool"""
    address: str
    token_a: TokenInfo  # pool token0
    token_b: TokenInfo  # pool token1
    fee: int
    tick_spacing: int

    @property
    def pair(self) -> str:
        return f"{self.token_a.symbol}/{self.token_b.symbol}"


@dataclass
class Position:
    """A concentrated-liquidity position owned by the wallet"""
    position_id: str
    token_a: TokenInfo
    token_b: TokenInfo
    liquidity: int
    lower_price: float
    upper_price: float
    current_price: float
    tick_lower: Optional[int] = None
    tick_upper: Optional[int] = None

    @property
    def in_range(self) -> bool:
        return self.lower_price <= self.current_price <= self.upper_price


@dataclass
class TokenBalance:
    """Wallet balance of one token"""
    mint: str
    amount: int
    decimals: int
    ui_amount: float = field(default=0.0)


def _tuple_abi(name: str, components: List[tuple]) -> Dict[str, Any]:
    return {
        "components": [
            {"internalType": type_, "name": field_name, "type": type_}
            for field_name, type_ in components
        ],
        "internalType": f"struct INonfungiblePositionManager.{name}",
        "name": "params",
        "type": "tuple"
    }


POSITION_MANAGER_ABI = [
    {
        "inputs": [_tuple_abi("MintParams", [
            ("token0", "address"),
            ("token1", "address"),
            ("fee", "uint24"),
            ("tickLower", "int24"),
            ("tickUpper", "int24"),
            ("amount0Desired", "uint256"),
            ("amount1Desired", "uint256"),
            ("amount0Min", "uint256"),
            ("amount1Min", "uint256"),
            ("recipient", "address"),
            ("deadline", "uint256"),
        ])],
        "name": "mint",
        "outputs": [
            {"internalType": "uint256", "name": "tokenId", "type": "uint256"},
            {"internalType": "uint128", "name": "liquidity", "type": "uint128"},
            {"internalType": "uint256", "name": "amount0", "type": "uint256"},
            {"internalType": "uint256", "name": "amount1", "type": "uint256"}
        ],
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [_tuple_abi("DecreaseLiquidityParams", [
            ("tokenId", "uint256"),
            ("liquidity", "uint128"),
            ("amount0Min", "uint256"),
            ("amount1Min", "uint256"),
            ("deadline", "uint256"),
        ])],
        "name": "decreaseLiquidity",
        "outputs": [
            {"internalType": "uint256", "name": "amount0", "type": "uint256"},
            {"internalType": "uint256", "name": "amount1", "type": "uint256"}
        ],
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [_tuple_abi("CollectParams", [
            ("tokenId", "uint256"),
            ("recipient", "address"),
            ("amount0Max", "uint128"),
            ("amount1Max", "uint128"),
        ])],
        "name": "collect",
        "outputs": [
            {"internalType": "uint256", "name": "amount0", "type": "uint256"},
            {"internalType": "uint256", "name": "amount1", "type": "uint256"}
        ],
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
        "name": "positions",
        "outputs": [
            {"internalType": "uint96", "name": "nonce", "type": "uint96"},
            {"internalType": "address", "name": "operator", "type": "address"},
            {"internalType": "address", "name": "token0", "type": "address"},
            {"internalType": "address", "name": "token1", "type": "address"},
            {"internalType": "uint24", "name": "fee", "type": "uint24"},
            {"internalType": "int24", "name": "tickLower", "type": "int24"},
            {"internalType": "int24", "name": "tickUpper", "type": "int24"},
            {"internalType": "uint128", "name": "liquidity", "type": "uint128"},
            {"internalType": "uint256", "name": "feeGrowthInside0LastX128", "type": "uint256"},
            {"internalType": "uint256", "name": "feeGrowthInside1LastX128", "type": "uint256"},
            {"internalType": "uint128", "name": "tokensOwed0", "type": "uint128"},
            {"internalType": "uint128", "name": "tokensOwed1", "type": "uint128"}
        ],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "address", "name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "address", "name": "owner", "type": "address"},
            {"internalType": "uint256", "name": "index", "type": "uint256"}
        ],
        "name": "tokenOfOwnerByIndex",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    }
]

POOL_ABI = [
    {
        "inputs": [],
        "name": "slot0",
        "outputs": [
            {"internalType": "uint160", "name": "sqrtPriceX96", "type": "uint160"},
            {"internalType": "int24", "name": "tick", "type": "int24"},
            {"internalType": "uint16", "name": "observationIndex", "type": "uint16"},
            {"internalType": "uint16", "name": "observationCardinality", "type": "uint16"},
            {"internalType": "uint16", "name": "observationCardinalityNext", "type": "uint16"},
            {"internalType": "uint8", "name": "feeProtocol", "type": "uint8"},
            {"internalType": "bool", "name": "unlocked", "type": "bool"}
        ],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "token0",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "token1",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "fee",
        "outputs": [{"internalType": "uint24", "name": "", "type": "uint24"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "tickSpacing",
        "outputs": [{"internalType": "int24", "name": "", "type": "int24"}],
        "stateMutability": "view",
        "type": "function"
    }
]

ERC20_ABI = [
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"internalType": "uint8", "name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "symbol",
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "address", "name": "owner", "type": "address"},
            {"internalType": "address", "name": "spender", "type": "address"}
        ],
        "name": "allowance",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "address", "name": "spender", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"}
        ],
        "name": "approve",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]


class UniswapV3Client:
    """Gateway to the managed Uniswap V3 pool and the bot wallet"""

    def __init__(self, config: Config = None, w3: Web3 = None):
        """
        Initialize the Uniswap V3 client

        Args:
            config: Configuration object
            w3: Optional pre-built Web3 instance
        """
        self.config = config or Config()

        self.w3 = w3 or Web3(Web3.HTTPProvider(
            self.config.ETHEREUM_RPC_URL,
            request_kwargs={'timeout': self.config.RPC_TIMEOUT_SECONDS}
        ))

        if self.config.PRIVATE_KEY:
            self.account = Account.from_key(self.config.PRIVATE_KEY)
            self.wallet_address = self.account.address
        else:
            self.account = None
            self.wallet_address = None

        self.pool_address = Web3.to_checksum_address(self.config.POOL_ADDRESS)
        self.pool_contract = self.w3.eth.contract(address=self.pool_address, abi=POOL_ABI)
        self.position_manager_address = Web3.to_checksum_address(self.config.UNISWAP_V3_POSITION_MANAGER)
        self.position_manager = self.w3.eth.contract(
            address=self.position_manager_address,
            abi=POSITION_MANAGER_ABI
        )

        self.pool: Optional[PoolInfo] = None

        # One signer, one nonce sequence
        self._tx_lock = threading.Lock()

        logger.info(f"Uniswap V3 client for pool {self.pool_address} on {self.config.CHAIN_NAME}")
        if self.wallet_address:
            logger.info(f"Wallet: {self.wallet_address}")

    def _erc20(self, address: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=ERC20_ABI)

    def _get_token_info(self, token_address: str) -> TokenInfo:
        token = self._erc20(token_address)
        decimals = token.functions.decimals().call()
        try:
            symbol = token.functions.symbol().call()
        except Exception as e:
            # Some tokens return bytes32 symbols
            logger.warning(f"Could not read symbol for {token_address}: {e}")
            symbol = token_address[:8]
        return TokenInfo(address=token_address, symbol=symbol, decimals=decimals)

    def load_pool(self) -> PoolInfo:
        """
        Fetch and cache the pool's static metadata

        Returns:
            PoolInfo for the configured pool

        Raises:
            GatewayError: if the pool cannot be resolved
        """
        try:
            token0 = self.pool_contract.functions.token0().call()
            token1 = self.pool_contract.functions.token1().call()
            fee = self.pool_contract.functions.fee().call()
            tick_spacing = self.pool_contract.functions.tickSpacing().call()
            token_a = self._get_token_info(token0)
            token_b = self._get_token_info(token1)
        except Exception as e:
            raise GatewayError(f"Failed to load pool {self.pool_address}: {e}") from e

        self.pool = PoolInfo(
            address=self.pool_address,
            token_a=token_a,
            token_b=token_b,
            fee=fee,
            tick_spacing=tick_spacing
        )
        logger.info(f"Pool info fetched: {self.pool.pair} fee={fee} tick_spacing={tick_spacing}")
        return self.pool

    def _require_pool(self) -> PoolInfo:
        if self.pool is None:
            return self.load_pool()
        return self.pool

    def _require_wallet(self):
        if self.account is None:
            raise GatewayError("No wallet configured (PRIVATE_KEY is not set)")

    def current_price(self) -> float:
        """
        Get the current pool price (token B per token A)

        Raises:
            GatewayError: if the pool cannot be read
        """
        pool = self._require_pool()
        try:
            slot0 = self.pool_contract.functions.slot0().call()
        except Exception as e:
            raise GatewayError(f"Failed to read pool price: {e}") from e

        price = UniswapV3Utils.sqrt_price_x96_to_price(
            slot0[0], pool.token_a.decimals, pool.token_b.decimals
        )
        if price <= 0:
            raise GatewayError(f"Pool returned non-positive price: {price}")
        logger.debug(f"Pool price: {price:.10f}")
        return price

    def position_from_raw(self, token_id: int, raw: tuple, current_price: float) -> Position:
        """Build a Position from a NonfungiblePositionManager.positions() tuple"""
        pool = self._require_pool()
        tick_lower = raw[5]
        tick_upper = raw[6]
        return Position(
            position_id=str(token_id),
            token_a=pool.token_a,
            token_b=pool.token_b,
            liquidity=raw[7],
            lower_price=UniswapV3Utils.tick_to_price(tick_lower, pool.token_a.decimals, pool.token_b.decimals),
            upper_price=UniswapV3Utils.tick_to_price(tick_upper, pool.token_a.decimals, pool.token_b.decimals),
            current_price=current_price,
            tick_lower=tick_lower,
            tick_upper=tick_upper
        )

    def _belongs_to_pool(self, raw: tuple) -> bool:
        pool = self._require_pool()
        return (
            raw[2].lower() == pool.token_a.address.lower()
            and raw[3].lower() == pool.token_b.address.lower()
            and raw[4] == pool.fee
        )

    def list_positions(self) -> List[Position]:
        """
        List the wallet's open positions in the managed pool

        Raises:
            GatewayError: if positions cannot be read
        """
        self._require_wallet()
        self._require_pool()
        current_price = self.current_price()

        try:
            count = self.position_manager.functions.balanceOf(self.wallet_address).call()
            positions = []
            for index in range(count):
                token_id = self.position_manager.functions.tokenOfOwnerByIndex(self.wallet_address, index).call()
                raw = self.position_manager.functions.positions(token_id).call()
                # Closed positions keep their NFT with zero liquidity
                if raw[7] > 0 and self._belongs_to_pool(raw):
                    positions.append(self.position_from_raw(token_id, raw, current_price))
        except Exception as e:
            raise GatewayError(f"Failed to read positions: {e}") from e

        logger.debug(f"Found {len(positions)} open positions in pool out of {count} owned NFTs")
        return positions

    def native_balance(self) -> float:
        """
        Get the wallet's native currency balance

        Raises:
            GatewayError: if the balance cannot be read
        """
        self._require_wallet()
        try:
            balance_wei = self.w3.eth.get_balance(self.wallet_address)
        except Exception as e:
            raise GatewayError(f"Failed to read native balance: {e}") from e
        return float(Web3.from_wei(balance_wei, 'ether'))

    def token_balances(self) -> Dict[str, TokenBalance]:
        """
        Get wallet balances of the pool's two tokens

        Returns:
            Mapping of token address to TokenBalance

        Raises:
            GatewayError: if a balance cannot be read
        """
        self._require_wallet()
        pool = self._require_pool()
        balances = {}
        for token in (pool.token_a, pool.token_b):
            try:
                amount = self._erc20(token.address).functions.balanceOf(self.wallet_address).call()
            except Exception as e:
                raise GatewayError(f"Failed to read {token.symbol} balance: {e}") from e
            balances[token.address] = TokenBalance(
                mint=token.address,
                amount=amount,
                decimals=token.decimals,
                ui_amount=UniswapV3Utils.to_ui_amount(amount, token.decimals)
            )
        return balances

    def _deadline(self) -> int:
        return int(self.w3.eth.get_block('latest')['timestamp']) + DEADLINE_SECONDS

    def _send_transaction(self, contract_function, operation: str) -> str:
        """
        Sign, send and confirm a contract call

        Args:
            contract_function: Bound web3 contract function
            operation: Name used in logs and errors

        Returns:
            Transaction hash as 0x-prefixed hex

        Raises:
            TxError: on submission failure, revert or confirmation timeout
        """
        self._require_wallet()
        with self._tx_lock:
            try:
                transaction = contract_function.build_transaction({
                    'from': self.wallet_address,
                    'nonce': self.w3.eth.get_transaction_count(self.wallet_address, 'pending'),
                    'value': 0
                })
                if transaction.get('gas', 0) > self.config.MAX_GAS_LIMIT:
                    raise TxError(
                        f"{operation} gas estimate {transaction['gas']} exceeds MAX_GAS_LIMIT {self.config.MAX_GAS_LIMIT}"
                    )
                signed_txn = self.account.sign_transaction(transaction)
                tx_hash = self.w3.eth.send_raw_transaction(signed_txn.raw_transaction)
            except TxError:
                raise
            except Exception as e:
                raise TxError(f"Failed to submit {operation}: {e}") from e

            tx_hex = HexBytes(tx_hash).to_0x_hex()
            logger.info(f"Transaction sent: {operation} {tx_hex}")

            try:
                receipt = self.w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=self.config.TX_TIMEOUT_SECONDS
                )
            except Exception as e:
                raise TxError(f"{operation} not confirmed: {e}", tx_hash=tx_hex) from e

        if receipt['status'] != 1:
            Logger.log_transaction(tx_hex, operation, False)
            raise TxError(f"{operation} reverted", tx_hash=tx_hex)

        Logger.log_transaction(tx_hex, operation, True, {'gas_used': receipt.get('gasUsed')})
        return tx_hex

    def _ensure_allowance(self, token: TokenInfo, amount: int):
        if amount <= 0:
            return
        contract = self._erc20(token.address)
        try:
            allowance = contract.functions.allowance(self.wallet_address, self.position_manager_address).call()
        except Exception as e:
            raise TxError(f"Failed to read {token.symbol} allowance: {e}") from e
        if allowance < amount:
            logger.info(f"Approving position manager to spend {token.symbol}")
            self._send_transaction(
                contract.functions.approve(self.position_manager_address, MAX_UINT256),
                f"approve_{token.symbol}"
            )

    def open_position(self, lower_price: float, upper_price: float, max_amount_a: int, max_amount_b: int) -> str:
        """
        Mint a new position over a price band

        Args:
            lower_price: Lower band price (token B per token A)
            upper_price: Upper band price
            max_amount_a: Maximum raw amount of token A to deposit
            max_amount_b: Maximum raw amount of token B to deposit

        Returns:
            Mint transaction hash

        Raises:
            TxError: if the position could not be opened
        """
        pool = self._require_pool()
        try:
            tick_lower, tick_upper = UniswapV3Utils.price_range_to_ticks(
                lower_price, upper_price, pool.tick_spacing,
                pool.token_a.decimals, pool.token_b.decimals
            )
        except ValueError as e:
            raise TxError(f"Invalid price band: {e}") from e

        logger.info(f"Opening position: ticks {tick_lower} to {tick_upper}, "
                    f"max {max_amount_a} {pool.token_a.symbol} / {max_amount_b} {pool.token_b.symbol}")

        self._ensure_allowance(pool.token_a, max_amount_a)
        self._ensure_allowance(pool.token_b, max_amount_b)

        try:
            deadline = self._deadline()
        except Exception as e:
            raise TxError(f"Failed to read latest block: {e}") from e

        mint_params = {
            'token0': Web3.to_checksum_address(pool.token_a.address),
            'token1': Web3.to_checksum_address(pool.token_b.address),
            'fee': pool.fee,
            'tickLower': tick_lower,
            'tickUpper': tick_upper,
            'amount0Desired': max_amount_a,
            'amount1Desired': max_amount_b,
            'amount0Min': 0,
            'amount1Min': 0,
            'recipient': self.wallet_address,
            'deadline': deadline
        }
        return self._send_transaction(self.position_manager.functions.mint(mint_params), 'open_position')

    def close_position(self, position_id: str) -> str:
        """
        Remove all liquidity from a position and collect the tokens

        Args:
            position_id: NFT token id of the position

        Returns:
            Collect transaction hash

        Raises:
            TxError: if the position could not be closed
        """
        token_id = int(position_id)
        try:
            raw = self.position_manager.functions.positions(token_id).call()
            deadline = self._deadline()
        except Exception as e:
            raise TxError(f"Failed to read position {position_id}: {e}") from e

        liquidity = raw[7]
        if liquidity > 0:
            decrease_params = {
                'tokenId': token_id,
                'liquidity': liquidity,
                'amount0Min': 0,
                'amount1Min': 0,
                'deadline': deadline
            }
            self._send_transaction(
                self.position_manager.functions.decreaseLiquidity(decrease_params),
                'decrease_liquidity'
            )

        collect_params = {
            'tokenId': token_id,
            'recipient': self.wallet_address,
            'amount0Max': MAX_UINT128,
            'amount1Max': MAX_UINT128
        }
        return self._send_transaction(self.position_manager.functions.collect(collect_params), 'close_position')
