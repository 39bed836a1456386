"""Unit tests for the Uniswap V3 gateway, with a mocked Web3 connection."""
import pytest
import sys
import os
from unittest.mock import Mock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from uniswap_client import MAX_UINT128, PoolInfo, TokenInfo, UniswapV3Client
from utils import GatewayError, Q96, TxError

POOL_ADDRESS = '0x88e6a0c2ddd26feeb64f039a2c41296fcb3f5640'
POSITION_MANAGER = '0xc36442b4a4522e871399cd717abdd847ab11fe88'
TOKEN0 = '0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48'
TOKEN1 = '0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2'
OTHER_TOKEN = '0xdAC17F958D2ee523a2206206994597C13D831ec7'


def make_raw_position(token0=TOKEN0, token1=TOKEN1, fee=500, tick_lower=-600, tick_upper=600, liquidity=10 ** 12):
    return (0, '0x' + '0' * 40, token0, token1, fee, tick_lower, tick_upper, liquidity, 0, 0, 0, 0)


def make_erc20(symbol='TKN', decimals=18, balance=0, allowance=0):
    contract = Mock()
    contract.functions.symbol.return_value.call.return_value = symbol
    contract.functions.decimals.return_value.call.return_value = decimals
    contract.functions.balanceOf.return_value.call.return_value = balance
    contract.functions.allowance.return_value.call.return_value = allowance
    return contract


class TestUniswapV3Client:
    """Test pool reads and transaction handling."""

    def setup_method(self):
        """Set up test fixtures."""
        self.config = Mock()
        self.config.PRIVATE_KEY = '0x' + '11' * 32
        self.config.POOL_ADDRESS = POOL_ADDRESS
        self.config.UNISWAP_V3_POSITION_MANAGER = POSITION_MANAGER
        self.config.CHAIN_NAME = 'Ethereum Mainnet'
        self.config.MAX_GAS_LIMIT = 500000
        self.config.TX_TIMEOUT_SECONDS = 180

        self.w3 = Mock()
        self.client = UniswapV3Client(self.config, w3=self.w3)
        self.client.pool_contract = Mock()
        self.client.position_manager = Mock()
        self.pool = PoolInfo(
            address=self.client.pool_address,
            token_a=TokenInfo(address=TOKEN0, symbol='AAA', decimals=18),
            token_b=TokenInfo(address=TOKEN1, symbol='BBB', decimals=18),
            fee=500,
            tick_spacing=10
        )

    def test_initialization(self):
        """Addresses are checksummed and the wallet is derived from the key."""
        assert self.client.pool_address == '0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640'
        assert self.client.position_manager_address == '0xC36442b4a4522E871399CD717aBDD847Ab11FE88'
        assert self.client.wallet_address.startswith('0x')
        assert self.client.pool is None

    def test_load_pool(self):
        """Pool metadata is read once and cached."""
        functions = self.client.pool_contract.functions
        functions.token0.return_value.call.return_value = TOKEN0
        functions.token1.return_value.call.return_value = TOKEN1
        functions.fee.return_value.call.return_value = 500
        functions.tickSpacing.return_value.call.return_value = 10
        tokens = {TOKEN0: make_erc20('USDC', 6), TOKEN1: make_erc20('WETH', 18)}
        self.client._erc20 = Mock(side_effect=lambda address: tokens[address])

        pool = self.client.load_pool()

        assert pool.pair == 'USDC/WETH'
        assert pool.token_a.decimals == 6
        assert pool.fee == 500
        assert pool.tick_spacing == 10
        assert self.client.pool is pool

    def test_load_pool_failure(self):
        """An unreadable pool is a gateway error."""
        self.client.pool_contract.functions.token0.return_value.call.side_effect = ValueError("no contract")

        with pytest.raises(GatewayError):
            self.client.load_pool()

    def test_current_price(self):
        """Price comes from slot0 sqrtPriceX96."""
        self.client.pool = self.pool
        self.client.pool_contract.functions.slot0.return_value.call.return_value = (2 * Q96, 0, 0, 0, 0, 0, True)

        assert self.client.current_price() == pytest.approx(4.0)

    def test_current_price_failure(self):
        """RPC errors become GatewayError."""
        self.client.pool = self.pool
        self.client.pool_contract.functions.slot0.return_value.call.side_effect = ConnectionError("timeout")

        with pytest.raises(GatewayError):
            self.client.current_price()

    def test_list_positions_filters_closed_and_foreign(self):
        """Only live positions in the managed pool are returned."""
        self.client.pool = self.pool
        self.client.pool_contract.functions.slot0.return_value.call.return_value = (Q96, 0, 0, 0, 0, 0, True)
        functions = self.client.position_manager.functions
        functions.balanceOf.return_value.call.return_value = 3
        functions.tokenOfOwnerByIndex.return_value.call.side_effect = [11, 12, 13]
        functions.positions.return_value.call.side_effect = [
            make_raw_position(),
            make_raw_position(liquidity=0),
            make_raw_position(token1=OTHER_TOKEN),
        ]

        positions = self.client.list_positions()

        assert [position.position_id for position in positions] == ['11']
        position = positions[0]
        assert position.tick_lower == -600
        assert position.lower_price == pytest.approx(1.0001 ** -600)
        assert position.upper_price == pytest.approx(1.0001 ** 600)
        assert position.current_price == pytest.approx(1.0)
        assert position.in_range is True

    def test_list_positions_requires_wallet(self):
        """Without a key there are no positions to read."""
        self.client.account = None

        with pytest.raises(GatewayError):
            self.client.list_positions()

    def test_native_balance(self):
        """Wei balances are converted to ether."""
        self.w3.eth.get_balance.return_value = 25 * 10 ** 15

        assert self.client.native_balance() == pytest.approx(0.025)

    def test_token_balances(self):
        """Both pool token balances are keyed by address."""
        self.client.pool = self.pool
        tokens = {TOKEN0: make_erc20(balance=10 ** 18), TOKEN1: make_erc20(balance=5 * 10 ** 17)}
        self.client._erc20 = Mock(side_effect=lambda address: tokens[address])

        balances = self.client.token_balances()

        assert balances[TOKEN0].amount == 10 ** 18
        assert balances[TOKEN1].ui_amount == pytest.approx(0.5)

    # Transactions

    def _prepare_send(self, gas=200000, status=1):
        self.client.account = Mock()
        self.client.account.sign_transaction.return_value.raw_transaction = b'signed'
        self.w3.eth.send_raw_transaction.return_value = bytes.fromhex('ab' * 32)
        self.w3.eth.wait_for_transaction_receipt.return_value = {'status': status, 'gasUsed': 150000}
        contract_function = Mock()
        contract_function.build_transaction.return_value = {'gas': gas, 'nonce': 1}
        return contract_function

    def test_send_transaction_success(self):
        """A confirmed transaction returns its hex hash."""
        contract_function = self._prepare_send()

        tx_hash = self.client._send_transaction(contract_function, 'open_position')

        assert tx_hash == '0x' + 'ab' * 32
        self.w3.eth.send_raw_transaction.assert_called_once_with(b'signed')
        assert self.w3.eth.wait_for_transaction_receipt.call_args[1]['timeout'] == 180

    def test_send_transaction_gas_limit(self):
        """Gas estimates above MAX_GAS_LIMIT are not sent."""
        contract_function = self._prepare_send(gas=900000)

        with pytest.raises(TxError, match='MAX_GAS_LIMIT'):
            self.client._send_transaction(contract_function, 'open_position')

        self.client.account.sign_transaction.assert_not_called()

    def test_send_transaction_revert_keeps_hash(self):
        """A reverted transaction reports the hash it was sent under."""
        contract_function = self._prepare_send(status=0)

        with pytest.raises(TxError) as exc_info:
            self.client._send_transaction(contract_function, 'close_position')

        assert exc_info.value.tx_hash == '0x' + 'ab' * 32

    def test_send_transaction_submit_failure(self):
        """Submission errors carry no hash."""
        contract_function = self._prepare_send()
        self.w3.eth.send_raw_transaction.side_effect = ValueError("nonce too low")

        with pytest.raises(TxError) as exc_info:
            self.client._send_transaction(contract_function, 'open_position')

        assert exc_info.value.tx_hash is None

    def test_open_position(self):
        """Mint uses tick-aligned bounds and the requested amounts."""
        self.client.pool = self.pool
        self.client._erc20 = Mock(return_value=make_erc20(allowance=10 ** 30))
        self.w3.eth.get_block.return_value = {'timestamp': 1000}
        self.client._send_transaction = Mock(return_value='0xmint')

        tx_hash = self.client.open_position(0.95, 1.05, 10 ** 18, 2 * 10 ** 18)

        assert tx_hash == '0xmint'
        params = self.client.position_manager.functions.mint.call_args[0][0]
        assert params['tickLower'] % 10 == 0
        assert params['tickUpper'] % 10 == 0
        assert params['tickLower'] < 0 < params['tickUpper']
        assert params['amount0Desired'] == 10 ** 18
        assert params['amount1Desired'] == 2 * 10 ** 18
        assert params['deadline'] == 2800
        assert params['recipient'] == self.client.wallet_address
        self.client._send_transaction.assert_called_once()

    def test_open_position_approves_tokens(self):
        """Insufficient allowances are approved before minting."""
        self.client.pool = self.pool
        self.client._erc20 = Mock(return_value=make_erc20(allowance=0))
        self.w3.eth.get_block.return_value = {'timestamp': 1000}
        self.client._send_transaction = Mock(return_value='0xhash')

        self.client.open_position(0.95, 1.05, 10 ** 18, 10 ** 18)

        operations = [call[0][1] for call in self.client._send_transaction.call_args_list]
        assert operations == ['approve_AAA', 'approve_BBB', 'open_position']

    def test_open_position_invalid_band(self):
        """An inverted band is rejected as a transaction error."""
        self.client.pool = self.pool

        with pytest.raises(TxError):
            self.client.open_position(2.0, 1.0, 10 ** 18, 10 ** 18)

    def test_close_position(self):
        """Closing removes all liquidity then collects everything."""
        self.client.position_manager.functions.positions.return_value.call.return_value = make_raw_position()
        self.w3.eth.get_block.return_value = {'timestamp': 1000}
        self.client._send_transaction = Mock(side_effect=['0xdecrease', '0xcollect'])

        assert self.client.close_position('11') == '0xcollect'

        decrease = self.client.position_manager.functions.decreaseLiquidity.call_args[0][0]
        assert decrease['tokenId'] == 11
        assert decrease['liquidity'] == 10 ** 12
        collect = self.client.position_manager.functions.collect.call_args[0][0]
        assert collect['amount0Max'] == MAX_UINT128
        assert collect['amount1Max'] == MAX_UINT128

    def test_close_position_without_liquidity_only_collects(self):
        """Empty positions skip the decrease step."""
        self.client.position_manager.functions.positions.return_value.call.return_value = make_raw_position(liquidity=0)
        self.w3.eth.get_block.return_value = {'timestamp': 1000}
        self.client._send_transaction = Mock(return_value='0xcollect')

        assert self.client.close_position('11') == '0xcollect'
        self.client.position_manager.functions.decreaseLiquidity.assert_not_called()

    def test_close_position_read_failure(self):
        """Unreadable positions cannot be closed."""
        self.client.position_manager.functions.positions.return_value.call.side_effect = ValueError("invalid token id")

        with pytest.raises(TxError):
            self.client.close_position('99')


if __name__ == "__main__":
    pytest.main([__file__])
