"""
Minimal ABIs for the contracts the guard reads.

Only the functions and events actually called are declared.
"""
from __future__ import annotations

ERC20_ABI = [
    {
        "type": "function",
        "name": "decimals",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

UNISWAP_V3_POOL_ABI = [
    {
        "type": "function",
        "name": "token0",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function",
        "name": "token1",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function",
        "name": "fee",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint24"}],
    },
    {
        "type": "function",
        "name": "liquidity",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint128"}],
    },
    {
        "type": "function",
        "name": "slot0",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "sqrtPriceX96", "type": "uint160"},
            {"name": "tick", "type": "int24"},
            {"name": "observationIndex", "type": "uint16"},
            {"name": "observationCardinality", "type": "uint16"},
            {"name": "observationCardinalityNext", "type": "uint16"},
            {"name": "feeProtocol", "type": "uint8"},
            {"name": "unlocked", "type": "bool"},
        ],
    },
]

UNISWAP_V3_FACTORY_ABI = [
    {
        "type": "function",
        "name": "getPool",
        "stateMutability": "view",
        "inputs": [
            {"name": "tokenA", "type": "address"},
            {"name": "tokenB", "type": "address"},
            {"name": "fee", "type": "uint24"},
        ],
        "outputs": [{"name": "", "type": "address"}],
    },
]

# QuoterV2: struct params, four return values. Not a view; called via eth_call.
QUOTER_V2_ABI = [
    {
        "type": "function",
        "name": "quoteExactInputSingle",
        "stateMutability": "nonpayable",
        "inputs": [
            {
                "name": "params",
                "type": "tuple",
                "components": [
                    {"name": "tokenIn", "type": "address"},
                    {"name": "tokenOut", "type": "address"},
                    {"name": "amountIn", "type": "uint256"},
                    {"name": "fee", "type": "uint24"},
                    {"name": "sqrtPriceLimitX96", "type": "uint160"},
                ],
            }
        ],
        "outputs": [
            {"name": "amountOut", "type": "uint256"},
            {"name": "sqrtPriceX96After", "type": "uint160"},
            {"name": "initializedTicksCrossed", "type": "uint32"},
            {"name": "gasEstimate", "type": "uint256"},
        ],
    },
]

# Legacy Quoter: positional params, single return value.
QUOTER_V1_ABI = [
    {
        "type": "function",
        "name": "quoteExactInputSingle",
        "stateMutability": "view",
        "inputs": [
            {"name": "tokenIn", "type": "address"},
            {"name": "tokenOut", "type": "address"},
            {"name": "fee", "type": "uint24"},
            {"name": "amountIn", "type": "uint256"},
            {"name": "sqrtPriceLimitX96", "type": "uint160"},
        ],
        "outputs": [{"name": "amountOut", "type": "uint256"}],
    },
]

_OG_TRANSACTION_COMPONENTS = [
    {"name": "to", "type": "address"},
    {"name": "operation", "type": "uint8"},
    {"name": "value", "type": "uint256"},
    {"name": "data", "type": "bytes"},
]

OPTIMISTIC_GOVERNOR_EVENTS_ABI = [
    {
        "type": "event",
        "name": "TransactionsProposed",
        "anonymous": False,
        "inputs": [
            {"name": "proposer", "type": "address", "indexed": True},
            {"name": "proposalTime", "type": "uint256", "indexed": True},
            {"name": "assertionId", "type": "bytes32", "indexed": True},
            {
                "name": "proposal",
                "type": "tuple",
                "indexed": False,
                "components": [
                    {
                        "name": "transactions",
                        "type": "tuple[]",
                        "components": _OG_TRANSACTION_COMPONENTS,
                    },
                    {"name": "requestTime", "type": "uint256"},
                ],
            },
            {"name": "proposalHash", "type": "bytes32", "indexed": False},
            {"name": "explanation", "type": "bytes", "indexed": False},
            {"name": "rules", "type": "string", "indexed": False},
            {"name": "challengeWindowEnds", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "ProposalExecuted",
        "anonymous": False,
        "inputs": [
            {"name": "proposalHash", "type": "bytes32", "indexed": True},
            {"name": "assertionId", "type": "bytes32", "indexed": True},
        ],
    },
    {
        "type": "event",
        "name": "ProposalDeleted",
        "anonymous": False,
        "inputs": [
            {"name": "proposalHash", "type": "bytes32", "indexed": True},
            {"name": "assertionId", "type": "bytes32", "indexed": True},
        ],
    },
]

PROPOSAL_EXECUTED = "ProposalExecuted"
PROPOSAL_DELETED = "ProposalDeleted"
TRANSACTIONS_PROPOSED = "TransactionsProposed"
