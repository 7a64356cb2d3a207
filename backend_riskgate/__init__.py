"""
Backend RiskGate: pre-trade admission gate for EVM token contracts.

Returns a PASS / WARN / BLOCK verdict for a contract address before a swap,
stake or lend proceeds. Modular architecture with clear separation between
bytecode analysis, risk schema, gate engine, gateway state (cache, quota,
ledger) and API server.
"""

__version__ = "0.1.0"
