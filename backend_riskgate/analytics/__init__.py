"""Risk analytics: signature catalogue, bytecode analyzer, risk schema, execution gate."""

from backend_riskgate.analytics.gate_engine import GateDecision, GatePolicy, evaluate, get_policy
from backend_riskgate.analytics.risk_schema import RiskLevel, RiskSchema, create, merge, risk_level_for
from backend_riskgate.analytics.signatures import Decision, RiskCategory

__all__ = [
    "Decision",
    "GateDecision",
    "GatePolicy",
    "RiskCategory",
    "RiskLevel",
    "RiskSchema",
    "create",
    "evaluate",
    "get_policy",
    "merge",
    "risk_level_for",
]
