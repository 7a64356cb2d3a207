"""
Structured logging for Backend RiskGate.

JSON logs with timestamp, token, event_type and decision fields.
Use get_logger() in all modules for aggregation-friendly output.
"""

from backend_riskgate.riskgate_logging.logger import bind_request, get_logger

__all__ = ["get_logger", "bind_request"]
