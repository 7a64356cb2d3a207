"""
Core: error taxonomy shared by all layers.

Provides the domain exceptions used across the analyzer, gateway and API
server, with consistent error codes and HTTP status mapping.
"""
