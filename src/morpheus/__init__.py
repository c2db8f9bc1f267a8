"""
Morpheus - supervising router for sandboxed capability agents.

Inbound chat messages are classified and delegated to exactly one capability
worker (terminal, file editor, browser, planner or external tool invoker), each
confined to its own sandbox, with per-session history and audit logging.
"""

__version__ = "1.0.0"
__author__ = "Morpheus Development Team"
__email__ = "dev@morpheus.example.com"

from .models import *

__all__ = [
    "models",
    "services",
    "lib",
    "api",
    "cli"
]
