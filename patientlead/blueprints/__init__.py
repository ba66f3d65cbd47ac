from .tools import tools_bp
from .billing import billing_bp
from .account import account_bp
from .telemetry import telemetry_bp

__all__ = ['tools_bp', 'billing_bp', 'account_bp', 'telemetry_bp']
