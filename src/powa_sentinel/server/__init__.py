from powa_sentinel.server.health import HealthServer, HealthServerError, format_uptime

__all__ = ["HealthServer", "HealthServerError", "format_uptime"]
