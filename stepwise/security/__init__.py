from .policy import AuthorizationPolicy, StaticAdminPolicy

__all__ = ["AuthorizationPolicy", "StaticAdminPolicy"]
