from sysarp.auth.session import AuthSessionManager, SessionContext, SessionState

__all__ = ["AuthSessionManager", "SessionContext", "SessionState"]
