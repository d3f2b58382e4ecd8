from salesfunnel.platform.security.context import SYSTEM_ACTOR, Actor

__all__ = ["Actor", "SYSTEM_ACTOR"]
