from .identity import Principal, acting_as, build_principal, current_principal, elevated

__all__ = [
    "Principal",
    "acting_as",
    "build_principal",
    "current_principal",
    "elevated",
]
