def ctx_prefix(*, pname: str, kind: str, rid: str | None = None) -> str:
    base = f"pipeline={pname} kind={kind}"
    return f"{base} run={rid}" if rid is not None else base
