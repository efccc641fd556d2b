import re

# "schema"."name" / schema.name, в том числе с экранированными кавычками
_QUALIFIED_RE = re.compile(
    r'^(?:"(?:[^"]|"")+"|[A-Za-z_][A-Za-z0-9_$]*)'
    r'(?:\.(?:"(?:[^"]|"")+"|[A-Za-z_][A-Za-z0-9_$]*))?$'
)


def validate_qualified_name(name: str, *, what: str) -> str:
    n = (name or "").strip()
    if not _QUALIFIED_RE.fullmatch(n):
        raise ValueError(
            f"Invalid {what}: {n!r}. " "Expected [schema.]name, e.g. 'crunchy_lake.list_files'"
        )
    return n


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'
