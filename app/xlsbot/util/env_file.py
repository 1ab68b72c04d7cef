"""Minimal ``.env`` reader/writer used by the settings layer."""

from __future__ import annotations

from pathlib import Path


class EnvFile:
    """Reads and updates ``KEY=value`` lines, preserving unrelated lines."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def read(self, key: str) -> str:
        return self.read_all().get(key, "")

    def read_all(self) -> dict[str, str]:
        if not self.path.is_file():
            return {}
        values: dict[str, str] = {}
        for line in self.path.read_text().splitlines():
            parsed = _parse_line(line)
            if parsed is not None:
                values[parsed[0]] = parsed[1]
        return values

    def write(self, **kwargs: str) -> None:
        """Set keys; an empty value removes the key."""
        lines = self.path.read_text().splitlines() if self.path.is_file() else []
        pending = dict(kwargs)
        out: list[str] = []
        for line in lines:
            parsed = _parse_line(line)
            if parsed is None or parsed[0] not in pending:
                out.append(line)
                continue
            value = pending.pop(parsed[0])
            if value:
                out.append(f"{parsed[0]}={_quote(value)}")
        for key, value in pending.items():
            if value:
                out.append(f"{key}={_quote(value)}")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("\n".join(out) + "\n" if out else "")


def _parse_line(line: str) -> tuple[str, str] | None:
    stripped = line.strip()
    if not stripped or stripped.startswith("#") or "=" not in stripped:
        return None
    key, _, value = stripped.partition("=")
    key = key.strip()
    if key.startswith("export "):
        key = key[len("export "):].strip()
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return key, value


def _quote(value: str) -> str:
    if any(ch.isspace() for ch in value) or "#" in value:
        return f'"{value}"'
    return value
