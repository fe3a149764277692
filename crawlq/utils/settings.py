from __future__ import annotations

import importlib
import os
import tomllib
from collections.abc import Iterable, Mapping
from pathlib import Path

import orjson

ENV_PREFIX = "CRAWLQ_"


def ensure_int(value: object, name: str, *, minimum: int | None = None) -> int:
    """Coerce an int-like value (int, integral float, digit string).

    Raises:
        TypeError: value is not int-like (bools are rejected).
        ValueError: value is below `minimum`.
    """
    if isinstance(value, bool) or value is None:
        raise TypeError(f"{name} must be int, got {type(value).__name__}")
    if isinstance(value, int):
        result = value
    elif isinstance(value, float) and value.is_integer():
        result = int(value)
    elif isinstance(value, str) and value.strip().lstrip("+-").isdigit():
        result = int(value.strip())
    else:
        raise TypeError(f"{name} must be int-like, got {value!r}")

    if minimum is not None and result < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {result}")
    return result


def ensure_float(value: object, name: str, *, minimum: float | None = None) -> float:
    """Coerce a number or numeric string to float.

    Raises:
        TypeError: value is not float-like.
        ValueError: value is below `minimum`.
    """
    if isinstance(value, bool) or value is None:
        raise TypeError(f"{name} must be a number, got {type(value).__name__}")
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            raise TypeError(f"{name} must be float-like, got {value!r}") from None
    else:
        raise TypeError(f"{name} must be float-like, got {value!r}")

    if minimum is not None and result < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {result}")
    return result


def ensure_str(value: object, name: str) -> str:
    """Coerce to str; bytes are decoded as UTF-8. None is rejected."""
    if value is None:
        raise TypeError(f"{name} must be str, got None")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8")
    return value if isinstance(value, str) else str(value)


def parse_literal(s: str | None) -> bool | int | float | str | None:
    """Parse a CLI/env literal into bool / int / float / str.

    Only 'true' / 'false' (case-insensitive) become booleans. Blank strings are kept.
    """
    if s is None:
        return None
    val = s.strip()
    if not val:
        return val

    low = val.lower()
    if low in ("true", "false"):
        return low == "true"

    try:
        return int(val)
    except ValueError:
        pass
    try:
        return float(val)
    except ValueError:
        return val


def parse_value(raw: str) -> object:
    """Parse JSON objects/arrays with orjson, everything else via `parse_literal`."""
    s = raw.strip()
    if s[:1] in ("{", "["):
        try:
            return orjson.loads(s)
        except orjson.JSONDecodeError:
            pass
    return parse_literal(raw)


def load_config_file(path: str | Path) -> dict[str, object]:
    """Load a TOML config file (JSON for any other suffix) into a dict."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config file not found: {p}")
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() == ".toml":
        data = tomllib.loads(text)
    else:
        data = orjson.loads(text or "{}")
    if not isinstance(data, dict):
        raise TypeError("Config file must yield a table/object")
    return data


def load_env(prefix: str = ENV_PREFIX, environ: Mapping[str, str] | None = None) -> dict[str, object]:
    """Collect `CRAWLQ_*` variables into UPPERCASE setting keys with parsed values."""
    env = os.environ if environ is None else environ
    out: dict[str, object] = {}
    for k, v in env.items():
        if not k.startswith(prefix):
            continue
        key = k[len(prefix) :].strip()
        if key:
            out[key.upper()] = parse_value(v)
    return out


def map_keys_to_canonical(
    overrides: Mapping[str, object] | None, valid_keys: Iterable[str]
) -> dict[str, object]:
    """Map keys case-insensitively onto `valid_keys`; unknown keys come back uppercased."""
    if not overrides:
        return {}
    canon = {k.lower(): k for k in valid_keys}
    return {
        canon.get(k.lower(), k.upper()): v for k, v in overrides.items() if isinstance(k, str)
    }


def shallow_merge_dicts(base: Mapping[str, object], overrides: Mapping[str, object]) -> dict[str, object]:
    """Copy `base` with `overrides` applied; dict values are merged one level deep."""
    merged = dict(base)
    for k, v in overrides.items():
        cur = merged.get(k)
        if isinstance(cur, dict) and isinstance(v, dict):
            merged[k] = {**cur, **v}
        else:
            merged[k] = v
    return merged


def resolve_dotted_path(token: object, *, token_name: str = "token") -> object:
    """Import `package.module.attr` and return the attribute.

    Non-string tokens are returned unchanged so objects can be passed directly.
    Also accepts `package.module:attr`.
    """
    if not isinstance(token, str):
        return token
    path = token.replace(":", ".") if ":" in token else token
    if "." not in path:
        raise ValueError(f"Invalid dotted path for {token_name}: {token!r}")
    module_name, attr = path.rsplit(".", 1)
    try:
        mod = importlib.import_module(module_name)
    except ImportError as exc:
        raise ImportError(f"Could not import module {module_name!r}") from exc
    try:
        return getattr(mod, attr)
    except AttributeError as exc:
        raise ImportError(f"Module {module_name!r} has no attribute {attr!r}") from exc
