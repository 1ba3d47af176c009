import json
import time


def now_ts() -> float:
    return time.time()


def load_json(raw, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        return default


def dump_json(value) -> str | None:
    if value is None:
        return None
    return json.dumps(value)
