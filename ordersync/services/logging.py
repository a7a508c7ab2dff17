import json
import logging
import sys
from datetime import datetime, timezone


_LEVELS = {"debug": 10, "info": 20, "warning": 30, "error": 40, "critical": 50}
_threshold = _LEVELS["info"]


def set_log_level(level: str) -> None:
    global _threshold
    _threshold = _LEVELS.get((level or "info").lower(), _LEVELS["info"])
    logging.basicConfig(level=_threshold, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def log_event(level: str, event: str, **fields) -> None:
    if _LEVELS.get(level.lower(), _LEVELS["info"]) < _threshold:
        return
    payload = {
        "ts": datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z",
        "level": level.lower(),
        "event": event,
    }
    payload.update(fields or {})
    try:
        sys.stdout.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
    except (OSError, ValueError):
        # best-effort logging
        pass
