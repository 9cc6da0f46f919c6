import json, logging, os, sys, time, socket
from logging.handlers import RotatingFileHandler

from concurrent_log_handler import ConcurrentRotatingFileHandler

# LogRecord attributes that are not user-supplied `extra=` fields
_RESERVED = frozenset({
    "args", "asctime", "created", "exc_info", "exc_text", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs", "message", "msg", "name",
    "pathname", "process", "processName", "relativeCreated", "stack_info", "thread",
    "threadName", "taskName",
})


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, extras, traceback."""
    def __init__(self, *, extra_static=None):
        super().__init__()
        self.extra_static = extra_static or {}

    def format(self, record: logging.LogRecord) -> str:
        out = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "file": record.filename,
            "line": record.lineno,
        }
        out.update(
            (k, v) for k, v in record.__dict__.items()
            if k not in out and k not in _RESERVED and not k.startswith("_")
        )
        out.update(self.extra_static)
        if record.exc_info:
            out["exc_info"] = self.formatException(record.exc_info)
        # exceptions and datetimes show up in extras
        return json.dumps(out, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Single-line format for log files."""
    def __init__(self):
        super().__init__("%(asctime)s [%(levelname)-8.8s] [%(name)s:%(lineno)d] %(message)s")


def _parse_level(val: str | int | None, default: str = "INFO") -> int:
    if isinstance(val, int):
        return val
    name = (val or os.getenv("LOG_LEVEL", default)).upper()
    lvl = getattr(logging, name, None)
    return lvl if isinstance(lvl, int) else logging.INFO


def _file_handler(filename: str, max_bytes: int, backup_count: int, concurrent: bool) -> logging.Handler:
    directory = os.path.dirname(filename)
    if directory:
        os.makedirs(directory, exist_ok=True)
    # uvicorn workers share the file; the concurrent handler locks around rollover
    cls = ConcurrentRotatingFileHandler if concurrent else RotatingFileHandler
    return cls(filename, maxBytes=max_bytes, backupCount=backup_count)


def setup_logging(
    *,
    app: str,
    environment: str = "development",
    level: str | int | None = None,
    use_stream: bool = True,
    stream_json: bool = True,
    filename: str | None = None,
    rolling_max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 10,
    use_concurrent_file_handler: bool = True,
    file_json: bool = False,
    extra_static: dict | None = None,
) -> logging.Logger:
    """
    Configure the root logger: JSON to stdout and/or a rotating file.
    Safe to call again; previous root handlers are replaced.
    """
    lvl = _parse_level(level)
    static = {"app": app, "env": environment, "host": socket.gethostname(), **(extra_static or {})}

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    root.setLevel(lvl)

    if use_stream:
        sh = logging.StreamHandler(sys.stdout)
        sh.setFormatter(JsonFormatter(extra_static=static) if stream_json else TextFormatter())
        root.addHandler(sh)

    if filename:
        fh = _file_handler(filename, rolling_max_bytes, backup_count, use_concurrent_file_handler)
        fh.setFormatter(JsonFormatter(extra_static=static) if file_json else TextFormatter())
        root.addHandler(fh)

    return root
