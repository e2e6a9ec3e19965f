import logging, json, os
from logging.handlers import RotatingFileHandler
from contextvars import ContextVar

# Context variable for per-request correlation id
REQUEST_ID_CTX: ContextVar[str | None] = ContextVar('request_id', default=None)

LOG_DIR = os.environ.get('LOG_DIR', 'logs')
LOG_FILE = os.path.join(LOG_DIR, 'volpulse.log')

# Structured fields that modules pass via `extra=` and that the JSON formatter keeps
_EXTRA_KEYS = ('event', 'pair', 'level_pct', 'error', 'count', 'status')


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        # Attach even if None for uniformity
        record.correlation_id = REQUEST_ID_CTX.get()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        base = {
            'ts': self.formatTime(record, datefmt='%Y-%m-%dT%H:%M:%S'),
            'level': record.levelname,
            'msg': record.getMessage(),
            'logger': record.name,
            'correlation_id': getattr(record, 'correlation_id', None),
        }
        for key in _EXTRA_KEYS:
            if hasattr(record, key):
                base[key] = getattr(record, key)
        if record.exc_info:
            base['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False, default=str)


def setup_logging(level: str | None = None):
    root = logging.getLogger()
    root.setLevel((level or os.environ.get('LOG_LEVEL', 'INFO')).upper())
    # Clear existing handlers to avoid duplicate logs in reloads
    root.handlers = []
    use_json = os.environ.get('LOG_FORMAT', '').lower() == 'json'
    if use_json:
        fmt = JsonFormatter()
    else:
        fmt = logging.Formatter('%(asctime)s - %(levelname)s - %(correlation_id)s - %(name)s - %(message)s')
    # Console handler
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    ch.addFilter(CorrelationIdFilter())
    root.addHandler(ch)
    # Rotating file handler (5 MB, keep 3 backups)
    try:
        os.makedirs(LOG_DIR, exist_ok=True)
        fh = RotatingFileHandler(LOG_FILE, maxBytes=5 * 1024 * 1024, backupCount=3)
        fh.setFormatter(fmt)
        fh.addFilter(CorrelationIdFilter())
        root.addHandler(fh)
    except OSError:
        root.warning('Could not attach rotating file handler; continuing with console only')


def log_config(settings):
    """Log current configuration"""
    logging.info("=== volpulse configuration ===")
    for key, value in settings.as_dict().items():
        logging.info(f"{key}: {value}")
    logging.info("==============================")
