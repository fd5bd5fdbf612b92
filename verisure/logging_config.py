import logging
import logging.config

import sentry_sdk

from verisure.config import Settings

REDACTED_KEYS = {'password', 'token', 'secret', 'private_key', 'qr_hash', 'credentials'}


def setup_logging(settings: Settings) -> None:
    """Configure root and library loggers; JSON lines when LOG_JSON is set."""
    formatter = 'json' if settings.LOG_JSON else 'plain'
    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'json': {
                '()': 'pythonjsonlogger.json.JsonFormatter',
                'format': '%(asctime)s %(name)s %(levelname)s %(message)s',
            },
            'plain': {
                'format': '[%(asctime)s] %(levelname)s in %(module)s: %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S',
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': formatter,
            },
        },
        'loggers': {
            'verisure': {
                'handlers': ['console'],
                'level': settings.LOG_LEVEL,
                'propagate': False,
            },
            'sqlalchemy.engine': {
                'handlers': ['console'],
                'level': 'WARNING',  # Don't log SQL in production (sensitive)
            },
            'web3': {
                'handlers': ['console'],
                'level': 'WARNING',
            },
        },
        'root': {
            'handlers': ['console'],
            'level': 'WARNING',
        },
    })


def redact_event_for_sentry(event, hint=None):
    """Strip auth headers, cookies and secret-looking frame variables before sending."""
    request = event.get('request')
    if request:
        request.pop('cookies', None)
        headers = request.get('headers') or {}
        for header in list(headers):
            if header.lower() == 'authorization':
                headers[header] = '[REDACTED]'

    for exc in (event.get('exception') or {}).get('values', []):
        stacktrace = exc.get('stacktrace') or {}
        for frame in stacktrace.get('frames', []):
            if 'vars' in frame:
                frame['vars'] = {
                    k: '[REDACTED]' if k in REDACTED_KEYS else v
                    for k, v in frame['vars'].items()
                }
    return event


def init_sentry(settings: Settings) -> bool:
    if not settings.SENTRY_DSN:
        return False
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
        send_default_pii=False,
        before_send=redact_event_for_sentry,
    )
    return True
