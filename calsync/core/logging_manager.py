"""
Logging manager for the calendar sync queue
Console and rotating file handlers with sanitization of sensitive values
"""

import json
import logging
import logging.handlers
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List


class SecuritySafeFormatter(logging.Formatter):
    """Formatter that sanitizes sensitive information"""

    sensitive_fields = (
        'password', 'secret', 'token', 'api_key', 'authorization',
        'credentials', 'private_key', 'cookie'
    )

    def format(self, record):
        """Format log record with sensitive data sanitization"""
        record.msg = self._sanitize_message(record.getMessage())
        record.args = None
        return super().format(record)

    def _sanitize_message(self, message: str) -> str:
        lowered = message.lower()
        for name in self.sensitive_fields:
            if name in lowered:
                # field=value, field: value, "field": "value"
                pattern = rf'{name}["\']?\s*[:=]\s*["\']?([^"\'\s,}}]+)'
                message = re.sub(pattern, f'{name}=***', message, flags=re.IGNORECASE)
        return message


class JSONFormatter(SecuritySafeFormatter):
    """One JSON object per line, for log shipping"""

    def format(self, record):
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'component': record.name,
            'message': self._sanitize_message(record.getMessage()),
        }
        if record.exc_info:
            log_data['stack_trace'] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


class LoggingManager:
    """Configures the root logger once per process"""

    def __init__(self):
        self.configured = False
        self.handlers: List[logging.Handler] = []

    def configure(self, config: Dict[str, Any]):
        """Configure logging from the `logging` section of the application config"""
        if self.configured:
            return

        settings = config.get('logging', {})
        level = getattr(logging, str(settings.get('level', 'INFO')).upper(), logging.INFO)
        fmt = settings.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        if settings.get('json', False):
            console_handler.setFormatter(JSONFormatter())
        else:
            console_handler.setFormatter(SecuritySafeFormatter(fmt))
        root_logger.addHandler(console_handler)
        self.handlers.append(console_handler)

        if settings.get('file_enabled', False):
            log_path = Path(settings.get('file_path', 'logs/calsync.log'))
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                filename=str(log_path),
                maxBytes=int(settings.get('file_max_size', 10 * 1024 * 1024)),
                backupCount=int(settings.get('file_backup_count', 5)),
                encoding='utf-8'
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(JSONFormatter())
            root_logger.addHandler(file_handler)
            self.handlers.append(file_handler)

        # SQLAlchemy engine logging is controlled by database.echo
        logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

        self.configured = True
        logging.getLogger(__name__).info(f"Logging configured at {logging.getLevelName(level)}")

    def shutdown(self):
        """Detach and close every handler this manager installed"""
        root_logger = logging.getLogger()
        for handler in self.handlers:
            root_logger.removeHandler(handler)
            handler.close()

        self.handlers.clear()
        self.configured = False


# Global logging manager
logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]):
    """Configure process-wide logging"""
    logging_manager.configure(config)
