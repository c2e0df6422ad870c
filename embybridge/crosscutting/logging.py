import json
import logging
import re
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from contextvars import ContextVar

# Context variables for correlation
run_id_var: ContextVar[Optional[str]] = ContextVar('run_id', default=None)
playlist_id_var: ContextVar[Optional[str]] = ContextVar('playlist_id', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)


class SecretMasker:
    """Masks sensitive information in log messages."""
    
    def __init__(self):
        """Initialize secret masker with patterns."""
        self.patterns = [
            # key=value / key: value style secrets
            r'(?i)(token|secret|password|pw|api_key|access_token)["\']?[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{6,})["\']?',
            # Emby authorization header values
            r'(?i)(X-Emby-Token|X-Emby-Authorization)["\']?[\s]*[:=][\s]*["\']?([^"\'\s,]{6,})["\']?',
        ]
        self.compiled_patterns = [re.compile(pattern) for pattern in self.patterns]
    
    def mask_secrets(self, text: str) -> str:
        """Mask sensitive information in text."""
        if not text:
            return text
        
        masked_text = text
        for pattern in self.compiled_patterns:
            def replace_match(match):
                prefix = match.group(1)
                secret = match.group(2)
                # Keep first 4 and last 4 characters, mask the rest
                if len(secret) > 8:
                    masked_secret = secret[:4] + '*' * (len(secret) - 8) + secret[-4:]
                else:
                    masked_secret = '*' * len(secret)
                return f"{prefix}={masked_secret}"
            
            masked_text = pattern.sub(replace_match, masked_text)
        
        return masked_text
    
    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask sensitive information in dictionary."""
        if not data:
            return data
        
        masked_data = {}
        for key, value in data.items():
            if isinstance(value, str):
                if key.lower() in ('password', 'token', 'access_token', 'api_key'):
                    masked_data[key] = '*' * len(value)
                else:
                    masked_data[key] = self.mask_secrets(value)
            elif isinstance(value, dict):
                masked_data[key] = self.mask_dict(value)
            elif isinstance(value, list):
                masked_data[key] = [self.mask_dict(item) if isinstance(item, dict)
                                    else self.mask_secrets(item) if isinstance(item, str)
                                    else item for item in value]
            else:
                masked_data[key] = value
        
        return masked_data


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""
    
    def __init__(self):
        super().__init__()
        self.masker = SecretMasker()
    
    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': self.masker.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }
        
        run_id = run_id_var.get()
        playlist_id = playlist_id_var.get()
        stage = stage_var.get()
        if run_id:
            log_entry['runId'] = run_id
        if playlist_id:
            log_entry['playlistId'] = playlist_id
        if stage:
            log_entry['stage'] = stage
        
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)
        
        if getattr(record, 'fields', None):
            log_entry['fields'] = self.masker.mask_dict(record.fields)
        
        return json.dumps(log_entry, ensure_ascii=False)


class CorrelationContext:
    """Context manager for correlation data."""
    
    def __init__(self, run_id: Optional[str] = None,
                 playlist_id: Optional[str] = None,
                 stage: Optional[str] = None):
        self.run_id = run_id
        self.playlist_id = playlist_id
        self.stage = stage
        self._tokens = []
    
    def __enter__(self):
        if self.run_id is not None:
            self._tokens.append((run_id_var, run_id_var.set(self.run_id)))
        if self.playlist_id is not None:
            self._tokens.append((playlist_id_var, playlist_id_var.set(self.playlist_id)))
        if self.stage is not None:
            self._tokens.append((stage_var, stage_var.set(self.stage)))
        return self
    
    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None) -> logging.Logger:
    """Setup structured logging on the package root logger."""
    logger = logging.getLogger('embybridge')
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()
    
    formatter = StructuredFormatter()
    
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    
    return logger


def get_logger(name: str = 'embybridge') -> logging.Logger:
    """Get logger with structured formatting."""
    return logging.getLogger(name)


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None, **kwargs):
    """Log message with additional fields."""
    merged = dict(fields or {})
    merged.update(kwargs)
    logger.log(getattr(logging, level.upper()), message, extra={'fields': merged})


def log_import_start(logger: logging.Logger, run_id: str, reference: str, **kwargs):
    """Log import start."""
    with CorrelationContext(run_id=run_id, stage='start'):
        log_with_fields(logger, 'INFO', 'Import started', {'reference': reference, **kwargs})


def log_import_complete(logger: logging.Logger, run_id: str, playlist_id: str,
                        total_tracks: int, matched_tracks: int, **kwargs):
    """Log import completion."""
    with CorrelationContext(run_id=run_id, playlist_id=playlist_id, stage='done'):
        log_with_fields(logger, 'INFO', 'Import completed', {
            'total_tracks': total_tracks,
            'matched_tracks': matched_tracks,
            **kwargs
        })


def log_error(logger: logging.Logger, message: str, error: Exception, **kwargs):
    """Log error with exception details."""
    logger.error(message, exc_info=error, extra={'fields': {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **kwargs
    }})
