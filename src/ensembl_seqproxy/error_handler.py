"""Exception taxonomy and error bookkeeping for REST and mapping failures."""

import json
import logging
import threading
import time
import traceback
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import requests


class SeqProxyError(Exception):
    """Base class for all errors raised by this package."""


class NetworkError(SeqProxyError):
    """A request could not be completed (connection, timeout, non-200 status)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RateLimited(NetworkError):
    """The service kept answering 429 after the retry budget was spent."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, status=429)
        self.retry_after = retry_after


class ParseError(SeqProxyError):
    """A response body could not be decoded or had an unexpected shape."""


class ServiceUnavailable(SeqProxyError):
    """The REST domain failed its availability check."""

    def __init__(self, domain: str):
        super().__init__(f"{domain} is not available")
        self.domain = domain


class InvalidMapping(SeqProxyError):
    """Range lists or ratios do not describe a consistent mapping."""


class MixedStrand(SeqProxyError):
    """Identifying features for one accession lie on both strands."""

    def __init__(self, accession: str):
        super().__init__(f"Features for {accession} are on both strands")
        self.accession = accession


class Unmappable(SeqProxyError):
    """Part of a mapping has no image under the mapping it is composed with."""


class FetchError(SeqProxyError):
    """A batch of identifiers could not be retrieved."""

    def __init__(self, message: str, ids: Optional[List[str]] = None):
        super().__init__(message)
        self.ids = list(ids or [])


class ErrorType(Enum):
    NETWORK_TIMEOUT = "network_timeout"
    NETWORK_ERROR = "network_error"
    API_RATE_LIMIT = "api_rate_limit"
    SERVICE_UNAVAILABLE = "service_unavailable"
    PARSE_ERROR = "parse_error"
    MAPPING_ERROR = "mapping_error"
    MIXED_STRAND = "mixed_strand"
    FETCH_ERROR = "fetch_error"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# First match wins, so subclasses come before their bases.
_CLASSIFICATION = (
    (RateLimited, ErrorType.API_RATE_LIMIT),
    (ServiceUnavailable, ErrorType.SERVICE_UNAVAILABLE),
    (requests.Timeout, ErrorType.NETWORK_TIMEOUT),
    (NetworkError, ErrorType.NETWORK_ERROR),
    (requests.RequestException, ErrorType.NETWORK_ERROR),
    (ParseError, ErrorType.PARSE_ERROR),
    (ValueError, ErrorType.PARSE_ERROR),
    (MixedStrand, ErrorType.MIXED_STRAND),
    (InvalidMapping, ErrorType.MAPPING_ERROR),
    (Unmappable, ErrorType.MAPPING_ERROR),
    (FetchError, ErrorType.FETCH_ERROR),
)

_LOG_LEVELS = {
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


@dataclass
class ErrorContext:
    """One demoted failure: what was being done, to which accession, and why it failed."""
    error_type: ErrorType
    severity: ErrorSeverity
    message: str
    timestamp: float
    operation: str
    item_id: Optional[str] = None
    url: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    exception: Optional[Exception] = None
    traceback: Optional[str] = None
    suggestion: Optional[str] = None

    def describe(self) -> str:
        text = f"{self.operation} - {self.error_type.value}: {self.message}"
        if self.item_id:
            text += f" (item: {self.item_id})"
        if self.url:
            text += f" [{self.url}]"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.error_type.value,
            'severity': self.severity.value,
            'message': self.message,
            'operation': self.operation,
            'item': self.item_id,
            'timestamp': datetime.fromtimestamp(self.timestamp).isoformat(),
            'suggestion': self.suggestion,
        }


class ErrorHandler:
    """
    Classifies, logs and records errors that were demoted to partial results.

    Failures that only cost one accession or one chunk are passed here
    instead of propagating. The bounded history feeds the end-of-run summary
    and the optional JSON error report.
    """

    SUGGESTIONS = {
        ErrorType.NETWORK_TIMEOUT: "Request timed out. Try again later or raise the read timeout.",
        ErrorType.API_RATE_LIMIT: "Rate limit reached. Lower requests_per_second or retry later.",
        ErrorType.SERVICE_UNAVAILABLE: "REST service is down. Check https://rest.ensembl.org/info/ping.",
        ErrorType.MIXED_STRAND: "Annotation for this accession is on both strands and was skipped.",
        ErrorType.PARSE_ERROR: "Unexpected response body. The item was skipped.",
    }

    SEVERITIES = {
        ErrorType.UNKNOWN: ErrorSeverity.ERROR,
        ErrorType.SERVICE_UNAVAILABLE: ErrorSeverity.CRITICAL,
    }

    def __init__(self, max_history: int = 1000, logger: Optional[logging.Logger] = None):
        self.max_history = max_history
        self.logger = logger or logging.getLogger('ensembl_seqproxy.error')
        self.error_history: List[ErrorContext] = []
        self._lock = threading.Lock()

    def handle_error(self, error: Exception, operation: str, item_id: Optional[str] = None,
                     url: Optional[str] = None, **details) -> ErrorContext:
        """
        Log ``error`` and append it to the history.

        Args:
            error: The exception being demoted
            operation: What was running when it was raised
            item_id: Accession or query token it concerns
            url: Request URL, when there was one
            **details: Extra context kept on the record

        Returns:
            The recorded ErrorContext
        """
        error_type = self.classify_error(error)
        severity = self.SEVERITIES.get(error_type, ErrorSeverity.WARNING)

        context = ErrorContext(
            error_type=error_type,
            severity=severity,
            message=str(error),
            timestamp=time.time(),
            operation=operation,
            item_id=item_id,
            url=url,
            details=details or None,
            exception=error,
            traceback=traceback.format_exc() if severity == ErrorSeverity.ERROR else None,
            suggestion=self.SUGGESTIONS.get(error_type)
        )
        self._log_error(context)

        with self._lock:
            self.error_history.append(context)
            del self.error_history[:-self.max_history]

        return context

    @staticmethod
    def classify_error(error: Exception) -> ErrorType:
        # a NetworkError raised from a read timeout keeps the timeout type
        if isinstance(error, NetworkError) and isinstance(error.__cause__, requests.Timeout):
            return ErrorType.NETWORK_TIMEOUT
        for exc_type, error_type in _CLASSIFICATION:
            if isinstance(error, exc_type):
                return error_type
        return ErrorType.UNKNOWN

    def _log_error(self, context: ErrorContext):
        self.logger.log(_LOG_LEVELS[context.severity], context.describe())
        if context.traceback:
            self.logger.debug(f"Traceback:\n{context.traceback}")
        if context.suggestion:
            self.logger.debug(f"Suggestion: {context.suggestion}")

    def clear(self):
        with self._lock:
            self.error_history.clear()

    def get_error_summary(self, recent: int = 5) -> Dict[str, Any]:
        """Counts by type and severity plus the last ``recent`` records."""
        with self._lock:
            history = list(self.error_history)

        return {
            'total_errors': len(history),
            'by_type': dict(Counter(e.error_type.value for e in history)),
            'by_severity': dict(Counter(e.severity.value for e in history)),
            'recent_errors': [e.to_dict() for e in history[-recent:]],
        }

    def export_error_report(self, output_file: str):
        report = {'generated': datetime.now().isoformat(), 'summary': self.get_error_summary()}
        with open(output_file, 'w') as f:
            json.dump(report, f, indent=2)
        self.logger.info(f"Error report exported to {output_file}")
