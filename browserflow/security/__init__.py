"""
Security components for browserflow.

This module provides secret redaction for logs and validation of navigation
targets.
"""

from .sanitizer import (
    DataSanitizer,
    RedactionMethod,
    SensitiveDataPattern,
    mask_sensitive_data,
    sanitize_dict,
    sanitize_string,
)
from .url_guard import is_private_ip, validate_url

__all__ = [
    # Data sanitization
    "DataSanitizer",
    "SensitiveDataPattern",
    "RedactionMethod",
    "sanitize_dict",
    "sanitize_string",
    "mask_sensitive_data",
    # URL validation
    "is_private_ip",
    "validate_url",
]
