from .text import parse_json_response, strip_code_fences, truncate_text
from .logger import setup_logger

__all__ = [
    "parse_json_response",
    "strip_code_fences",
    "truncate_text",
    "setup_logger",
]
