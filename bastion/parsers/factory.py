"""Parser registry keyed by tool identity."""

import importlib
import logging
import threading
from typing import Any, Dict, Optional, Type

from bastion.parsers.base import BaseParser
from bastion.parsers.bandit import BanditParser
from bastion.parsers.black import BlackParser
from bastion.parsers.fallback import FallbackParser
from bastion.parsers.gitleaks import GitleaksParser
from bastion.parsers.nikto import NiktoParser
from bastion.parsers.semgrep import SemgrepParser

logger = logging.getLogger(__name__)

# Built-in parser registry
_PARSER_CLASSES: Dict[str, Type[BaseParser]] = {
    "bandit": BanditParser,
    "gitleaks": GitleaksParser,
    "semgrep": SemgrepParser,
    "black": BlackParser,
    "nikto": NiktoParser,
}
_lock = threading.Lock()


def register_parser(parser_id: str, parser_cls: Type[BaseParser]) -> None:
    """Register (or replace) the parser used for ``parser_id``."""
    if not (isinstance(parser_cls, type) and issubclass(parser_cls, BaseParser)):
        raise TypeError(f"{parser_cls!r} is not a BaseParser subclass")
    with _lock:
        _PARSER_CLASSES[parser_id] = parser_cls
    logger.debug(f"Registered parser '{parser_id}' -> {parser_cls.__name__}")


def registered_parsers() -> Dict[str, Type[BaseParser]]:
    with _lock:
        return dict(_PARSER_CLASSES)


def _load_from_path(path: str) -> Optional[Type[BaseParser]]:
    """Dynamically load a parser class from a full dotted path."""
    try:
        module_path, class_name = path.rsplit(".", 1)
        module = importlib.import_module(module_path)
    except (ValueError, ImportError) as e:
        logger.warning(f"Could not import parser '{path}': {e}")
        return None
    klass = getattr(module, class_name, None)
    if isinstance(klass, type) and issubclass(klass, BaseParser):
        return klass
    return None


def get_parser(parser_id: Optional[str], config: Optional[Dict[str, Any]] = None) -> BaseParser:
    """
    Instantiate a parser for the given parser ID.

    Falls back to a parser that always raises ParseError when the ID is
    missing or unknown, so the tool degrades instead of aborting aggregation.
    """
    config = config or {}
    if not parser_id:
        return FallbackParser("unknown", config)

    with _lock:
        parser_cls = _PARSER_CLASSES.get(parser_id)
    if not parser_cls and "." in parser_id:
        # Support fully qualified class path
        parser_cls = _load_from_path(parser_id)

    if not parser_cls:
        return FallbackParser(parser_id, config)

    return parser_cls(config)
