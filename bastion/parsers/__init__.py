"""Output parsers for heterogeneous tool outputs."""

from bastion.parsers.base import BaseParser, JSONToolParser
from bastion.parsers.bandit import BanditParser
from bastion.parsers.gitleaks import GitleaksParser
from bastion.parsers.semgrep import SemgrepParser
from bastion.parsers.black import BlackParser
from bastion.parsers.nikto import NiktoParser
from bastion.parsers.fallback import FallbackParser
from bastion.parsers.factory import get_parser, register_parser, registered_parsers

__all__ = [
    "BaseParser",
    "JSONToolParser",
    "BanditParser",
    "GitleaksParser",
    "SemgrepParser",
    "BlackParser",
    "NiktoParser",
    "FallbackParser",
    "get_parser",
    "register_parser",
    "registered_parsers",
]
