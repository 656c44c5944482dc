"""Parser for ``black --check --diff`` output."""

import re
from typing import Dict, List

from bastion.data_models import Finding, Severity
from bastion.parsers.base import BaseParser

# "+++ path\t2024-01-01 00:00:00.000000+00:00"
_TARGET_HEADER = re.compile(r"^\+\+\+ (?P<path>\S+)")


class BlackParser(BaseParser):
    """One LOW ``formatting`` finding per file black would reformat."""

    tool_id = "black"

    def parse(self, raw_output: str) -> List[Finding]:
        if raw_output is None:
            return []
        if not isinstance(raw_output, str):
            raise self.fail(f"unexpected output type: {type(raw_output)}")

        changed: Dict[str, int] = {}
        current = None
        for line in raw_output.splitlines():
            header = _TARGET_HEADER.match(line)
            if header:
                current = header.group("path")
                changed.setdefault(current, 0)
                continue
            if line.startswith("--- "):
                continue
            if current and line[:1] in ("+", "-"):
                changed[current] += 1

        return [
            Finding(
                source=self.tool_id,
                severity=Severity.LOW,
                category="formatting",
                message=f"would reformat ({count} changed line(s))",
                location=path,
            )
            for path, count in changed.items()
        ]
