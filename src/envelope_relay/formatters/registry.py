"""
Formatter lookup by name.
"""

from envelope_relay.errors import UnknownFormatError
from envelope_relay.formatters.base import FormatterFamily
from envelope_relay.formatters.human import HumanFormatter
from envelope_relay.formatters.logfmt import LogfmtFormatter
from envelope_relay.formatters.markdown import MarkdownFormatter
from envelope_relay.formatters.structured import JsonFormatter

FORMATTERS: dict[str, type[FormatterFamily]] = {
    "md": MarkdownFormatter,
    "logfmt": LogfmtFormatter,
    "json": JsonFormatter,
    "human": HumanFormatter,
}

AVAILABLE_FORMATTERS = list(FORMATTERS)


def get_formatter(name: str, color: bool = False) -> FormatterFamily:
    """Instantiate the family called `name`. Only `human` uses `color`."""
    family = FORMATTERS.get(name)
    if family is None:
        raise UnknownFormatError(name, AVAILABLE_FORMATTERS)
    if family is HumanFormatter:
        return HumanFormatter(color=color)
    return family()
