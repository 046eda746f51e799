INJECT_ATTRIBUTE = "__inject__"
"""Attribute holding explicit dependency names on a callable."""

DEFAULT_STRICT_DI = False
"""Whether implicit (parameter-name) annotation is rejected by default."""

ENV_PREFIX = "NAMEWIRE_"
"""Environment variable prefix read by ``NamewireSettings``."""

CHAIN_SEPARATOR = " <- "
