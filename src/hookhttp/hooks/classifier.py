"""Error classification for error hooks.

:class:`ErrorClassifier` maps an exception to an :class:`ErrorCategory`
using an ordered list of declared :class:`ClassifierRule` objects. A rule
matches on exception type, on :attr:`HookHttpError.code`, on an HTTP status
range, or on a compiled regular expression searched in the error message.
The first matching rule wins; unmatched errors are ``UNKNOWN``.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Optional, Union

from hookhttp.exceptions import HookHttpError, TransportError


class ErrorCategory(str, enum.Enum):
    """Coarse error categories reported by :class:`ErrorClassifier`."""

    CONNECTION = "connection"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    ENCODING = "encoding"
    HOOK_ABORTED = "hook_aborted"
    VALIDATION = "validation"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClassifierRule:
    """One declared classification rule.

    All configured criteria must hold for the rule to match.

    Attributes:
        category: Category reported when the rule matches.
        types: Exception classes the error must be an instance of.
        codes: Accepted :attr:`HookHttpError.code` values.
        status_range: Inclusive ``(low, high)`` range for
            :attr:`TransportError.status_code`.
        pattern: Compiled regular expression searched in ``str(error)``.
    """

    category: ErrorCategory
    types: tuple[type[BaseException], ...] = ()
    codes: frozenset[str] = field(default_factory=frozenset)
    status_range: Optional[tuple[int, int]] = None
    pattern: Optional[re.Pattern[str]] = None

    def matches(self, error: BaseException) -> bool:
        if self.types and not isinstance(error, self.types):
            return False
        if self.codes:
            if not isinstance(error, HookHttpError):
                return False
            if error.code not in self.codes and error.root_code not in self.codes:
                return False
        if self.status_range is not None:
            status = getattr(error, "status_code", None)
            if status is None or not self.status_range[0] <= status <= self.status_range[1]:
                return False
        if self.pattern is not None and not self.pattern.search(str(error)):
            return False
        return True


def _rx(expr: str) -> re.Pattern[str]:
    return re.compile(expr, re.IGNORECASE)


DEFAULT_RULES: tuple[ClassifierRule, ...] = (
    ClassifierRule(ErrorCategory.CANCELLED, codes=frozenset({"cancelled"})),
    ClassifierRule(ErrorCategory.HOOK_ABORTED, codes=frozenset({"hook_aborted"})),
    ClassifierRule(ErrorCategory.VALIDATION, codes=frozenset({"validation"})),
    ClassifierRule(ErrorCategory.ENCODING, codes=frozenset({"encoding"})),
    ClassifierRule(ErrorCategory.CLIENT_ERROR, types=(TransportError,), status_range=(400, 499)),
    ClassifierRule(ErrorCategory.SERVER_ERROR, types=(TransportError,), status_range=(500, 599)),
    ClassifierRule(ErrorCategory.TIMEOUT, types=(TimeoutError,)),
    ClassifierRule(ErrorCategory.TIMEOUT, pattern=_rx(r"\b(timed?\s*out|timeout|deadline exceeded)\b")),
    ClassifierRule(ErrorCategory.CONNECTION, types=(ConnectionError,)),
    ClassifierRule(
        ErrorCategory.CONNECTION,
        pattern=_rx(r"\b(connection|connect|refused|reset|unreachable|name resolution|dns)\b"),
    ),
)


class ErrorClassifier:
    """Classify errors with an ordered list of declared rules.

    Args:
        rules: Rules to use instead of :data:`DEFAULT_RULES`.

    Example::

        classifier = ErrorClassifier()
        classifier.add_rule(ClassifierRule(ErrorCategory.SERVER_ERROR, pattern=re.compile("overloaded")))
        classifier.classify(err)
    """

    def __init__(self, rules: Optional[list[ClassifierRule]] = None) -> None:
        self._rules: list[ClassifierRule] = list(DEFAULT_RULES if rules is None else rules)

    @property
    def rules(self) -> list[ClassifierRule]:
        return list(self._rules)

    def add_rule(self, rule: ClassifierRule, *, first: bool = True) -> None:
        """Add *rule*, by default ahead of the existing rules."""
        if first:
            self._rules.insert(0, rule)
        else:
            self._rules.append(rule)

    def add_pattern(
        self, category: ErrorCategory, pattern: Union[str, re.Pattern[str]]
    ) -> None:
        """Shortcut for a message-pattern rule evaluated before the existing ones."""
        compiled = _rx(pattern) if isinstance(pattern, str) else pattern
        self.add_rule(ClassifierRule(category, pattern=compiled))

    def classify(self, error: BaseException) -> ErrorCategory:
        for rule in self._rules:
            if rule.matches(error):
                return rule.category
        return ErrorCategory.UNKNOWN
