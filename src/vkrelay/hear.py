"""
Text matching middleware.
"""

from __future__ import annotations

import re
import typing as t

from vkrelay.composer import Middleware, NextMiddleware, maybe_await

if t.TYPE_CHECKING:
    from vkrelay.contexts import Context

ConditionFunction = t.Callable[[t.Optional[str], "Context"], t.Any]
Condition = t.Union[str, re.Pattern[str], ConditionFunction]
MatchMode = t.Literal["all", "any"]

_Checker = t.Callable[[t.Optional[str], "Context"], t.Awaitable[tuple[bool, t.Optional[re.Match[str]]]]]


def _build_checker(condition: Condition) -> tuple[_Checker, bool]:
    """
    Turn a condition into an async checker.

    Parameters
    ----------
    condition : Condition
        Exact string, compiled regular expression or predicate.

    Returns
    -------
    tuple[_Checker, bool]
        The checker and whether the condition needs message text.
    """
    if isinstance(condition, str):

        async def check_text(text: str | None, context: "Context") -> tuple[bool, None]:
            return text == condition, None

        return check_text, True

    if isinstance(condition, re.Pattern):

        async def check_pattern(
            text: str | None, context: "Context"
        ) -> tuple[bool, re.Match[str] | None]:
            if text is None:
                return False, None
            match = condition.search(text)
            return match is not None, match

        return check_pattern, True

    if callable(condition):

        async def check_predicate(text: str | None, context: "Context") -> tuple[bool, None]:
            return bool(await maybe_await(value=condition(text, context))), None

        return check_predicate, False

    raise TypeError(f"Unsupported hear condition: {condition!r}")


def build_hear_middleware(
    conditions: Condition | t.Sequence[Condition],
    handler: Middleware,
    *,
    match: MatchMode = "all",
) -> Middleware:
    """
    Build a middleware running ``handler`` for matching messages.

    Parameters
    ----------
    conditions : Condition | typing.Sequence[Condition]
        Exact strings, compiled regular expressions or predicates called with
        ``(text, context)``. Predicates may be coroutine functions.
    handler : Middleware
        Middleware called as ``handler(context, next)`` on a match.
    match : {"all", "any"}, optional
        Whether every condition or at least one must match.

    Returns
    -------
    Middleware
        Middleware calling ``next`` for non-message contexts and non-matching
        messages. The last successful regular expression match is stored on
        ``context.match`` before ``handler`` runs.

    Raises
    ------
    ValueError
        If no condition is given.
    """
    if isinstance(conditions, (str, re.Pattern)) or callable(conditions):
        conditions = [conditions]
    checkers = [_build_checker(condition=condition) for condition in conditions]
    if not checkers:
        raise ValueError("build_hear_middleware() requires at least one condition")
    needs_text = any(needs for _, needs in checkers)
    require_all = match == "all"

    async def hear_middleware(context: "Context", next_: NextMiddleware) -> t.Any:
        text = getattr(context, "text", None)
        if not context.is_("message") or (needs_text and not text):
            return await next_()

        matched = require_all
        last_match: re.Match[str] | None = None
        for checker, _ in checkers:
            ok, found = await checker(text, context)
            if found is not None:
                last_match = found
            if ok and not require_all:
                matched = True
                break
            if not ok and require_all:
                matched = False
                break

        if not matched:
            return await next_()
        if last_match is not None:
            context.match = last_match  # type: ignore[attr-defined]
        return await maybe_await(value=handler(context, next_))

    return hear_middleware
