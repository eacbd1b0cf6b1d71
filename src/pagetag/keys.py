"""Cache key derivation.

A cache key identifies one (endpoint, filter signature) pair. The filter
signature is every argument except the pagination fields, with ``None``
values dropped and mapping keys sorted, so ``{"a": 1, "b": 2}`` and
``{"b": 2, "a": 1, "page": 3}`` land on the same entry.
"""

import json
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pagetag.errors import KeyDerivationError

DEFAULT_PAGE_FIELDS: tuple[str, ...] = ("page", "cursor")

_SCALARS = (str, int, float, bool)


def _canonical(value: Any, path: str) -> Any:
    if value is None or isinstance(value, _SCALARS):
        return value
    if isinstance(value, Enum):
        return _canonical(value.value, path)
    if isinstance(value, Mapping):
        result: dict[str, Any] = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise KeyDerivationError(f"Non-string key {k!r} at {path}")
            if v is None:
                continue
            result[k] = _canonical(v, f"{path}.{k}")
        return result
    if isinstance(value, (list, tuple)):
        return [_canonical(v, f"{path}[{i}]") for i, v in enumerate(value)]
    if callable(value):
        raise KeyDerivationError(f"Callable value at {path} cannot be part of a key")
    raise KeyDerivationError(
        f"Value of type {type(value).__name__} at {path} is not serializable"
    )


def _dumps(value: Any) -> str:
    try:
        return json.dumps(value, sort_keys=True, separators=(",", ":"), allow_nan=False)
    except ValueError as e:
        raise KeyDerivationError(str(e)) from e


def filter_signature(
    args: Any, page_fields: tuple[str, ...] = DEFAULT_PAGE_FIELDS
) -> Any:
    """Canonical form of args without pagination fields."""
    if isinstance(args, Mapping):
        args = {k: v for k, v in args.items() if k not in page_fields}
    return _canonical(args, "args")


def page_args(args: Any, page_fields: tuple[str, ...] = DEFAULT_PAGE_FIELDS) -> dict[str, Any]:
    """The pagination-only subset of args. Present keys are kept even if None."""
    if not isinstance(args, Mapping):
        return {}
    return {k: args[k] for k in page_fields if k in args}


def derive_key(
    endpoint: str, args: Any = None, page_fields: tuple[str, ...] = DEFAULT_PAGE_FIELDS
) -> str:
    """Stable cache key for an endpoint call, ignoring pagination."""
    signature = filter_signature(args, page_fields)
    if signature is None or signature == {}:
        return f"{endpoint}()"
    return f"{endpoint}({_dumps(signature)})"


def args_signature(args: Any, page_fields: tuple[str, ...] = DEFAULT_PAGE_FIELDS) -> str:
    """Signature of the full args, pagination included."""
    signature = filter_signature(args, page_fields)
    pages = _canonical(page_args(args, page_fields), "page")
    return _dumps([signature, pages])


def request_key(
    endpoint: str, args: Any = None, page_fields: tuple[str, ...] = DEFAULT_PAGE_FIELDS
) -> str:
    """Key of one concrete request; two requests coalesce only if these match.

    An absent page, ``page=None`` and ``page=1`` all name the first page.
    """
    pages = _canonical(page_args(args, page_fields), "page")
    if pages.get("page") == 1:
        del pages["page"]
    base = derive_key(endpoint, args, page_fields)
    if not pages:
        return base
    return f"{base}#{_dumps(pages)}"


def should_force_refetch(
    previous_args: Any,
    next_args: Any,
    page_fields: tuple[str, ...] = DEFAULT_PAGE_FIELDS,
) -> bool:
    """True when the filter signature changed, False for a pure page advance."""
    before = _dumps(filter_signature(previous_args, page_fields))
    after = _dumps(filter_signature(next_args, page_fields))
    return before != after
