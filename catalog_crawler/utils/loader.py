from __future__ import annotations

import ast
import importlib
import keyword
import re
from typing import Any, Callable, Dict, Optional

from RestrictedPython import compile_restricted, safe_globals
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)

from ..errors import ConfigError

# "package.module:function" (a plugin) rather than inline source.
_DOTTED = re.compile(r"^[A-Za-z_][\w.]*:[A-Za-z_]\w*$")

# Pure helpers on top of RestrictedPython's safe builtins.
_EXTRA_BUILTINS = {
    "all": all, "any": any, "dict": dict, "enumerate": enumerate, "filter": filter,
    "list": list, "map": map, "max": max, "min": min, "reversed": reversed,
    "set": set, "sum": sum,
}


def load_symbol(dotted: str) -> Any:
    """
    Load a class or function from a dotted path.
    Supports both "package.module:ClassName" and "package.module.ClassName".
    """
    if ":" in dotted:
        module_name, symbol_name = dotted.split(":", 1)
    else:
        module_name, symbol_name = dotted.rsplit(".", 1)

    module = importlib.import_module(module_name)
    return getattr(module, symbol_name)


def load_extension(source: Optional[str]) -> Optional[Callable[..., Any]]:
    """
    Turn the configured extend-output function into a callable.

    ``source`` is either a dotted "module:function" path, a single Python
    expression such as ``lambda doc: {"brand": doc.select_one(".brand").get_text()}``,
    or a block of code defining exactly one function. Inline code is compiled
    with RestrictedPython: underscore names and attributes are rejected and
    there is no ``__import__``. It receives the parsed page and must return a mapping.
    """
    if source is None or not source.strip():
        return None
    source = source.strip()

    if _DOTTED.match(source) and not keyword.iskeyword(source.split(".", 1)[0].split(":", 1)[0]):
        try:
            fn = load_symbol(source)
        except (ImportError, AttributeError) as exc:
            raise ConfigError(f"Cannot load extend_output_function {source!r}: {exc}") from exc
    else:
        fn = _evaluate(source)

    if not callable(fn):
        raise ConfigError("extend_output_function is not a function! Please fix it or use just default output!")
    return fn


def _restricted_namespace() -> Dict[str, Any]:
    namespace = dict(safe_globals)
    namespace["__builtins__"] = {**safe_globals["__builtins__"], **_EXTRA_BUILTINS}
    namespace.update(
        _getattr_=safer_getattr,
        _getitem_=default_guarded_getitem,
        _getiter_=default_guarded_getiter,
        _iter_unpack_sequence_=guarded_iter_unpack_sequence,
        _unpack_sequence_=guarded_unpack_sequence,
        _write_=full_write_guard,
    )
    return namespace


def _is_expression(source: str) -> bool:
    try:
        ast.parse(source, mode="eval")
    except SyntaxError:
        return False
    return True


def _evaluate(source: str) -> Any:
    namespace = _restricted_namespace()
    seeded = set(namespace)
    mode = "eval" if _is_expression(source) else "exec"

    try:
        code = compile_restricted(source, "<extend_output_function>", mode)
    except SyntaxError as exc:
        raise ConfigError(f"'extend_output_function' is not valid Python! Error: {exc}") from exc

    try:
        if mode == "eval":
            return eval(code, namespace)
        exec(code, namespace)
    except Exception as exc:
        raise ConfigError(f"'extend_output_function' failed to evaluate! Error: {exc!r}") from exc

    defined = [v for k, v in namespace.items() if k not in seeded and callable(v)]
    if len(defined) != 1:
        raise ConfigError(
            f"extend_output_function must define exactly one function, found {len(defined)}."
        )
    return defined[0]
