"""Reference expressions: parsing, traversal and evaluation.

Whole string values of these forms are references, anything else is a
literal:

    module.<module>.<output>
    var.<input>
    resource.<name>.<attribute>
"""

from typing import Any, Callable, Iterator, Optional, Tuple
from .models import Ref

MODULE_PREFIX = "module."
VAR_PREFIX = "var."
RESOURCE_PREFIX = "resource."

UNKNOWN = "(known after apply)"


def parse_reference(value: Any) -> Optional[Tuple[str, ...]]:
    """
    Classify a raw configuration value.
    
    Returns:
        None for literals, otherwise ("module", module, output),
        ("var", input) or ("resource", name, attribute). Malformed
        references are returned as ("invalid", value).
    """
    if not isinstance(value, str):
        return None
    
    if value.startswith(MODULE_PREFIX):
        parts = value.split(".")
        if len(parts) != 3 or not all(parts[1:]):
            return ("invalid", value)
        return ("module", parts[1], parts[2])
    
    if value.startswith(VAR_PREFIX):
        parts = value.split(".")
        if len(parts) != 2 or not parts[1]:
            return ("invalid", value)
        return ("var", parts[1])
    
    if value.startswith(RESOURCE_PREFIX):
        parts = value.split(".", 2)
        if len(parts) != 3 or not all(parts[1:]):
            return ("invalid", value)
        return ("resource", parts[1], parts[2])
    
    return None


def iter_refs(value: Any) -> Iterator[Ref]:
    """Yield every Ref in a resolved value, depth first."""
    if isinstance(value, Ref):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_refs(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_refs(item)


def evaluate(value: Any, lookup: Callable[[Ref], Any]) -> Any:
    """Replace every Ref in a resolved value with lookup(ref)."""
    if isinstance(value, Ref):
        return lookup(value)
    if isinstance(value, dict):
        return {key: evaluate(item, lookup) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [evaluate(item, lookup) for item in value]
    return value


def contains_unknown(value: Any) -> bool:
    """True if an evaluated value still holds a not-yet-known placeholder."""
    if isinstance(value, str):
        return value == UNKNOWN
    if isinstance(value, dict):
        return any(contains_unknown(item) for item in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_unknown(item) for item in value)
    return False
