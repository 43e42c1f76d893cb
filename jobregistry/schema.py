from typing import Any, Dict, List

from .states import TargetType, target_type_of

REQUIRED_STR_FIELDS = ["job_class", "target_type", "target_id"]
OPTIONAL_STR_FIELDS = [
    "id",
    "job_group",
    "principal_name",
]


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _valid_target_type(v: Any) -> bool:
    try:
        target_type_of(v)
        return True
    except ValueError:
        return False


def validate_job(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    """
    errors: List[str] = []

    for f in REQUIRED_STR_FIELDS:
        value = data.get(f)
        if value is None:
            errors.append(f"Missing required field: {f}")
        elif isinstance(value, TargetType):
            continue
        elif not _is_non_empty_str(value):
            errors.append(f"Field '{f}' must be a non-empty string")

    target_type = data.get("target_type")
    if _is_non_empty_str(target_type) and not _valid_target_type(target_type):
        allowed = ", ".join(t.value for t in TargetType)
        errors.append(f"Field 'target_type' must be one of: {allowed}")

    for f in OPTIONAL_STR_FIELDS:
        if data.get(f) is not None and not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string if provided")

    return errors
