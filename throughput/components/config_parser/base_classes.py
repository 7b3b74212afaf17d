import logging
import os
from dataclasses import MISSING, fields, is_dataclass
from typing import Any, Optional

from ..logs import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off", ""}
SECRETS = ("password", "token")


def _coerce(field_type: type, value: Any) -> Any:
    if value is None:
        return None
    if field_type is bool and isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUTHY:
            return True
        if lowered in FALSY:
            return False
        raise ValueError(f"Cannot interpret '{value}' as a boolean")
    if field_type is list and isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return field_type(value)


class ExplicitParams:
    """
    Base for configuration sections. Subclasses are `@dataclass(init=False)` whose fields
    carry defaults; keys present in `data` override them, coerced to the annotated type.
    Nested sections are dataclasses themselves.
    """

    def __init__(self, data: Optional[dict] = None):
        if data is None:
            data = {}

        if not isinstance(data, dict):
            raise TypeError(f"{self.__class__.__name__} expects a mapping, got {type(data)}")

        for f in fields(self):
            field_type = f.type

            if is_dataclass(field_type):
                setattr(self, f.name, field_type(data.get(f.name) or {}))
                continue

            if f.name not in data:
                if f.default_factory is not MISSING:
                    setattr(self, f.name, f.default_factory())
                continue

            try:
                value = _coerce(field_type, data[f.name])
            except (TypeError, ValueError) as err:
                raise ValueError(
                    f"{self.__class__.__name__}.{f.name}: invalid value {data[f.name]!r}"
                ) from err

            setattr(self, f.name, value)

        unknown = set(data) - {f.name for f in fields(self)}
        if unknown:
            logger.warning(
                "Ignoring unknown configuration keys",
                {"section": self.__class__.__name__, "keys": sorted(unknown)},
            )

    def as_dict(self):
        result = {}
        for f in fields(self):
            if not hasattr(self, f.name):
                continue

            v = getattr(self, f.name)

            if is_dataclass(v):
                result[f.name] = v.as_dict()
            else:
                result[f.name] = v
        return result

    def set_attribute_from_env(self, attribute: str, env_var: str) -> bool:
        """
        Set the value of an attribute from an environment variable.
        """
        cls_name = self.__class__.__name__
        if not hasattr(self, attribute):
            raise AttributeError(f"{cls_name} has no attribute '{attribute}'")

        if value := os.getenv(env_var):
            setattr(self, attribute, value)
            logger.debug(f"{env_var} key loaded to {cls_name}.{attribute}")
            return True

        if getattr(self, attribute) is None:
            logger.debug(f"{env_var} key not found, {cls_name}.{attribute} left unset")
        else:
            logger.debug(f"{env_var} key not found, using configured {cls_name}.{attribute}")
        return False

    def __repr__(self):
        key_pair_string: str = ", ".join(
            [
                f"{key}={value}"
                for key, value in vars(self).items()
                if not any(secret in key for secret in SECRETS)
            ]
        )
        return f"{self.__class__.__name__}({key_pair_string})"
