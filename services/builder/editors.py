"""Config editor validation and form parsing."""

import logging
from typing import Any, Dict, Tuple, Union
from pydantic import BaseModel, ValidationError
from services.builder import config_rules
from services.builder.registry import get_node_spec
from shared.exceptions import ConfigValidationError
from shared.types import NodeType


def _pydantic_errors(exc: ValidationError) -> Dict[str, str]:
    errors = {}
    for error in exc.errors():
        key = ".".join(str(part) for part in error["loc"]) or "config"
        errors.setdefault(key, error["msg"])
    return errors


def parse_config(node_type, config: Union[BaseModel, Dict[str, Any], None]) -> BaseModel:
    """Parses a raw config dict into the node kind's model."""
    spec = get_node_spec(node_type)
    if isinstance(config, spec.config_model):
        return config
    if isinstance(config, BaseModel):
        config = config.model_dump(by_alias=True, exclude_none=True)
    try:
        return spec.config_model.model_validate(config or {})
    except ValidationError as e:
        raise ConfigValidationError(f"Invalid {spec.type.value} config", _pydantic_errors(e))


def validate_config(
    node_type,
    label: str,
    config: Union[BaseModel, Dict[str, Any]],
    check_split_percentages: bool = True,
) -> Dict[str, str]:
    """Returns ``{field: message}`` for every rule the node violates."""
    errors = {}
    if not (label or "").strip():
        errors["label"] = "Label is required"

    try:
        parsed = parse_config(node_type, config)
    except ConfigValidationError as e:
        errors.update(e.errors)
        return errors

    if NodeType(node_type) == NodeType.SPLIT:
        errors.update(config_rules.split_rules(parsed, check_percentages=check_split_percentages))
    else:
        errors.update(get_node_spec(node_type).validate(parsed))
    return errors


def build_config(node_type, form: Dict[str, Any]) -> Tuple[str, BaseModel]:
    """Parses an editor form ``{"label": ..., **config}`` into ``(label, config)``.

    Raises ConfigValidationError carrying every failing field.
    """
    form = dict(form)
    label = str(form.pop("label", "") or "").strip()
    errors = validate_config(node_type, label, form)
    if errors:
        logging.info("Config form rejected", extra={"node_type": NodeType(node_type).value, "fields": sorted(errors)})
        raise ConfigValidationError(f"Invalid {NodeType(node_type).value} configuration", errors)
    return label, parse_config(node_type, form)
