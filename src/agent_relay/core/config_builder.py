# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""Configuration builder layering defaults, environment and command-line overrides."""

from argparse import ArgumentParser
from collections.abc import Sequence
from typing import Any, get_args, get_origin

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_relay.core import config as config_module
from agent_relay.core.config import Config

ENV_PREFIX = "AGENT_RELAY_"


class EnvConfig(BaseSettings, Config):
    """Config whose defaults can be overridden by AGENT_RELAY_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX, env_nested_delimiter="__", extra="ignore"
    )


def _add_model_arguments(parser: ArgumentParser, model: type[BaseModel], prefix: str = "") -> None:
    """Recursively add arguments for all fields in a Pydantic model."""
    for field_name, field_info in model.model_fields.items():
        arg_name = f"{prefix}.{field_name}" if prefix else field_name
        # argparse would turn dots into underscores; keep the nesting recoverable
        dest_name = arg_name.replace(".", "__")
        field_type = field_info.annotation
        help_text = f"{field_info.description or field_name} (default: {field_info.default})"

        if isinstance(field_type, type) and issubclass(field_type, BaseModel):
            _add_model_arguments(parser, field_type, arg_name)
            continue

        if get_origin(field_type) is list:
            item_type = (get_args(field_type) or (str,))[0]
            parser.add_argument(
                f"--{arg_name}", type=item_type, nargs="*", dest=dest_name, default=None,
                help=help_text,
            )
            continue

        if field_type is bool:
            parser.add_argument(
                f"--{arg_name}", action="store_true", dest=dest_name, default=None,
                help=help_text,
            )
            parser.add_argument(
                f"--no-{arg_name}", action="store_false", dest=dest_name,
                help=f"Disable {field_name}",
            )
        else:
            arg_type = {int: int, float: float}.get(field_type, str)  # type: ignore[arg-type]
            parser.add_argument(
                f"--{arg_name}", type=arg_type, dest=dest_name, default=None, help=help_text,
            )


def _flat_to_nested_dict(
    flat: dict[str, Any], model: type[BaseModel], prefix: str = ""
) -> dict[str, Any]:
    """Convert a flat argparse namespace dict to a nested dict matching the model."""
    nested: dict[str, Any] = {}
    for field_name, field_info in model.model_fields.items():
        arg_key = f"{prefix}__{field_name}" if prefix else field_name
        field_type = field_info.annotation
        if isinstance(field_type, type) and issubclass(field_type, BaseModel):
            nested_dict = _flat_to_nested_dict(flat, field_type, arg_key)
            if nested_dict:
                nested[field_name] = nested_dict
        elif flat.get(arg_key) is not None:
            nested[field_name] = flat[arg_key]
    return nested


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = base.copy()
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _merge(result[k], v)
        else:
            result[k] = v
    return result


def add_config_arguments(parser: ArgumentParser) -> None:
    """Register one command-line flag per config field on ``parser``.

    Args:
        parser: The parser to extend, e.g. to render a complete ``--help``.
    """
    _add_model_arguments(parser, Config)


def build_config(argv: Sequence[str] | None = None) -> Config:
    """Build the relay config and install it as ``DEFAULT_CONFIG``.

    Defaults come from the Pydantic models, are overridden by ``AGENT_RELAY_*``
    environment variables (``__`` separates nested sections), and finally by
    command-line flags such as ``--server.port 8080``. Unknown arguments are
    ignored so that the caller can parse its own flags from the same argv.

    Args:
        argv: Command-line arguments, without the program name. Defaults to sys.argv.

    Returns:
        Config: The validated configuration.
    """
    parser = ArgumentParser(description="Agent relay configuration", add_help=False)
    add_config_arguments(parser)
    parsed_args, _ = parser.parse_known_args(argv)
    overrides = _flat_to_nested_dict(vars(parsed_args), Config)

    defaults = EnvConfig().model_dump()
    config = Config.model_validate(_merge(defaults, overrides))
    config_module.DEFAULT_CONFIG = config
    return config
