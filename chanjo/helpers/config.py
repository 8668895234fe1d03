from os import environ

import yaml
from dotenv import find_dotenv
from pydantic import ValidationError

from chanjo.helpers.config_models.root import RootModel

_CONFIG_ENV = "CONFIG_JSON"
_CONFIG_FILE = "config.yaml"


def load_config() -> RootModel:
    """
    Load the application config.

    JSON from the `CONFIG_JSON` env var wins, then `config.yaml` searched from the working directory upwards. Logging depends on the config, thus the prints.
    """
    raw_json = environ.get(_CONFIG_ENV)
    if raw_json:
        print(f'Config loaded from env "{_CONFIG_ENV}"')  # noqa: T201
        return RootModel.model_validate_json(raw_json)

    path = find_dotenv(
        filename=_CONFIG_FILE,
        usecwd=True,
    )
    if not path:
        raise ValueError(
            f'Cannot find config, set env "{_CONFIG_ENV}" or create "{_CONFIG_FILE}"'
        )

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    print(f'Config loaded from file "{path}"')  # noqa: T201
    return RootModel.model_validate(data)


def _format_errors(e: ValidationError) -> str:
    lines = [
        f"{i}. {'.'.join(map(str, error['loc']))}: {error['msg']} (got {error['input']!r})"
        for i, error in enumerate(e.errors(), start=1)
    ]
    return "\n".join(["Config values are not valid:", *lines])


try:
    CONFIG = load_config()
except ValidationError as e:
    raise ValueError(_format_errors(e)) from e
