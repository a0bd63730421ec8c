"""
Interface to create models loaded from .yaml files.
"""

from pathlib import Path
from typing import Self

import yaml
from pydantic import BaseModel

__all__ = [
    "BaseYamlModel",
]


class BaseYamlModel(BaseModel):
    """
    Base pydantic model which validates the contents of a .yaml file.
    """

    @classmethod
    def load_yaml(cls, file: Path) -> Self:
        """
        Load model from .yaml file. An empty file yields the model's defaults.
        """
        with file.open(encoding="utf-8") as fh:
            model = yaml.safe_load(fh)

        if model is None:
            model = {}
        elif not isinstance(model, dict):
            raise ValueError(f"Expected a mapping in {file}, got: {model!r}")

        return cls.model_validate(model)
