from __future__ import annotations

from pathlib import Path
from typing import List, Union

from .errors import ClassNamesError


def load_class_names(names_path: Union[str, Path]) -> List[str]:
    """
    Load class names from a Darknet-style `.names` file.

    One name per line, index = class id:

        person
        bicycle
        car
        ...

    Blank lines are kept so later ids do not shift.
    """

    path = Path(names_path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return [raw.rstrip("\r\n") for raw in f]
    except OSError as exc:
        raise ClassNamesError(f"Could not read class names: {path}") from exc
