import json
import re
from pathlib import Path
from typing import Any, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from railvss.core.exceptions import ImportExportError


ModelT = TypeVar("ModelT", bound=BaseModel)

# Edge keys look like "('A', 'B')" so that vss_pos.json stays readable by hand
_EDGE_KEY = re.compile(r"^\('(?P<source>.*)', '(?P<target>.*)'\)$")


def ensure_directory(path: Path) -> Path:
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ImportExportError(f"Could not create directory {path}") from exc
    if not path.is_dir():
        raise ImportExportError(f"Could not create directory {path}")
    return path


def require_directory(path: Path) -> Path:
    path = Path(path)
    if not path.exists():
        raise ImportExportError(f"Path {path} does not exist")
    if not path.is_dir():
        raise ImportExportError(f"Path {path} is not a directory")
    return path


def write_json(path: Path, payload: Any) -> None:
    path = Path(path)
    ensure_directory(path.parent)
    with path.open("w", encoding="utf-8") as f:
        f.write(json.dumps(payload, ensure_ascii=False) + "\n")


def read_json(path: Path) -> Any:
    path = Path(path)
    if not path.is_file():
        raise ImportExportError(f"File {path} does not exist")
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ImportExportError(f"File {path} is not valid JSON: {exc}") from exc


def read_model(path: Path, model: Type[ModelT]) -> ModelT:
    """Read a JSON file and validate it against a pydantic schema."""
    data = read_json(path)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ImportExportError(f"File {path} has unexpected content: {exc}") from exc


def write_model(path: Path, record: BaseModel) -> None:
    write_json(path, record.model_dump(mode="json"))


def edge_key(source: str, target: str) -> str:
    return f"('{source}', '{target}')"


def parse_edge_key(key: str) -> Tuple[str, str]:
    match = _EDGE_KEY.match(key)
    if match is None:
        raise ImportExportError(f"Malformed edge key {key!r}")
    return match.group("source"), match.group("target")
