"""Read-only queries against copies of Rancher's VAI informer cache (SQLite)."""
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import List, Union
from urllib.parse import quote

CACHE_FILE_NAME = "informer_object_cache.db"
NAMESPACE_FIELDS_TABLE = "_v1_Namespace_fields"
NAME_COLUMN = "metadata.name"

PathLike = Union[str, Path]


def is_usable_db(path: PathLike) -> bool:
    """A copied cache is only worth querying if it exists and is not empty."""
    file_path = Path(path)
    return file_path.is_file() and file_path.stat().st_size > 0


def _connect_read_only(db_path: PathLike) -> sqlite3.Connection:
    uri = f"file:{quote(str(Path(db_path).resolve()))}?mode=ro"
    return sqlite3.connect(uri, uri=True)


def find_namespaces(db_path: PathLike, name: str, exact: bool = False) -> List[str]:
    """
    Return the namespace names in the cache matching `name`.

    Args:
        db_path: Local copy of the cache database
        name: Namespace name, or a fragment of it unless `exact` is set
        exact: Match the whole name instead of a substring

    Raises:
        RuntimeError: If the database cannot be opened or queried
    """
    if exact:
        condition, parameter = "=", name
    else:
        condition, parameter = "LIKE", f"%{name}%"
    query = (
        f'SELECT "{NAME_COLUMN}" FROM "{NAMESPACE_FIELDS_TABLE}" '
        f'WHERE "{NAME_COLUMN}" {condition} ?'
    )

    try:
        with closing(_connect_read_only(db_path)) as conn:
            rows = conn.execute(query, (parameter,)).fetchall()
    except sqlite3.Error as e:
        raise RuntimeError(f"Failed to query {db_path}: {e}") from e
    return [row[0] for row in rows]
