"""
File system helpers.
"""
from os import path, remove, scandir
from shutil import rmtree


def clear_latest_items(dir_path: str, n_to_keep: int) -> None:
    """
    Delete the oldest entries of ``dir_path`` so that only the ``n_to_keep``
    most recently modified files or folders remain.

    Raises:
        FileNotFoundError: If ``dir_path`` does not exist.
    """
    if not path.exists(dir_path):
        raise FileNotFoundError(f"Path not found: {dir_path}")

    entries = sorted(scandir(dir_path), key=lambda entry: entry.stat().st_mtime)
    for entry in entries[:max(0, len(entries) - n_to_keep)]:
        if entry.is_dir(follow_symlinks=False):
            rmtree(entry.path)
        else:
            remove(entry.path)


def strip_extension(file_name: str) -> str:
    """``orders.2024.csv`` -> ``orders.2024``."""
    base = path.basename(file_name)
    root, _ = path.splitext(base)
    return root
