import fnmatch
import hashlib
import os
from typing import Iterable, List


def mkdir(folder: str):
    if not os.path.exists(folder):
        os.makedirs(folder, exist_ok=True)


def save_file(file, content, append=False):
    mode = "a" if append else "w+"
    if not isinstance(content, str):
        mode = mode + "b"
    mkdir(os.path.dirname(os.path.abspath(file)))
    with open(file, mode) as f:
        f.write(content)
        f.flush()


def is_ignored(path: str, ignore: Iterable[str]) -> bool:
    """
    Whether any component of the given path matches one of the glob patterns in ``ignore``. Patterns are
    matched against single path components, so ``target`` ignores every ``target`` directory in the tree.
    """
    parts = os.path.normpath(path).split(os.sep)
    for part in parts:
        if not part:
            continue
        for pattern in ignore:
            if fnmatch.fnmatch(part, pattern):
                return True
    return False


def list_files(root: str, ignore: Iterable[str] = ()) -> List[str]:
    """Returns the sorted list of files below ``root``, skipping ignored files and directories."""
    ignore = list(ignore)
    if os.path.isfile(root):
        return [root]
    result = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if not is_ignored(d, ignore)]
        for filename in filenames:
            if is_ignored(filename, ignore):
                continue
            result.append(os.path.join(dirpath, filename))
    return sorted(result)


def fingerprint(paths: Iterable[str], ignore: Iterable[str] = ()) -> str:
    """
    Computes a cheap fingerprint of the files below the given paths, based on relative file names, sizes and
    modification times. Two calls return the same value as long as no file was added, removed or touched.
    """
    ignore = list(ignore)
    digest = hashlib.sha256()
    for root in sorted(set(paths)):
        for file_path in list_files(root, ignore):
            try:
                stat = os.stat(file_path)
            except FileNotFoundError:
                continue
            digest.update(f"{file_path}:{stat.st_size}:{stat.st_mtime_ns}\n".encode("utf-8"))
    return digest.hexdigest()
