from pathlib import PurePosixPath


def sanitize_filename(name: str) -> str:
    keep = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789._-")
    return "".join(c if c in keep else "_" for c in name)


def file_extension(name: str) -> str:
    """Lower-cased final extension without the dot, or "" when there is none."""
    suffix = PurePosixPath(name).suffix
    return suffix[1:].lower() if suffix else ""


def stored_name_for(name: str, file_hash: str) -> str:
    """Key-safe internal name: short content hash plus a sanitised original name."""
    return f"{file_hash[:8]}_{sanitize_filename(name)[:200]}"
