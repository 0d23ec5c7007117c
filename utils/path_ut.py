import re
from pathlib import Path

# Anything the remote store does not accept in a key
_INVALID_KEY_CHARS = re.compile(r"[^a-z0-9._/\-]+")


def normalize_path(rel_path: str) -> str:
    """
    Normalize logical path:
    - remove leading "/"
    - replace "\" -> "/"
    - Trim
    
    Args:
        rel_path: raw path from caller.
        
    Returns:
        valid rel path.
    """
    if not rel_path:
        return ""
    
    clean = rel_path.replace("\\", "/").strip()
    return clean.lstrip("/")


def resolve_key(prefix: str, path: str) -> str:
    """
    Object key for a path inside the optional prefix namespace.
    Empty prefix -> path verbatim, otherwise "prefix/path".
    """
    if not prefix:
        return path
    return f"{prefix}/{path}"


def slugify(path: str, separator: str = "_") -> str:
    """
    Lower-case the path and replace every run of characters invalid in
    a blob key with `separator`. "/" survives, so the hierarchy does too.

    One-way: "My File" and "my-file" may both exist as logical paths, but
    slugify("My File") == slugify("my file"). Callers must resolve every
    later operation through the same slug instead of reversing it.

    Args:
        path: logical path.
        separator: replacement for invalid characters.

    Returns:
        slugged path.
    """
    return _INVALID_KEY_CHARS.sub(separator, path.lower())


def safe_join(base: str, rel_path: str) -> str:
    """
    Safe joins root and rel paths, prevents Path Traversal
    
    Args:
        base: abs path to storage.
        rel_path: rel path from client.
        
    Returns:
        abs path.
        
    Raises:
        PermissionError: abs path is out of base.
    """
    base_path = Path(base).resolve()
    clean_rel = normalize_path(rel_path)
    
    # Use pathlib to join and resolve
    final_path = (base_path / clean_rel).resolve()
    
    # Check if the final path is still inside base_path
    if final_path != base_path and base_path not in final_path.parents:
        raise PermissionError(f"Path traversal detected: {rel_path}")
        
    return str(final_path)
