def format_file_size(size: int) -> str:
    """Human readable byte count, e.g. 1.5 MB"""
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(size or 0)
    order = 0
    while value >= 1024 and order < len(units) - 1:
        order += 1
        value /= 1024
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[order]}"
