"""Comma-separated tag strings."""


def split_tags(tags: str) -> list[str]:
    """Split a tag string into trimmed, non-empty tags."""
    return [tag.strip() for tag in (tags or "").split(",") if tag.strip()]


def merge_tags(existing: str, incoming: str) -> str:
    """Order-preserving, case-sensitive union of two tag strings."""
    merged = []
    for tag in split_tags(existing) + split_tags(incoming):
        if tag not in merged:
            merged.append(tag)
    return ",".join(merged)
