"""Human-readable receipt codes layered over the numeric receipt sequence"""

from typing import Optional


def format_receipt_code(org_code: Optional[str], number: int, width: int = 4, default_prefix: str = "RCP") -> str:
    """
    Organization code followed by the zero-padded receipt number.

    Example:
        ("QMJS", 7) -> "QMJS0007"
        (None, 12345) -> "RCP12345"  (numbers wider than `width` are not truncated)
    """
    prefix = (org_code or "").strip().upper() or default_prefix
    return f"{prefix}{number:0{width}d}"
