# clinic_console/console/formatting.py
from datetime import timedelta
from typing import Optional


def mask_nik(nik: Optional[str]) -> str:
    """3201234567899001 -> 3201****9001"""
    if not nik:
        return "-"
    if len(nik) <= 8:
        return nik
    return f"{nik[:4]}****{nik[-4:]}"


def format_rupiah(amount: int) -> str:
    """5000 -> 'Rp 5.000'"""
    sign = "-" if amount < 0 else ""
    return f"{sign}Rp {abs(int(amount)):,}".replace(",", ".")


def format_duration(duration: Optional[timedelta]) -> str:
    if duration is None:
        return "-"
    minutes = int(duration.total_seconds() // 60)
    if minutes < 60:
        return f"{minutes} menit"
    hours, minutes = divmod(minutes, 60)
    return f"{hours} jam {minutes} menit" if minutes else f"{hours} jam"
