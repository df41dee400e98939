from __future__ import annotations

import importlib.util

from .constants import QRCODE_URL


def qrcode_url(uuid: str) -> str:
    return QRCODE_URL + uuid


def login_url(uuid: str) -> str:
    """Text encoded in the login QR code."""

    return f"https://login.weixin.qq.com/l/{uuid}"


def has_qrcode() -> bool:
    return importlib.util.find_spec("qrcode") is not None


def print_qrcode_url(uuid: str) -> None:
    """
    Print where to find the login QR code.

    With the `qr` extra installed the code is also drawn in the terminal.
    """

    print(f"visit the url below to scan the login qr code:\n{qrcode_url(uuid)}")
    if not has_qrcode():
        return
    import qrcode  # optional extra

    qr = qrcode.QRCode(border=1)
    qr.add_data(login_url(uuid))
    qr.make(fit=True)
    qr.print_ascii(invert=True)
