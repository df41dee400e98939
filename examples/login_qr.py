from __future__ import annotations

import asyncio
from pathlib import Path

from pywebwx import Bot, JsonFileHotReloadStorage, Message, print_qrcode_url


async def main() -> None:
    storage = JsonFileHotReloadStorage(Path("./session.json").resolve())

    async with Bot() as bot:
        # Scan the printed code (drawn in the terminal with the `qr` extra installed).
        bot.on("uuid", print_qrcode_url)
        bot.on("scan", lambda _resp: print("scanned, confirm the login on your phone"))

        async def on_message(msg: Message) -> None:
            if msg.is_text() and not msg.is_send_by_self:
                print(f"[rx] {msg.from_user_name}: {msg.content}")
                if msg.content == "ping":
                    await msg.reply_text("pong")

        bot.on("message", on_message)

        # Falls back to a QR scan when there is no usable session dump.
        await bot.hot_login(storage, retry=True)

        me = bot.get_current_user()
        print(f"logged in as {me.nick_name}")

        reason = await bot.block()
        print("session ended:", reason)


if __name__ == "__main__":
    asyncio.run(main())
