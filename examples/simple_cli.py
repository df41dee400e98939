"""
Simple interactive CLI for pywebwx.

Demonstrates:
- scan, hot and push login with a session dump on disk
- listing friends and groups from the contact cache
- sending text and files, reading incoming messages
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from pywebwx import (
    Bot,
    BotConfig,
    JsonFileHotReloadStorage,
    Message,
    Mode,
    SyncReloadDataLoginOption,
    User,
    WebWxError,
    print_qrcode_url,
)


async def _ainput(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


def _short(s: str | None, n: int = 80) -> str:
    if not s:
        return ""
    return s if len(s) <= n else (s[: n - 3] + "...")


async def _find(bot: Bot, name: str) -> User | None:
    members = await bot.get_current_user().members()
    for search in (members.search_by_remark_name, members.search_by_nick_name):
        found = search(name, 1).first()
        if found is not None:
            return found
    return members.search_by_user_name(name, 1).first()


async def main() -> None:
    ap = argparse.ArgumentParser(prog="simple_cli.py")
    ap.add_argument("--session", default="./session.json", help="session dump (default: ./session.json)")
    ap.add_argument("--desktop", action="store_true", help="log in with the desktop protocol")
    ap.add_argument("--push", action="store_true", help="ask the phone to confirm instead of scanning")
    args = ap.parse_args()

    storage = JsonFileHotReloadStorage(Path(args.session).expanduser().resolve())
    config = BotConfig(mode=Mode.DESKTOP if args.desktop else Mode.NORMAL)
    bot = Bot(config)

    async def on_msg(msg: Message) -> None:
        if msg.is_send_by_self:
            return
        where = msg.group_user_name or msg.from_user_name
        who = msg.sender_user_name_in_group or msg.from_user_name
        if msg.is_text():
            at = " (@me)" if msg.is_at else ""
            print(f"\n[rx] {where} {who}{at}: {_short(msg.content, 200)}")
        else:
            print(f"\n[rx] {where} {who}: <type {msg.msg_type}>")

    bot.on("uuid", print_qrcode_url)
    bot.on("message", on_msg)
    bot.on("logout", lambda _bot: print("\n[logout]", bot.crash_reason))

    option = SyncReloadDataLoginOption(interval_s=300)
    # Both fall back to a QR scan when the dump is missing or stale.
    if args.push:
        await bot.push_login(storage, option, retry=True)
    else:
        await bot.hot_login(storage, option, retry=True)

    print("\nCommands: help, me, friends, groups, send <name> <text>, send_file <name> <path>, quit\n")

    while bot.alive:
        try:
            line = (await _ainput("> ")).strip()
        except (EOFError, KeyboardInterrupt):
            line = "quit"

        if not line:
            continue

        cmd, *rest = line.split(" ", 1)
        cmd = cmd.lower()
        argstr = rest[0] if rest else ""

        if cmd in ("quit", "exit"):
            break

        if cmd == "help":
            print("me")
            print("friends")
            print("groups")
            print("send <name> <text>")
            print("send_file <name> <path>")
            print("quit")
            continue

        if cmd == "me":
            me = bot.get_current_user()
            print(f"me: {me.nick_name} ({me.user_name})")
            continue

        if cmd in ("friends", "groups"):
            me = bot.get_current_user()
            users = await (me.friends() if cmd == "friends" else me.groups())
            for u in users:
                remark = f" remark={u.remark_name!r}" if u.remark_name else ""
                print(f"- {u.user_name} {u.nick_name!r}{remark}")
            continue

        if cmd in ("send", "send_file"):
            parts = argstr.split(" ", 1) if argstr else []
            if len(parts) < 2:
                print(f"usage: {cmd} <name> <{'text' if cmd == 'send' else 'path'}>")
                continue
            user = await _find(bot, parts[0])
            if user is None:
                print("error: no such contact")
                continue
            try:
                if cmd == "send":
                    sent = await user.send_text(parts[1])
                else:
                    path = Path(parts[1]).expanduser()
                    sent = await user.send_file(path.read_bytes(), path.name)
                print("sent:", sent.msg_id)
            except (WebWxError, OSError) as e:
                print("error:", e)
            continue

        print(f"unknown command: {cmd} (try: help)")

    await bot.close()


if __name__ == "__main__":
    asyncio.run(main())
