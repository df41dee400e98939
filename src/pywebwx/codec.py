from __future__ import annotations

import html
import secrets
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any

from .constants import (
    EMOJI_SPAN_RE,
    REDIRECT_URI_RE,
    STATUS_CODE_RE,
    SYNC_CHECK_RE,
    USER_AVATAR_RE,
    UUID_RE,
    LoginCode,
)
from .exceptions import ProtocolError
from .session import LoginInfo, SyncCheckResponse


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def local_message_id() -> str:
    # LocalID/ClientMsgId: 100ns ticks, unique enough per client.
    return str(time.time_ns() // 100)


def generate_device_id() -> str:
    """Random device id of the form `e` + 15 decimal digits."""

    return "e" + "".join(str(secrets.randbelow(10)) for _ in range(15))


def parse_uuid(text: str) -> str:
    m = UUID_RE.search(text)
    if not m:
        # Also seen when the client IP has been blacklisted.
        raise ProtocolError("uuid does not match")
    return m.group(1)


@dataclass(frozen=True, slots=True)
class CheckLoginResponse:
    code: str
    raw: str
    redirect_uri: str | None = None
    avatar: str | None = None


def parse_check_login(text: str) -> CheckLoginResponse:
    m = STATUS_CODE_RE.search(text)
    if not m:
        raise ProtocolError("error status code match")
    code = m.group(1)
    redirect_uri: str | None = None
    avatar: str | None = None
    if code == LoginCode.SUCCESS:
        r = REDIRECT_URI_RE.search(text)
        if not r:
            raise ProtocolError("redirect url does not match")
        redirect_uri = r.group(1)
    elif code == LoginCode.SCANNED:
        a = USER_AVATAR_RE.search(text)
        avatar = a.group(1) if a else None
    return CheckLoginResponse(code=code, raw=text, redirect_uri=redirect_uri, avatar=avatar)


def _text(root: ET.Element, tag: str) -> str:
    node = root.find(tag)
    if node is None or node.text is None:
        return ""
    return node.text.strip()


def parse_login_info(data: bytes | str) -> LoginInfo:
    """Parse the `<error><ret/>...</error>` document returned by the login redirect."""

    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise ProtocolError(f"invalid login xml: {e}") from e
    try:
        ret = int(_text(root, "ret") or 0)
        wx_uin = int(_text(root, "wxuin") or 0)
        gray = int(_text(root, "isgrayscale") or 0)
    except ValueError as e:
        raise ProtocolError(f"invalid login xml field: {e}") from e
    return LoginInfo(
        ret=ret,
        message=_text(root, "message"),
        wx_uin=wx_uin,
        wx_sid=_text(root, "wxsid"),
        skey=_text(root, "skey"),
        pass_ticket=_text(root, "pass_ticket"),
        is_gray_scale=gray,
    )


def parse_sync_check(text: str) -> SyncCheckResponse:
    m = SYNC_CHECK_RE.search(text)
    if not m:
        raise ProtocolError("sync check response does not match")
    return SyncCheckResponse(retcode=m.group(1), selector=m.group(2))


def format_emoji(text: str) -> str:
    """Replace `<span class="emoji emojiXXXX"></span>` with the code point U+XXXX."""

    def _sub(m: Any) -> str:
        try:
            return chr(int(m.group(1), 16))
        except (ValueError, OverflowError):
            return m.group(0)

    return EMOJI_SPAN_RE.sub(_sub, text)


def replace_br(text: str) -> str:
    return text.replace("<br/>", "\n")


def unescape_html(text: str) -> str:
    return html.unescape(text)


def xml_from_content(content: str) -> str:
    """Turn the escaped XML a message body carries back into a parseable document."""

    text = html.unescape(content).replace("<br/>", "")
    start = text.find("<")
    return text[start:] if start > 0 else text


def parse_xml_content(content: str) -> ET.Element:
    try:
        return ET.fromstring(xml_from_content(content))
    except ET.ParseError as e:
        raise ProtocolError(f"invalid message xml: {e}") from e


def file_ext(name: str) -> str:
    _, dot, ext = name.rpartition(".")
    if not dot or not ext:
        return "undefined"
    return ext


class Emoji:
    """Bracket codes the clients render as built-in stickers; send them as plain text."""

    SMILE = "[微笑]"
    GRIMACE = "[撇嘴]"
    DROOL = "[色]"
    SCOWL = "[发呆]"
    COOL_GUY = "[得意]"
    SOB = "[流泪]"
    SHY = "[害羞]"
    SILENT = "[闭嘴]"
    SLEEP = "[睡]"
    CRY = "[大哭]"
    AWKWARD = "[尴尬]"
    ANGRY = "[发怒]"
    TONGUE = "[调皮]"
    GRIN = "[呲牙]"
    SURPRISE = "[惊讶]"
    FROWN = "[难过]"
    RUTHLESS = "[酷]"
    BLUSH = "[冷汗]"
    SCREAM = "[抓狂]"
    PUKE = "[吐]"
    CHUCKLE = "[偷笑]"
    JOYFUL = "[愉快]"
    SLIGHT = "[白眼]"
    SMUG = "[傲慢]"
    HUNGRY = "[饥饿]"
    DROWSY = "[困]"
    PANIC = "[惊恐]"
    SWEAT = "[流汗]"
    LAUGH = "[憨笑]"
    COMMANDO = "[悠闲]"
    DETERMINED = "[奋斗]"
    SCOLD = "[咒骂]"
    SHOCKED = "[疑问]"
    SHHH = "[嘘]"
    DIZZY = "[晕]"
    TORMENTED = "[疯了]"
    TOASTED = "[衰]"
    SKULL = "[骷髅]"
    HAMMER = "[敲打]"
    WAVE = "[再见]"
    SPEECHLESS = "[擦汗]"
    NOSE_PICK = "[抠鼻]"
    CLAP = "[鼓掌]"
    SHAME = "[糗大了]"
    TRICK = "[坏笑]"
    BAH_L = "[左哼哼]"
    BAH_R = "[右哼哼]"
    YAWN = "[哈欠]"
    POOH_POOH = "[鄙视]"
    SHRUNKEN = "[委屈]"
    TEARING_UP = "[快哭了]"
    SLY = "[阴险]"
    KISS = "[亲亲]"
    WRATH = "[吓]"
    WHIMPER = "[可怜]"
    CLEAVER = "[菜刀]"
    WATERMELON = "[西瓜]"
    BEER = "[啤酒]"
    BASKETBALL = "[篮球]"
    PING_PONG = "[乒乓]"
    COFFEE = "[咖啡]"
    RICE = "[饭]"
    PIG = "[猪头]"
    ROSE = "[玫瑰]"
    WILT = "[凋谢]"
    LIPS = "[嘴唇]"
    HEART = "[爱心]"
    BROKEN_HEART = "[心碎]"
    CAKE = "[蛋糕]"
    LIGHTNING = "[闪电]"
    BOMB = "[炸弹]"
    DAGGER = "[刀]"
    SOCCER = "[足球]"
    LADYBUG = "[瓢虫]"
    POOP = "[便便]"
    MOON = "[月亮]"
    SUN = "[太阳]"
    GIFT = "[礼物]"
    HUG = "[拥抱]"
    THUMBS_UP = "[强]"
    THUMBS_DOWN = "[弱]"
    SHAKE = "[握手]"
    PEACE = "[胜利]"
    FIGHT = "[抱拳]"
    BECKON = "[勾引]"
    FIST = "[拳头]"
    PINKY = "[差劲]"
    ROCK_ON = "[爱你]"
    NUHUH = "[NO]"
    OK = "[OK]"
    IN_LOVE = "[爱情]"
    BLOWKISS = "[飞吻]"
    WADDLE = "[跳跳]"
    TREMBLE = "[发抖]"
    AAAGH = "[怄火]"
    TWIRL = "[转圈]"
    KOTOW = "[磕头]"
    DRAMATIC = "[回头]"
    JUMP_ROPE = "[跳绳]"
    SURRENDER = "[投降]"
    HOORAY = "[激动]"
    MEDITATE = "[乱舞]"
    SMOOCH = "[献吻]"
    TAI_CHI_L = "[左太极]"
    TAI_CHI_R = "[右太极]"
    HEY = "[嘿哈]"
    FACEPALM = "[捂脸]"
    SMIRK = "[奸笑]"
    SMART = "[机智]"
    MOUE = "[皱眉]"
    YEAH = "[耶]"
    TEA = "[茶]"
    PACKET = "[红包]"
    CANDLE = "[蜡烛]"
    BLESSING = "[福]"
    CHICK = "[鸡]"
    ONLOOKER = "[吃瓜]"
    GO_FOR_IT = "[加油]"
    SWEATS = "[汗]"
    OMG = "[天啊]"
    EMM = "[Emm]"
    RESPECT = "[社会社会]"
    DOGE = "[旺柴]"
    NO_PROB = "[好的]"
    MY_BAD = "[打脸]"
    KEEP_FIGHTING = "[加油加油]"
    WOW = "[哇]"
    RICH = "[發]"
    BROKEN = "[裂开]"
    HURT = "[苦涩]"
    SIGH = "[叹气]"
    LET_ME_SEE = "[让我看看]"
    AWESOME = "[666]"
    BORING = "[翻白眼]"
