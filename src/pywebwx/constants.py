from __future__ import annotations

import re
from enum import IntEnum, StrEnum

APP_ID = "wx782c26e4c19acffb"
# Attachment app id used by the web client for `<appmsg>` file transfers.
APP_MESSAGE_APP_ID = "wxeb7ec651dd0aefa9"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/89.0.4389.114 Safari/537.36"
)
DESKTOP_CLIENT_VERSION = "2.0.0"

JSLOGIN_URL = "https://login.wx.qq.com/jslogin"
NEW_LOGIN_PAGE_URL = "https://wx.qq.com/cgi-bin/mmwebwx-bin/webwxnewloginpage"
QRCODE_URL = "https://login.weixin.qq.com/qrcode/"
CHECK_LOGIN_URL = "https://login.wx.qq.com/cgi-bin/mmwebwx-bin/login"

CGI = "/cgi-bin/mmwebwx-bin"
WEBWXINIT = f"{CGI}/webwxinit"
WEBWXSTATUSNOTIFY = f"{CGI}/webwxstatusnotify"
WEBWXSYNC = f"{CGI}/webwxsync"
WEBWXSENDMSG = f"{CGI}/webwxsendmsg"
WEBWXGETCONTACT = f"{CGI}/webwxgetcontact"
WEBWXSENDMSGIMG = f"{CGI}/webwxsendmsgimg"
WEBWXSENDAPPMSG = f"{CGI}/webwxsendappmsg"
WEBWXSENDVIDEOMSG = f"{CGI}/webwxsendvideomsg"
WEBWXSENDEMOTICON = f"{CGI}/webwxsendemoticon"
WEBWXBATCHGETCONTACT = f"{CGI}/webwxbatchgetcontact"
WEBWXOPLOG = f"{CGI}/webwxoplog"
WEBWXVERIFYUSER = f"{CGI}/webwxverifyuser"
SYNCCHECK = f"{CGI}/synccheck"
WEBWXUPLOADMEDIA = f"{CGI}/webwxuploadmedia"
WEBWXGETMSGIMG = f"{CGI}/webwxgetmsgimg"
WEBWXGETVOICE = f"{CGI}/webwxgetvoice"
WEBWXGETVIDEO = f"{CGI}/webwxgetvideo"
WEBWXGETMEDIA = f"{CGI}/webwxgetmedia"
WEBWXGETICON = f"{CGI}/webwxgeticon"
WEBWXGETHEADIMG = f"{CGI}/webwxgetheadimg"
WEBWXLOGOUT = f"{CGI}/webwxlogout"
WEBWXUPDATECHATROOM = f"{CGI}/webwxupdatechatroom"
WEBWXCREATECHATROOM = f"{CGI}/webwxcreatechatroom"
WEBWXREVOKEMSG = f"{CGI}/webwxrevokemsg"
WEBWXPUSHLOGINURL = f"{CGI}/webwxpushloginurl"

UUID_RE = re.compile(r'uuid = "(.*?)";')
STATUS_CODE_RE = re.compile(r"window.code=(\d+);")
REDIRECT_URI_RE = re.compile(r'window.redirect_uri="(.*?)"')
USER_AVATAR_RE = re.compile(r"window.userAvatar = '(.*?)'")
SYNC_CHECK_RE = re.compile(r'window.synccheck=\{retcode:"(\d+)",selector:"(\d+)"\}')
EMOJI_SPAN_RE = re.compile(r'<span class="emoji emoji(.*?)"></span>')

FILE_HELPER = "filehelper"
FRIEND_REQUEST_SENDER = "fmessage"

# Batch contact requests above this size are rejected by the server.
MAX_BATCH_CONTACT = 50
# `webwxupdatechatroom` switches from addmember to invitemember at this size.
INVITE_MEMBER_THRESHOLD = 40
# ContactFlag value the web client reports for pinned chats.
CONTACT_FLAG_PINNED = 2051

MP_VERIFY_FLAGS = frozenset({8, 24, 136})


class Mode(StrEnum):
    NORMAL = "normal"
    DESKTOP = "desktop"


class LoginCode(StrEnum):
    SUCCESS = "200"
    SCANNED = "201"
    TIMEOUT = "400"
    WAIT = "408"


class Selector(StrEnum):
    NORMAL = "0"
    NEW_MSG = "2"
    MOD_CONTACT = "4"
    ADD_OR_DEL_CONTACT = "6"
    ENTER_OR_LEAVE_CHAT = "7"


class MsgType(IntEnum):
    TEXT = 1
    IMAGE = 3
    VOICE = 34
    VERIFYMSG = 37
    POSSIBLEFRIEND_MSG = 40
    SHARECARD = 42
    VIDEO = 43
    EMOTICON = 47
    LOCATION = 48
    APP = 49
    VOIPMSG = 50
    STATUSNOTIFY = 51
    VOIPNOTIFY = 52
    VOIPINVITE = 53
    MICROVIDEO = 62
    SYSNOTICE = 9999
    SYS = 10000
    RECALLED = 10002


class AppMsgType(IntEnum):
    TEXT = 1
    IMG = 2
    AUDIO = 3
    VIDEO = 4
    URL = 5
    ATTACH = 6
    OPEN = 7
    EMOJI = 8
    VOICE_REMIND = 9
    SCAN_GOOD = 10
    GOOD = 13
    EMOTION = 15
    CARD_TICKET = 16
    REALTIME_SHARE_LOCATION = 17
    TRANSFERS = 2000
    RED_ENVELOPES = 2001
    READER_TYPE = 100001


class StatusNotifyCode(IntEnum):
    READED = 1
    ENTER_SESSION = 2
    INITED = 3
    SYNC_CONV = 4
    QUIT_SESSION = 5


class OplogCmd(IntEnum):
    MOD_REMARK_NAME = 2
    TOP_CONTACT = 3
