from __future__ import annotations

import re

import pytest

from pywebwx.codec import (
    file_ext,
    format_emoji,
    generate_device_id,
    parse_check_login,
    parse_login_info,
    parse_sync_check,
    parse_uuid,
    xml_from_content,
)
from pywebwx.domain import DEFAULT_DOMAIN, domain_for_host, domain_for_url
from pywebwx.exceptions import ProtocolError
from pywebwx.session import SyncKey, SyncKeyItem, WebWxSyncResponse


def test_parse_uuid() -> None:
    text = 'window.QRLogin.code = 200; window.QRLogin.uuid = "4ZcMGGn_ZQ==";'
    assert parse_uuid(text) == "4ZcMGGn_ZQ=="


def test_parse_uuid_without_match_is_protocol_error() -> None:
    with pytest.raises(ProtocolError):
        parse_uuid("window.QRLogin.code = 400;")


def test_parse_check_login_success_carries_redirect() -> None:
    resp = parse_check_login(
        'window.code=200;\nwindow.redirect_uri="https://wx2.qq.com/cgi-bin/mmwebwx-bin/'
        'webwxnewloginpage?ticket=T&uuid=U&lang=zh_CN&scan=1";'
    )
    assert resp.code == "200"
    assert resp.redirect_uri is not None
    assert resp.redirect_uri.startswith("https://wx2.qq.com/")


def test_parse_check_login_scanned_carries_avatar() -> None:
    resp = parse_check_login("window.code=201;window.userAvatar = 'data:img/jpg;base64,AAAA';")
    assert resp.code == "201"
    assert resp.avatar == "data:img/jpg;base64,AAAA"
    assert resp.redirect_uri is None


def test_parse_check_login_success_without_redirect_is_protocol_error() -> None:
    with pytest.raises(ProtocolError):
        parse_check_login("window.code=200;")


def test_parse_login_info() -> None:
    info = parse_login_info(
        b"<error><ret>0</ret><message></message><skey>@crypt_1</skey><wxsid>sid</wxsid>"
        b"<wxuin>42</wxuin><pass_ticket>pt%2B</pass_ticket><isgrayscale>1</isgrayscale></error>"
    )
    assert info.ok
    assert info.wx_uin == 42
    assert info.skey == "@crypt_1"
    assert info.pass_ticket == "pt%2B"
    assert info.is_gray_scale == 1


def test_parse_login_info_rejects_garbage() -> None:
    with pytest.raises(ProtocolError):
        parse_login_info(b"<error><ret>0</ret>")


def test_parse_sync_check() -> None:
    resp = parse_sync_check('window.synccheck={retcode:"0",selector:"2"}')
    assert resp.success
    assert resp.has_new_message
    assert resp.error() is None

    fatal = parse_sync_check('window.synccheck={retcode:"1102",selector:"0"}')
    assert not fatal.success
    assert fatal.error() == 1102


def test_format_emoji_replaces_spans() -> None:
    text = 'hi <span class="emoji emoji1f604"></span>!'
    assert format_emoji(text) == "hi \U0001f604!"
    assert format_emoji(format_emoji(text)) == format_emoji(text)


def test_format_emoji_leaves_bad_code_points() -> None:
    text = '<span class="emoji emojizzzz"></span>'
    assert format_emoji(text) == text


def test_generate_device_id_shape() -> None:
    ids = {generate_device_id() for _ in range(20)}
    assert all(re.fullmatch(r"e\d{15}", i) for i in ids)
    assert len(ids) > 1


def test_sync_key_flatten_and_wire() -> None:
    key = SyncKey((SyncKeyItem(1, 100), SyncKeyItem(2, 200)))
    assert key.flatten() == "1_100|2_200"
    assert key.to_wire() == {
        "Count": 2,
        "List": [{"Key": 1, "Val": 100}, {"Key": 2, "Val": 200}],
    }
    assert SyncKey.from_wire(key.to_wire()) == key
    assert SyncKey.from_wire(None).count == 0


def test_sync_response_tolerates_missing_lists() -> None:
    resp = WebWxSyncResponse.from_wire({"BaseResponse": {"Ret": 0}})
    assert resp.sync_key.count == 0
    assert resp.add_msg_list == []
    assert resp.mod_contact_list == []


def test_xml_from_content_unescapes() -> None:
    content = "@abc:<br/>&lt;msg&gt;&lt;a b=&quot;1&quot;/&gt;&lt;/msg&gt;"
    assert xml_from_content(content) == '<msg><a b="1"/></msg>'


def test_file_ext() -> None:
    assert file_ext("report.final.pdf") == "pdf"
    assert file_ext("README") == "undefined"


def test_domain_groups() -> None:
    g = domain_for_url("https://wx8.qq.com/cgi-bin/mmwebwx-bin/webwxnewloginpage?x=1")
    assert g.domain == "wx8.qq.com"
    assert g.file_host == "https://file.wx8.qq.com"
    assert g.sync_host == "https://webpush.wx8.qq.com"
    assert domain_for_host("wx2.qq.com") == DEFAULT_DOMAIN
    assert domain_for_host("example.org").sync_domain == "webpush.example.org"
    assert domain_for_url("https://user@wx2.qq.com:443/cgi-bin") == DEFAULT_DOMAIN
