from unittest.mock import MagicMock

import pytest
import requests

from services.signer_service import RemoteSignerProvider, SignerError
from services.telegram_service import TelegramService

from conftest import OWNER_A


def json_response(body):
    r = MagicMock()
    r.raise_for_status.return_value = None
    r.json.return_value = body
    return r


def test_remote_signer_resolves_and_signs():
    http = MagicMock(spec=requests.Session)
    http.post.side_effect = [json_response({"pubkey": OWNER_A}), json_response({"signature": "abc"})]
    provider = RemoteSignerProvider(base_url="https://secrets.test", token="tok", http=http)

    signer = provider.signer_for("ref-1")

    assert signer.pubkey == OWNER_A
    assert signer.sign(b"payload") == "abc"
    sign_call = http.post.call_args_list[1]
    assert sign_call.args[0] == "https://secrets.test/sign"
    assert sign_call.kwargs["json"] == {"signerRef": "ref-1", "payload": "cGF5bG9hZA=="}
    assert OWNER_A in repr(signer)


def test_unknown_signer_ref_raises():
    http = MagicMock(spec=requests.Session)
    http.post.return_value = json_response({})
    with pytest.raises(SignerError):
        RemoteSignerProvider(base_url="https://secrets.test", http=http).signer_for("ref-x")


def test_signer_without_service_url_raises():
    with pytest.raises(SignerError):
        RemoteSignerProvider(base_url="", http=MagicMock()).signer_for("ref-1")


def test_telegram_disabled_without_credentials():
    http = MagicMock(spec=requests.Session)
    service = TelegramService(token="", chat_id="", http=http)
    service.token, service.chat_id = None, None
    service.notificar_emergencia("s-1", "Mint", 1.0, 2.0, 1, 0)
    http.post.assert_not_called()


def test_telegram_errors_do_not_propagate():
    http = MagicMock(spec=requests.Session)
    http.post.side_effect = requests.ConnectionError("offline")
    service = TelegramService(token="t", chat_id="42", http=http)
    service.notificar_emergencia("s-1", "Mint", 1.0, 2.0, 1, 0)
    assert http.post.call_args.kwargs["json"]["chat_id"] == 42


def test_phantom_notice_skipped_when_nothing_found():
    http = MagicMock(spec=requests.Session)
    service = TelegramService(token="t", chat_id="42", http=http)
    service.notificar_fantasmas(0, 0, True)
    http.post.assert_not_called()
    service.notificar_fantasmas(2, 2, False)
    assert "2 detectadas" in http.post.call_args.kwargs["json"]["text"]


@pytest.mark.parametrize("body", [["pubkey"], "ok", None])
def test_non_object_signer_reply_raises_signer_error(body):
    http = MagicMock(spec=requests.Session)
    http.post.return_value = json_response(body)
    with pytest.raises(SignerError):
        RemoteSignerProvider(base_url="https://secrets.test", http=http).signer_for("ref-1")
